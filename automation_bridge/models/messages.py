"""Inbound bridge messages.

Messages posted by the in-page script runtime arrive as loosely typed JSON
objects. ``parse_bridge_message`` turns them into one of the tagged dataclasses
below and raises ``MalformedMessageError`` when a known message type is missing
a required field; nothing is silently defaulted. Unknown message types are kept
as ``AppDefinedMessage`` with their raw payload for the controller.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..exceptions import MalformedMessageError
from .commands import CommandType
from .surface import SurfaceId


class MessageType(str, Enum):
    """Message types understood by the dispatcher."""

    MESSAGE = "message"
    NAVIGATE = "navigate"
    CLOSE = "close"
    SET_TITLE = "setTitle"
    SWITCH_WEBVIEW = "switchWebview"
    CLIENT_NAVIGATION = "clientNavigation"
    CAPTURE_SCREENSHOT = "captureScreenshot"
    SEND_TO_BACKEND = "sendToBackend"
    CHANGE_AUTOMATION_USER_AGENT = "changeAutomationUserAgent"
    OPEN_LINK = "openLink"
    CLOSE_CONFIRMED = "CLOSE_CONFIRMED"
    CLOSE_CANCELLED = "CLOSE_CANCELLED"
    CONSOLE_ERROR = "console_error"
    JAVASCRIPT_ERROR = "javascript_error"
    UNHANDLED_REJECTION = "unhandled_rejection"


class NavigationMethod(str, Enum):
    """History mechanisms that trigger a client-side navigation."""

    PUSH_STATE = "pushState"
    REPLACE_STATE = "replaceState"
    POPSTATE = "popstate"
    HASHCHANGE = "hashchange"


DIAGNOSTIC_TYPES = frozenset(
    {MessageType.CONSOLE_ERROR, MessageType.JAVASCRIPT_ERROR, MessageType.UNHANDLED_REJECTION}
)


@dataclass
class BridgeMessage:
    """Base for every inbound message."""

    type: str
    source_surface: SurfaceId
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class NavigateMessage(BridgeMessage):
    url: str = ""


@dataclass
class CloseMessage(BridgeMessage):
    pass


@dataclass
class SetTitleMessage(BridgeMessage):
    title: str = ""


@dataclass
class SwitchSurfaceMessage(BridgeMessage):
    pass


@dataclass
class ClientNavigationMessage(BridgeMessage):
    url: str = ""
    navigation_method: NavigationMethod = NavigationMethod.PUSH_STATE
    old_url: Optional[str] = None
    new_url: Optional[str] = None


@dataclass
class CaptureScreenshotMessage(BridgeMessage):
    pass


@dataclass
class SendToBackendMessage(BridgeMessage):
    api_path: str = ""
    data: Any = None
    headers: Optional[Dict[str, str]] = None


@dataclass
class ChangeUserAgentMessage(BridgeMessage):
    user_agent: str = ""


@dataclass
class OpenLinkMessage(BridgeMessage):
    url: str = ""


@dataclass
class CloseConfirmedMessage(BridgeMessage):
    pass


@dataclass
class CloseCancelledMessage(BridgeMessage):
    pass


@dataclass
class DiagnosticMessage(BridgeMessage):
    """Console errors, uncaught exceptions and unhandled rejections."""

    message: str = "Unknown error"
    source: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    stack: Optional[str] = None
    is_weak_map_error: bool = False


@dataclass
class ScriptReplyMessage(BridgeMessage):
    """Out-of-band result of a correlated script command."""

    command_id: str = ""
    reply_type: CommandType = CommandType.INJECT_SCRIPT
    value: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class PostedMessage(BridgeMessage):
    """Application data posted through ``postMessage`` that is not a script reply."""

    data: Any = None
    command_id: Optional[str] = None


@dataclass
class AppDefinedMessage(BridgeMessage):
    """Message type the bridge does not interpret; forwarded unmodified."""

    data: Any = None


def _require_str(body: Dict[str, Any], key: str, message_type: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedMessageError(f"'{message_type}' message requires string field '{key}'")
    return value


def _optional_str(body: Dict[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    return value if isinstance(value, str) else None


def _optional_int(body: Dict[str, Any], key: str) -> Optional[int]:
    value = body.get(key)
    if isinstance(value, bool):
        return None
    return value if isinstance(value, int) else None


def _parse_posted(base: Dict[str, Any], body: Dict[str, Any]) -> BridgeMessage:
    data = body.get("data")
    if data is None:
        return PostedMessage(**base, data=body)

    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError:
            return PostedMessage(**base, data=data)
        if not isinstance(parsed, dict):
            return PostedMessage(**base, data=data)
        data = parsed

    if not isinstance(data, dict):
        return PostedMessage(**base, data=data)

    command_id = data.get("commandId")
    reply_type = data.get("type")
    if command_id is None or not isinstance(reply_type, str):
        return PostedMessage(**base, data=data)

    if reply_type in (CommandType.INJECT_SCRIPT.value, CommandType.WAIT.value):
        error = data.get("error")
        return ScriptReplyMessage(
            **base,
            command_id=str(command_id),
            reply_type=CommandType(reply_type),
            value=data.get("value"),
            error=None if error is None else str(error),
        )

    return PostedMessage(**base, data=data, command_id=str(command_id))


def _parse_client_navigation(base: Dict[str, Any], body: Dict[str, Any]) -> BridgeMessage:
    url = _require_str(body, "url", MessageType.CLIENT_NAVIGATION.value)
    method = body.get("navigationMethod")
    try:
        navigation_method = NavigationMethod(method)
    except ValueError as e:
        raise MalformedMessageError(f"Unknown navigationMethod: {method!r}") from e
    return ClientNavigationMessage(
        **base,
        url=url,
        navigation_method=navigation_method,
        old_url=_optional_str(body, "oldURL"),
        new_url=_optional_str(body, "newURL"),
    )


def _parse_send_to_backend(base: Dict[str, Any], body: Dict[str, Any]) -> BridgeMessage:
    api_path = _require_str(body, "apiPath", MessageType.SEND_TO_BACKEND.value)
    if body.get("data") is None:
        raise MalformedMessageError("'sendToBackend' message requires field 'data'")
    headers = body.get("headers")
    if headers is not None and not (
        isinstance(headers, dict) and all(isinstance(v, str) for v in headers.values())
    ):
        raise MalformedMessageError("'sendToBackend' headers must map strings to strings")
    return SendToBackendMessage(**base, api_path=api_path, data=body["data"], headers=headers)


def _parse_diagnostic(base: Dict[str, Any], body: Dict[str, Any]) -> BridgeMessage:
    message = body.get("message")
    return DiagnosticMessage(
        **base,
        message=str(message) if message is not None else "Unknown error",
        source=_optional_str(body, "source"),
        line=_optional_int(body, "line"),
        column=_optional_int(body, "column"),
        stack=_optional_str(body, "stack"),
        is_weak_map_error=bool(body.get("isWeakMapError", False)),
    )


_PARSERS: Dict[MessageType, Callable[[Dict[str, Any], Dict[str, Any]], BridgeMessage]] = {
    MessageType.MESSAGE: _parse_posted,
    MessageType.NAVIGATE: lambda base, body: NavigateMessage(
        **base, url=_require_str(body, "url", "navigate")
    ),
    MessageType.CLOSE: lambda base, body: CloseMessage(**base),
    MessageType.SET_TITLE: lambda base, body: SetTitleMessage(
        **base, title=_require_str(body, "title", "setTitle")
    ),
    MessageType.SWITCH_WEBVIEW: lambda base, body: SwitchSurfaceMessage(**base),
    MessageType.CLIENT_NAVIGATION: _parse_client_navigation,
    MessageType.CAPTURE_SCREENSHOT: lambda base, body: CaptureScreenshotMessage(**base),
    MessageType.SEND_TO_BACKEND: _parse_send_to_backend,
    MessageType.CHANGE_AUTOMATION_USER_AGENT: lambda base, body: ChangeUserAgentMessage(
        **base, user_agent=_require_str(body, "userAgent", "changeAutomationUserAgent")
    ),
    MessageType.OPEN_LINK: lambda base, body: OpenLinkMessage(
        **base, url=_require_str(body, "url", "openLink")
    ),
    MessageType.CLOSE_CONFIRMED: lambda base, body: CloseConfirmedMessage(**base),
    MessageType.CLOSE_CANCELLED: lambda base, body: CloseCancelledMessage(**base),
    MessageType.CONSOLE_ERROR: _parse_diagnostic,
    MessageType.JAVASCRIPT_ERROR: _parse_diagnostic,
    MessageType.UNHANDLED_REJECTION: _parse_diagnostic,
}


def parse_bridge_message(body: Any, source_surface: SurfaceId) -> BridgeMessage:
    """Validate a raw in-page payload and build the matching message.

    Args:
        body: Decoded JSON payload posted by the page
        source_surface: Surface the payload was received from

    Returns:
        Typed bridge message

    Raises:
        MalformedMessageError: If the payload is not an object or a known
            message type is missing required fields
    """
    if not isinstance(body, dict):
        raise MalformedMessageError(f"Bridge message must be an object, got {type(body).__name__}")

    message_type = body.get("type", MessageType.MESSAGE.value)
    if not isinstance(message_type, str):
        raise MalformedMessageError(f"Bridge message type must be a string, got {message_type!r}")

    timestamp = body.get("timestamp")
    base: Dict[str, Any] = {
        "type": message_type,
        "source_surface": source_surface,
        "payload": body,
        # Pages report milliseconds since epoch
        "timestamp": timestamp / 1000.0 if isinstance(timestamp, (int, float)) else time.time(),
    }

    try:
        known_type = MessageType(message_type)
    except ValueError:
        return AppDefinedMessage(**base, data=body.get("data", body))

    return _PARSERS[known_type](base, body)
