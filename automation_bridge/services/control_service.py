"""Controller protocol over WebSocket.

Inbound command messages (JSON objects with a ``type`` and an optional
``requestId``) are mapped onto bridge operations and answered with a
``response`` message. Bridge events are broadcast to every connected
controller as sequenced event messages:

- ``navigation``: ``{surface, url, phase, loading, commandId, error}``
- ``scriptResult``: ``{commandId, success, result | error}``
- ``visibilityChanged``: ``{surface}``
- ``appMessage``: ``{type, payload, sourceSurface}``
- ``titleChanged``: ``{title}``
- ``closed``

Long-running commands (``injectScript``, ``navigateAutomation``) are answered
with ``accepted`` immediately; their outcome arrives as an event.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..models.commands import ScriptCommand, ScriptResult
from ..models.events import AppMessage, NavigationEvent, VisibilityChanged
from ..models.surface import SurfaceId
from .bridge import AutomationBridge
from .controller import ControllerEvents
from .websocket_service import WebSocketService

logger = logging.getLogger(__name__)


class ControlService(ControllerEvents):
    """Adapts the controller interface to the WebSocket transport."""

    def __init__(self, bridge: AutomationBridge, websocket_service: WebSocketService):
        """Initialize control service.

        Args:
            bridge: Bridge receiving commands
            websocket_service: Transport for commands and events
        """
        self.bridge = bridge
        self.websocket = websocket_service
        self._queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self._commands: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "open": self._cmd_open,
            "loadURL": self._cmd_load_url,
            "navigateAutomation": self._cmd_navigate_automation,
            "injectScript": self._cmd_inject_script,
            "show": self._cmd_show,
            "setAutomationUserAgent": self._cmd_set_user_agent,
            "updateGlobalScript": self._cmd_update_global_script,
            "sendToPage": self._cmd_send_to_page,
            "goBack": self._cmd_go_back,
            "close": self._cmd_close,
            "releaseSurfaces": self._cmd_release_surfaces,
            "getState": self._cmd_get_state,
        }

    def register(self) -> None:
        """Register command handlers and make this service the bridge controller."""
        for command_type in self._commands:
            self.websocket.register_message_handler(command_type, self.handle_command)
        self.websocket.set_info_provider(lambda: {"bridge": self.bridge.get_status()})
        self.bridge.set_controller(self)

    async def start(self) -> int:
        """Register handlers, start the transport and the event sender.

        Returns:
            Port the control server listens on
        """
        self.register()
        port = await self.websocket.start()
        self._sender = asyncio.ensure_future(self._send_events())
        return port

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._sender is not None:
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass
            self._sender = None
        await self.websocket.stop()

    # ------------------------------------------------------------------
    # Inbound commands
    # ------------------------------------------------------------------

    async def handle_command(self, data: Dict[str, Any], websocket) -> None:
        """Run one command message and answer the sender."""
        command_type = data.get("type")
        handler = self._commands.get(command_type)
        response: Dict[str, Any] = {"type": "response", "requestId": data.get("requestId"), "command": command_type}

        if handler is None:
            response.update({"success": False, "error": f"Unknown command: {command_type}"})
        else:
            try:
                response.update(await handler(data))
            except (KeyError, ValueError) as e:
                response.update({"success": False, "error": f"Invalid {command_type} command: {e}"})
            except Exception as e:
                logger.error(f"Command {command_type} failed: {e}")
                response.update({"success": False, "error": str(e)})

        await self.websocket.send_message(websocket, response)

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cmd_open(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self.bridge.open()
        return {"success": True}

    async def _cmd_load_url(self, data: Dict[str, Any]) -> Dict[str, Any]:
        started = await self.bridge.load_url(_require(data, "url"))
        return {"success": True, "deferred": not started}

    async def _cmd_navigate_automation(self, data: Dict[str, Any]) -> Dict[str, Any]:
        url = _require(data, "url")
        self._spawn(self.bridge.navigate_automation(url, data.get("commandId")))
        return {"success": True, "accepted": True}

    async def _cmd_inject_script(self, data: Dict[str, Any]) -> Dict[str, Any]:
        command = ScriptCommand.from_dict(data)
        self._spawn(self.bridge.run_command(command))
        return {"success": True, "accepted": True, "commandId": command.command_id}

    async def _cmd_show(self, data: Dict[str, Any]) -> Dict[str, Any]:
        surface = SurfaceId(_require(data, "surface"))
        changed = await self.bridge.show(surface)
        return {"success": True, "changed": changed, "foreground": self.bridge.visibility.foreground.value}

    async def _cmd_set_user_agent(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self.bridge.set_automation_user_agent(data.get("userAgent"))
        return {"success": True}

    async def _cmd_update_global_script(self, data: Dict[str, Any]) -> Dict[str, Any]:
        recreated = await self.bridge.update_global_script(data.get("script"))
        return {"success": True, "recreated": recreated}

    async def _cmd_send_to_page(self, data: Dict[str, Any]) -> Dict[str, Any]:
        surface = SurfaceId(data.get("surface", SurfaceId.UI.value))
        message = data.get("message")
        if not isinstance(message, dict):
            raise ValueError("'message' must be an object")
        return {"success": await self.bridge.send_to_page(surface, message)}

    async def _cmd_go_back(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {"success": await self.bridge.go_back()}

    async def _cmd_close(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self.bridge.close()
        return {"success": True}

    async def _cmd_release_surfaces(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self.bridge.release_surfaces()
        return {"success": True}

    async def _cmd_get_state(self, data: Dict[str, Any]) -> Dict[str, Any]:
        state = await self.bridge.current_browser_state()
        return {"success": True, "state": state, "status": self.bridge.get_status()}

    # ------------------------------------------------------------------
    # Outbound events
    # ------------------------------------------------------------------

    def _enqueue(self, event: Dict[str, Any]) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(event)

    async def _send_events(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        while True:
            event = await self._queue.get()
            try:
                await self.websocket.broadcast_event(event)
            except Exception as e:
                logger.error(f"Failed to broadcast {event.get('type')} event: {e}")

    def on_navigation(self, event: NavigationEvent) -> None:
        self._enqueue({"type": "navigation", **event.to_dict()})

    def on_script_result(self, result: ScriptResult) -> None:
        self._enqueue({"type": "scriptResult", **result.to_dict()})

    def on_visibility_changed(self, event: VisibilityChanged) -> None:
        self._enqueue({"type": "visibilityChanged", **event.to_dict()})

    def on_app_message(self, message: AppMessage) -> None:
        self._enqueue({"type": "appMessage", "message": message.to_dict()})

    def on_title_changed(self, title: str) -> None:
        self._enqueue({"type": "titleChanged", "title": title})

    def on_closed(self) -> None:
        self._enqueue({"type": "closed"})


def _require(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"missing '{key}'")
    return value
