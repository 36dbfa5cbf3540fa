"""Routing of inbound bridge messages and the close-confirmation protocol."""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Set

from ..models.events import AppMessage
from ..models.messages import (
    AppDefinedMessage,
    BridgeMessage,
    CaptureScreenshotMessage,
    ChangeUserAgentMessage,
    ClientNavigationMessage,
    CloseCancelledMessage,
    CloseConfirmedMessage,
    CloseMessage,
    DiagnosticMessage,
    MessageType,
    NavigateMessage,
    OpenLinkMessage,
    PostedMessage,
    ScriptReplyMessage,
    SendToBackendMessage,
    SetTitleMessage,
    SwitchSurfaceMessage,
)
from ..models.state import CloseConfirmationState
from ..models.surface import SurfaceId
from .bootstrap import CLOSE_CONFIRMATION_SCRIPT
from .diagnostics import DATA_LOG_LIMIT, truncate
from .surface_service import SurfaceManager
from .visibility_service import VisibilityArbiter

if TYPE_CHECKING:
    from .bridge import AutomationBridge

logger = logging.getLogger(__name__)


class CloseProtocol:
    """Two-press close with an in-page confirmation round trip.

    The first close request brings the interactive surface forward and asks
    its page to confirm. The page answers with ``CLOSE_CONFIRMED`` or
    ``CLOSE_CANCELLED``. A second request within the same presentation closes
    immediately. If the confirmation script cannot run, the bridge closes.
    """

    def __init__(
        self,
        surfaces: SurfaceManager,
        visibility: VisibilityArbiter,
        close: Callable[[], Awaitable[None]],
    ):
        self.surfaces = surfaces
        self.visibility = visibility
        self._close = close
        self.state = CloseConfirmationState()

    async def request_close(self) -> None:
        self.state.press_count += 1
        logger.info(f"Close requested (press {self.state.press_count})")

        if self.state.press_count >= 2:
            logger.info("Second close request, closing without confirmation")
            await self._close()
            return

        self.state.was_automation_foreground = self.visibility.foreground is SurfaceId.AUTOMATION
        if self.state.was_automation_foreground:
            await self.visibility.request_show(SurfaceId.UI)

        engine = self.surfaces.engine(SurfaceId.UI)
        if engine is None:
            logger.warning("Interactive surface unavailable for close confirmation, closing")
            await self._close()
            return

        try:
            await engine.evaluate(CLOSE_CONFIRMATION_SCRIPT)
        except Exception as e:
            logger.error(f"Error showing close confirmation: {e}")
            await self._close()

    async def confirm(self) -> None:
        logger.info("Close confirmation received - proceeding with close")
        await self._close()

    async def cancel(self) -> None:
        logger.info("Close cancelled by user")
        self.state.press_count = 0
        if self.state.was_automation_foreground:
            logger.info("Switching back to automation surface after close cancellation")
            await self.visibility.request_show(SurfaceId.AUTOMATION)
        self.state.was_automation_foreground = False

    def reset(self) -> None:
        self.state.reset()


class BridgeDispatcher:
    """Routes validated messages to the tracker, injector or controller.

    Messages that start a visibility transition run it in a separate task so
    later messages, such as command replies, are not held for its duration.
    """

    def __init__(self, bridge: "AutomationBridge"):
        self.bridge = bridge
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, message: BridgeMessage) -> None:
        """Handle one inbound message."""
        bridge = self.bridge
        source = message.source_surface

        if isinstance(message, ScriptReplyMessage):
            logger.info(f"Handling {message.reply_type.value} reply for command {message.command_id}")
            bridge.injector.handle_reply(message)

        elif isinstance(message, PostedMessage):
            self._forward(message.type, message.data, source)

        elif isinstance(message, NavigateMessage):
            logger.info(f"[{source.value}] Navigate to: {truncate(message.url)}")
            await bridge.navigate_foreground(message.url)

        elif isinstance(message, CloseMessage):
            self._spawn(bridge.close_protocol.request_close())

        elif isinstance(message, SetTitleMessage):
            logger.info(f"[{source.value}] Set title: {message.title}")
            bridge.title = message.title
            bridge.controller.on_title_changed(message.title)

        elif isinstance(message, SwitchSurfaceMessage):
            logger.info(f"[{source.value}] Switch surface requested")
            self._spawn(bridge.visibility.toggle())

        elif isinstance(message, ClientNavigationMessage):
            bridge.navigation.client_navigation(
                source, message.url, message.navigation_method, message.old_url, message.new_url
            )

        elif isinstance(message, (CaptureScreenshotMessage, SendToBackendMessage)):
            logger.info(f"[{source.value}] {message.type} requested")
            self._forward(message.type, self._app_payload(message), source)

        elif isinstance(message, ChangeUserAgentMessage):
            logger.info(f"[{source.value}] changeAutomationUserAgent: {message.user_agent}")
            await bridge.change_automation_user_agent(message.user_agent, reload=True)

        elif isinstance(message, OpenLinkMessage):
            logger.info(f"[{source.value}] Opening external link: {truncate(message.url)}")
            self._forward(message.type, {"url": message.url}, source)

        elif isinstance(message, CloseConfirmedMessage):
            await bridge.close_protocol.confirm()

        elif isinstance(message, CloseCancelledMessage):
            self._spawn(bridge.close_protocol.cancel())

        elif isinstance(message, DiagnosticMessage):
            self._log_diagnostic(message)

        elif isinstance(message, AppDefinedMessage):
            self._forward(message.type, message.data, source)

        else:
            logger.warning(f"No route for message type: {message.type}")

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error handling bridge message: {task.exception()}")

    async def settle(self) -> None:
        """Wait for spawned message handlers to finish."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _forward(self, message_type: str, payload, source: SurfaceId) -> None:
        logger.debug(f"Forwarding {message_type} to controller: {truncate(payload, DATA_LOG_LIMIT)}")
        self.bridge.controller.on_app_message(
            AppMessage(type=message_type, payload=payload, source_surface=source)
        )

    @staticmethod
    def _app_payload(message: BridgeMessage) -> dict:
        if isinstance(message, SendToBackendMessage):
            payload = {"apiPath": message.api_path, "data": message.data}
            if message.headers:
                payload["headers"] = message.headers
            return payload
        return {}

    @staticmethod
    def _log_diagnostic(message: DiagnosticMessage) -> None:
        source = message.source_surface.value
        if message.type == MessageType.CONSOLE_ERROR.value:
            logger.error(f"[{source}] JavaScript console error: {message.message}")
        elif message.type == MessageType.UNHANDLED_REJECTION.value:
            logger.error(f"[{source}] Unhandled promise rejection: {message.message}")
        else:
            if message.is_weak_map_error:
                logger.error(f"[{source}] WeakMap JavaScript error: {message.message}")
                logger.error("  Likely caused by global script injection timing")
            else:
                logger.error(f"[{source}] JavaScript error: {message.message}")
            if message.source:
                logger.error(f"  Source: {message.source}")
            if message.line is not None:
                logger.error(f"  Line: {message.line}, Column: {message.column}")
            if message.stack:
                logger.error(f"  Stack: {message.stack}")
