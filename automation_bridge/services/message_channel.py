"""Two-way message transport between the host and in-page script runtimes."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..exceptions import MalformedMessageError
from ..models.messages import BridgeMessage, parse_bridge_message
from ..models.surface import SurfaceId
from .bootstrap import build_client_message_script
from .diagnostics import DATA_LOG_LIMIT, DiagnosticsSink, truncate
from .surface_service import SurfaceManager

logger = logging.getLogger(__name__)

MessageHandler = Callable[[BridgeMessage], Awaitable[None]]


class MessageChannel:
    """Validates inbound page messages and delivers them in arrival order.

    Engine callbacks hand raw payloads to ``post``; a single worker task
    parses and dispatches them one at a time, so messages from a surface are
    handled first-in first-out. Payloads that fail validation are kept in a
    bounded quarantine instead of being dispatched.
    """

    def __init__(self, surfaces: SurfaceManager, diagnostics: DiagnosticsSink, quarantine_size: int = 1000):
        """Initialize message channel.

        Args:
            surfaces: Surface manager, used for outbound delivery
            diagnostics: Telemetry sink
            quarantine_size: Maximum number of quarantined payloads kept
        """
        self.surfaces = surfaces
        self.diagnostics = diagnostics
        self.handler: Optional[MessageHandler] = None
        self.quarantine: Deque[Dict[str, Any]] = deque(maxlen=quarantine_size)
        self.received_count = 0

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    def set_handler(self, handler: MessageHandler) -> None:
        self.handler = handler

    def post(self, surface_id: SurfaceId, body: Any) -> None:
        """Queue a raw payload received from a surface."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait((surface_id, body))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        queue = self._queue
        while not queue.empty():
            surface_id, body = queue.get_nowait()
            try:
                await self.deliver(surface_id, body)
            except Exception as e:
                logger.error(f"Error handling message from {surface_id.value}: {e}")
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def deliver(self, surface_id: SurfaceId, body: Any) -> Optional[BridgeMessage]:
        """Parse and dispatch a payload immediately.

        Args:
            surface_id: Surface the payload came from
            body: Raw payload

        Returns:
            The dispatched message, or None if it was quarantined
        """
        self.received_count += 1
        try:
            message = parse_bridge_message(body, surface_id)
        except MalformedMessageError as e:
            self._quarantine(surface_id, body, str(e))
            return None

        logger.debug(f"Received {message.type} from {surface_id.value} surface")
        if self.handler is not None:
            await self.handler(message)
        return message

    def _quarantine(self, surface_id: SurfaceId, body: Any, reason: str) -> None:
        self.quarantine.append({
            "surface": surface_id.value,
            "reason": reason,
            "payload": body,
            "timestamp": time.time(),
        })
        self.diagnostics.message_quarantined(reason, body)

    def get_quarantined(self, limit: int = 100) -> List[Dict[str, Any]]:
        return list(self.quarantine)[-limit:]

    async def send(self, surface_id: SurfaceId, message: Dict[str, Any]) -> bool:
        """Deliver a message to the page through ``window.postMessage``.

        Returns:
            True if the message was evaluated in the page
        """
        engine = self.surfaces.engine(surface_id)
        if engine is None:
            logger.warning(f"Cannot send message - {surface_id.value} surface not available")
            return False
        try:
            await engine.evaluate(build_client_message_script(message))
            return True
        except Exception as e:
            logger.error(f"Failed to send message to {surface_id.value}: {truncate(message, DATA_LOG_LIMIT)} - {e}")
            return False

    async def close(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
