"""WebSocket transport for remote controllers."""

import asyncio
import json
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

import websockets
from websockets.server import WebSocketServerProtocol

from .._version import __version__

logger = logging.getLogger(__name__)

REPLAY_LIMIT = 100

MessageHandler = Callable[[Dict[str, Any], WebSocketServerProtocol], Awaitable[None]]


class WebSocketService:
    """WebSocket server with port auto-discovery and event replay.

    Every broadcast event gets a sequence number and is kept in a bounded
    buffer. A controller that reconnects sends ``connection_init`` with the
    last sequence it saw and receives the events it missed in the
    ``connection_ack``.
    """

    def __init__(
        self,
        start_port: int = 8875,
        end_port: int = 8895,
        host: str = "localhost",
        buffer_size: int = 1000,
    ):
        """Initialize WebSocket service.

        Args:
            start_port: Starting port for auto-discovery
            end_port: Ending port for auto-discovery
            host: Host to bind to
            buffer_size: Number of broadcast events kept for replay
        """
        self.start_port = start_port
        self.end_port = end_port
        self.host = host
        self.port: Optional[int] = None
        self.server = None
        self._connections: Set[WebSocketServerProtocol] = set()
        self._message_handlers: Dict[str, MessageHandler] = {}
        self._connection_handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {}
        self._info_provider: Optional[Callable[[], Dict[str, Any]]] = None

        self.event_buffer: Deque[Dict[str, Any]] = deque(maxlen=buffer_size)
        self.current_sequence: int = 0

    async def start(self) -> int:
        """Start the server on the first free port in the range.

        Returns:
            Port number the server is listening on

        Raises:
            RuntimeError: If no available port is found
        """
        for port in range(self.start_port, self.end_port + 1):
            try:
                self.server = await websockets.serve(
                    self._handle_connection,
                    self.host,
                    port,
                    ping_interval=20,
                    ping_timeout=10,
                )
                self.port = port
                logger.info(f"Control server started on ws://{self.host}:{port}")
                return port
            except OSError as e:
                if port == self.end_port:
                    raise RuntimeError(
                        f"No available port found in range {self.start_port}-{self.end_port}"
                    ) from e
                continue

        raise RuntimeError("Failed to start control server")

    async def stop(self) -> None:
        """Close every connection and stop the server."""
        if self.server:
            for conn in list(self._connections):
                await conn.close()

            self.server.close()
            await self.server.wait_closed()
            self.server = None
            self.port = None
            logger.info("Control server stopped")

    def register_message_handler(self, message_type: str, handler: MessageHandler) -> None:
        """Register an async handler ``handler(message, websocket)`` for a message type."""
        self._message_handlers[message_type] = handler

    def register_connection_handler(self, event: str, handler: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Register a handler for 'connect' or 'disconnect'."""
        self._connection_handlers[event] = handler

    def set_info_provider(self, provider: Callable[[], Dict[str, Any]]) -> None:
        """Provide extra fields for ``server_info`` responses."""
        self._info_provider = provider

    async def _handle_connection(self, websocket: WebSocketServerProtocol, path: Optional[str] = None) -> None:
        self._connections.add(websocket)
        connection_info = {"remote_address": websocket.remote_address, "websocket": websocket}

        if "connect" in self._connection_handlers:
            try:
                await self._connection_handlers["connect"](connection_info)
            except Exception as e:
                logger.error(f"Error in connection handler: {e}")

        try:
            async for message in websocket:
                await self._handle_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Connection closed from {websocket.remote_address}")
        except Exception as e:
            logger.error(f"Error handling connection: {e}")
        finally:
            self._connections.discard(websocket)
            if "disconnect" in self._connection_handlers:
                try:
                    await self._connection_handlers["disconnect"](connection_info)
                except Exception as e:
                    logger.error(f"Error in disconnection handler: {e}")

    async def _handle_message(self, websocket: WebSocketServerProtocol, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse message: {e}")
            await self.send_message(websocket, {"type": "error", "error": f"Invalid JSON: {e}"})
            return

        if not isinstance(data, dict):
            await self.send_message(websocket, {"type": "error", "error": "Message must be a JSON object"})
            return

        message_type = data.get("type", "unknown")

        if message_type == "connection_init":
            await self.handle_connection_init(data, websocket)
            return

        if message_type == "heartbeat":
            await self.send_message(websocket, {"type": "pong", "timestamp": data.get("timestamp", 0)})
            return

        if message_type == "server_info":
            await self.send_message(websocket, {"type": "server_info_response", **self.get_server_info()})
            return

        handler = self._message_handlers.get(message_type, self._message_handlers.get("default"))
        if handler is None:
            logger.warning(f"No handler for message type: {message_type}")
            await self.send_message(
                websocket, {"type": "error", "error": f"Unknown message type: {message_type}"}
            )
            return

        try:
            await handler(data, websocket)
        except Exception as e:
            logger.error(f"Error handling {message_type} message: {e}")

    async def handle_connection_init(self, message: Dict[str, Any], websocket: WebSocketServerProtocol) -> None:
        """Acknowledge a controller connection and replay missed events.

        Args:
            message: The connection_init message
            websocket: WebSocket connection
        """
        last_sequence = message.get("lastSequence", 0)
        client = message.get("client", "unknown")
        logger.info(f"Connection init from {client}, lastSequence={last_sequence}")

        replay = self.get_events_after(last_sequence)
        await self.send_message(websocket, {
            "type": "connection_ack",
            "serverVersion": __version__,
            "currentSequence": self.current_sequence,
            "replay": replay[:REPLAY_LIMIT],
        })
        logger.info(f"Sent connection_ack with {len(replay[:REPLAY_LIMIT])} replayed events")

    def get_events_after(self, last_sequence: int) -> List[Dict[str, Any]]:
        return [event for event in self.event_buffer if event.get("sequence", 0) > last_sequence]

    def _add_sequence(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.current_sequence += 1
        message["sequence"] = self.current_sequence
        self.event_buffer.append(message.copy())
        return message

    async def send_message(self, websocket: WebSocketServerProtocol, message: Dict[str, Any]) -> None:
        """Send a message to one connection."""
        try:
            await websocket.send(json.dumps(message, default=str))
        except Exception as e:
            logger.error(f"Failed to send message: {e}")

    async def broadcast_event(self, event: Dict[str, Any]) -> None:
        """Sequence, buffer and broadcast an event to every connection."""
        event = self._add_sequence(event)
        if not self._connections:
            return

        payload = json.dumps(event, default=str)
        results = await asyncio.gather(
            *(websocket.send(payload) for websocket in list(self._connections)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Failed to broadcast event: {result}")

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_server_info(self) -> Dict[str, Any]:
        """Get server information."""
        info = {
            "host": self.host,
            "port": self.port,
            "is_running": self.server is not None,
            "connection_count": self.get_connection_count(),
            "port_range": f"{self.start_port}-{self.end_port}",
            "version": __version__,
            "current_sequence": self.current_sequence,
        }
        if self._info_provider is not None:
            try:
                info.update(self._info_provider())
            except Exception as e:
                logger.error(f"Error collecting server info: {e}")
        return info
