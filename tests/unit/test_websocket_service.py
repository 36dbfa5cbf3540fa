"""Tests for the WebSocket control transport."""

import json
from unittest.mock import AsyncMock

import pytest

from automation_bridge._version import __version__
from automation_bridge.services.websocket_service import REPLAY_LIMIT, WebSocketService


def sent(websocket) -> list:
    return [json.loads(call.args[0]) for call in websocket.send.call_args_list]


class TestWebSocketService:
    """Test message handling and event replay."""

    @pytest.mark.asyncio
    async def test_broadcast_sequences_and_buffers(self):
        """Events are numbered and buffered even without connections."""
        # Setup
        service = WebSocketService()

        # Test
        await service.broadcast_event({"type": "navigation", "url": "https://example.com"})
        await service.broadcast_event({"type": "closed"})

        # Assert
        assert service.current_sequence == 2
        assert [e["sequence"] for e in service.event_buffer] == [1, 2]

    @pytest.mark.asyncio
    async def test_broadcast_reaches_connections(self):
        service = WebSocketService()
        websocket = AsyncMock()
        service._connections.add(websocket)

        await service.broadcast_event({"type": "titleChanged", "title": "Home"})

        assert sent(websocket) == [{"type": "titleChanged", "title": "Home", "sequence": 1}]

    @pytest.mark.asyncio
    async def test_connection_init_replays_missed_events(self):
        """A reconnecting controller receives events after its last sequence."""
        # Setup
        service = WebSocketService()
        for index in range(3):
            await service.broadcast_event({"type": "navigation", "index": index})
        websocket = AsyncMock()

        # Test
        await service._handle_message(websocket, json.dumps({"type": "connection_init", "lastSequence": 1}))

        # Assert
        ack = sent(websocket)[0]
        assert ack["type"] == "connection_ack"
        assert ack["serverVersion"] == __version__
        assert ack["currentSequence"] == 3
        assert [e["sequence"] for e in ack["replay"]] == [2, 3]

    @pytest.mark.asyncio
    async def test_replay_is_capped(self):
        service = WebSocketService()
        for index in range(REPLAY_LIMIT + 20):
            await service.broadcast_event({"type": "navigation", "index": index})
        websocket = AsyncMock()

        await service.handle_connection_init({"lastSequence": 0}, websocket)

        assert len(sent(websocket)[0]["replay"]) == REPLAY_LIMIT

    @pytest.mark.asyncio
    async def test_heartbeat_answered_with_pong(self):
        service = WebSocketService()
        websocket = AsyncMock()

        await service._handle_message(websocket, json.dumps({"type": "heartbeat", "timestamp": 123}))

        assert sent(websocket) == [{"type": "pong", "timestamp": 123}]

    @pytest.mark.asyncio
    async def test_invalid_and_unknown_messages_get_errors(self):
        service = WebSocketService()
        websocket = AsyncMock()

        await service._handle_message(websocket, "{broken")
        await service._handle_message(websocket, json.dumps({"type": "teleport"}))

        errors = sent(websocket)
        assert [e["type"] for e in errors] == ["error", "error"]
        assert "Invalid JSON" in errors[0]["error"]
        assert "teleport" in errors[1]["error"]

    @pytest.mark.asyncio
    async def test_registered_handler_receives_message(self):
        # Setup
        service = WebSocketService()
        handler = AsyncMock()
        service.register_message_handler("show", handler)
        websocket = AsyncMock()

        # Test
        await service._handle_message(websocket, json.dumps({"type": "show", "surface": "ui"}))

        # Assert
        handler.assert_awaited_once_with({"type": "show", "surface": "ui"}, websocket)

    def test_server_info_includes_provider_fields(self):
        service = WebSocketService(start_port=9000, end_port=9010)
        service.set_info_provider(lambda: {"bridge": {"ready": False}})

        info = service.get_server_info()

        assert info["port_range"] == "9000-9010"
        assert info["is_running"] is False
        assert info["bridge"] == {"ready": False}
