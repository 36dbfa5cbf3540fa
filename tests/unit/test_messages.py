"""Tests for inbound message validation and command models."""

import json

import pytest

from automation_bridge.exceptions import MalformedMessageError
from automation_bridge.models.commands import CommandType, ResolutionMode, ScriptCommand, ScriptResult
from automation_bridge.models.messages import (
    AppDefinedMessage,
    ClientNavigationMessage,
    DiagnosticMessage,
    NavigateMessage,
    NavigationMethod,
    PostedMessage,
    ScriptReplyMessage,
    SendToBackendMessage,
    parse_bridge_message,
)
from automation_bridge.models.surface import SurfaceId


class TestParseBridgeMessage:
    """Test parse_bridge_message."""

    def test_navigate_message(self):
        """Navigate messages carry their URL and source surface."""
        message = parse_bridge_message({"type": "navigate", "url": "https://example.com"}, SurfaceId.UI)

        assert isinstance(message, NavigateMessage)
        assert message.url == "https://example.com"
        assert message.source_surface is SurfaceId.UI

    def test_navigate_without_url_is_malformed(self):
        with pytest.raises(MalformedMessageError):
            parse_bridge_message({"type": "navigate"}, SurfaceId.UI)

    def test_non_object_body_is_malformed(self):
        with pytest.raises(MalformedMessageError):
            parse_bridge_message("navigate", SurfaceId.UI)

    def test_script_reply_from_json_string(self):
        """A posted JSON string with commandId and type becomes a script reply."""
        # Setup
        data = json.dumps({"commandId": "cmd-1", "type": "injectScript", "value": 42})

        # Test
        message = parse_bridge_message({"type": "message", "data": data}, SurfaceId.AUTOMATION)

        # Assert
        assert isinstance(message, ScriptReplyMessage)
        assert message.command_id == "cmd-1"
        assert message.reply_type is CommandType.INJECT_SCRIPT
        assert message.value == 42
        assert message.success is True

    def test_wait_reply_with_error(self):
        message = parse_bridge_message(
            {"data": {"commandId": "w-1", "type": "wait", "error": "selector not found"}},
            SurfaceId.AUTOMATION,
        )

        assert isinstance(message, ScriptReplyMessage)
        assert message.reply_type is CommandType.WAIT
        assert message.success is False
        assert message.error == "selector not found"

    def test_posted_data_without_command_is_application_data(self):
        """Plain posted data is not mistaken for a reply."""
        message = parse_bridge_message({"type": "message", "data": "ready"}, SurfaceId.AUTOMATION)

        assert isinstance(message, PostedMessage)
        assert message.data == "ready"

    def test_client_navigation(self):
        message = parse_bridge_message(
            {
                "type": "clientNavigation",
                "url": "https://example.com/#b",
                "navigationMethod": "hashchange",
                "oldURL": "https://example.com/#a",
                "newURL": "https://example.com/#b",
            },
            SurfaceId.AUTOMATION,
        )

        assert isinstance(message, ClientNavigationMessage)
        assert message.navigation_method is NavigationMethod.HASHCHANGE
        assert message.old_url == "https://example.com/#a"

    def test_client_navigation_with_unknown_method_is_malformed(self):
        with pytest.raises(MalformedMessageError):
            parse_bridge_message(
                {"type": "clientNavigation", "url": "https://example.com", "navigationMethod": "teleport"},
                SurfaceId.UI,
            )

    def test_send_to_backend_validates_headers(self):
        """Headers must map strings to strings."""
        body = {"type": "sendToBackend", "apiPath": "/api/v1/items", "data": {"a": 1}, "headers": {"X-Id": 7}}

        with pytest.raises(MalformedMessageError):
            parse_bridge_message(body, SurfaceId.UI)

        body["headers"] = {"X-Id": "7"}
        message = parse_bridge_message(body, SurfaceId.UI)
        assert isinstance(message, SendToBackendMessage)
        assert message.api_path == "/api/v1/items"

    def test_diagnostic_message(self):
        message = parse_bridge_message(
            {"type": "javascript_error", "message": "boom", "line": 3, "column": 9, "isWeakMapError": True},
            SurfaceId.AUTOMATION,
        )

        assert isinstance(message, DiagnosticMessage)
        assert message.line == 3
        assert message.is_weak_map_error is True

    def test_unknown_type_is_app_defined(self):
        """Unknown message types are forwarded with their data untouched."""
        message = parse_bridge_message({"type": "cartUpdated", "data": {"items": 2}}, SurfaceId.UI)

        assert isinstance(message, AppDefinedMessage)
        assert message.type == "cartUpdated"
        assert message.data == {"items": 2}

    def test_timestamp_converted_from_milliseconds(self):
        message = parse_bridge_message({"type": "close", "timestamp": 1700000000000}, SurfaceId.UI)

        assert message.timestamp == pytest.approx(1700000000.0)


class TestScriptCommand:
    """Test ScriptCommand resolution mode and payload parsing."""

    def test_plain_script_is_direct(self):
        assert ScriptCommand(script="document.title").resolution_mode is ResolutionMode.DIRECT

    def test_out_of_band_script_is_correlated(self):
        command = ScriptCommand(script="window.hostBridge.postMessage({commandId: 'x', type: 'injectScript'})")

        assert command.resolution_mode is ResolutionMode.CORRELATED

    def test_wait_command_is_correlated(self):
        command = ScriptCommand(script="waitFor('#login')", command_type=CommandType.WAIT)

        assert command.resolution_mode is ResolutionMode.CORRELATED

    def test_from_dict(self):
        command = ScriptCommand.from_dict({"script": "1 + 1", "commandId": "c-9", "commandType": "click"})

        assert command.command_id == "c-9"
        assert command.command_type is CommandType.CLICK

    def test_from_dict_requires_script(self):
        with pytest.raises(ValueError):
            ScriptCommand.from_dict({"commandId": "c-9"})

    def test_generated_command_ids_are_unique(self):
        assert ScriptCommand(script="1").command_id != ScriptCommand(script="1").command_id


class TestScriptResult:
    """Test ScriptResult serialization."""

    def test_error_result_to_dict(self):
        result = ScriptResult.from_error("c-1", ValueError("bad"))

        assert result.to_dict() == {
            "commandId": "c-1",
            "success": False,
            "outcome": "normal",
            "error": "bad",
            "errorKind": "ValueError",
        }
