"""Tests for the MCP tool handlers."""

import json

import pytest

from automation_bridge.models.surface import SurfaceId
from automation_bridge.services.mcp_service import MCPService


@pytest.fixture
def mcp(bridge):
    return MCPService(bridge)


class TestMCPTools:
    """Test tool handlers against a fake-engine bridge."""

    @pytest.mark.asyncio
    async def test_navigate_ui_before_open_is_stored(self, mcp, bridge):
        content = await mcp._handle_navigate({"url": "https://example.com", "target": "ui"})

        assert "will load when the bridge is opened" in content[0].text
        assert bridge.initial_url == "https://example.com"

    @pytest.mark.asyncio
    async def test_inject_script_returns_result_json(self, mcp, bridge, factory):
        # Setup
        await bridge.open()
        await mcp._handle_navigate({"url": "https://example.com/login", "command_id": "n-1"})
        factory.latest(SurfaceId.AUTOMATION).script_results["1 + 1"] = 2

        # Test
        content = await mcp._handle_inject_script({"script": "1 + 1", "command_id": "m-1"})

        # Assert
        payload = json.loads(content[0].text)
        assert payload["commandId"] == "m-1"
        assert payload["result"] == 2

    @pytest.mark.asyncio
    async def test_show_and_status(self, mcp, bridge):
        await bridge.open()

        shown = await mcp._handle_show({"surface": "automation"})
        status = json.loads((await mcp._handle_status({}))[0].text)

        assert "switched to automation" in shown[0].text
        assert status["foreground"] == "automation"
        assert status["browser_state"] == {"url": "unknown"}

    @pytest.mark.asyncio
    async def test_missing_arguments(self, mcp):
        assert "required" in (await mcp._handle_navigate({}))[0].text
        assert "required" in (await mcp._handle_inject_script({}))[0].text
