"""MCP tool surface for the automation bridge.

Tools:
- bridge_navigate: load a URL in the interactive surface or navigate the automation surface
- bridge_inject_script: run a script command in the automation surface
- bridge_show: bring a surface to the foreground
- bridge_status: report surface, navigation and command state
"""

import json
import logging
from typing import Any, Dict, List

from mcp.server import Server
from mcp.types import TextContent, Tool

from .._version import __version__
from ..models.commands import CommandType
from ..models.surface import SurfaceId
from .bridge import AutomationBridge

logger = logging.getLogger(__name__)


def _text(payload: Any) -> List[TextContent]:
    if isinstance(payload, str):
        return [TextContent(type="text", text=payload)]
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


class MCPService:
    """MCP server exposing bridge operations as tools."""

    def __init__(self, bridge: AutomationBridge):
        """Initialize MCP service.

        Args:
            bridge: Bridge the tools operate on
        """
        self.bridge = bridge
        self.server = Server(
            name="automation-bridge",
            version=__version__,
            instructions="Drive a dual-surface browser: navigate, inject scripts into the "
                         "automation surface and switch which surface is shown.",
        )
        self._setup_tools()

    def _setup_tools(self) -> None:
        """Register tool listing and routing."""

        @self.server.list_tools()
        async def handle_list_tools() -> list[Tool]:
            """List available tools."""
            return [
                Tool(
                    name="bridge_navigate",
                    description="Load a URL. target='ui' starts a new session in the interactive surface; "
                                "target='automation' navigates the automation surface.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "url": {"type": "string", "description": "URL to load"},
                            "target": {
                                "type": "string",
                                "enum": [s.value for s in SurfaceId],
                                "default": SurfaceId.AUTOMATION.value,
                                "description": "Surface to navigate",
                            },
                            "command_id": {
                                "type": "string",
                                "description": "[automation] Command id reported with navigation events",
                            },
                        },
                        "required": ["url"],
                    },
                ),
                Tool(
                    name="bridge_inject_script",
                    description="Execute JavaScript in the automation surface. Scripts that call "
                                "window.hostBridge.postMessage({commandId, type, value}) resolve "
                                "from that reply; others resolve from their return value.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "script": {"type": "string", "description": "JavaScript to execute"},
                            "command_id": {"type": "string", "description": "Command id for correlation"},
                            "command_type": {
                                "type": "string",
                                "enum": [t.value for t in CommandType],
                                "default": CommandType.INJECT_SCRIPT.value,
                            },
                        },
                        "required": ["script"],
                    },
                ),
                Tool(
                    name="bridge_show",
                    description="Bring the interactive ('ui') or automation surface to the foreground",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "surface": {"type": "string", "enum": [s.value for s in SurfaceId]},
                        },
                        "required": ["surface"],
                    },
                ),
                Tool(
                    name="bridge_status",
                    description="Report surface, navigation, visibility and pending command state",
                    inputSchema={"type": "object", "properties": {}},
                ),
            ]

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
            """Route tool calls to handlers."""
            try:
                if name == "bridge_navigate":
                    return await self._handle_navigate(arguments)
                elif name == "bridge_inject_script":
                    return await self._handle_inject_script(arguments)
                elif name == "bridge_show":
                    return await self._handle_show(arguments)
                elif name == "bridge_status":
                    return await self._handle_status(arguments)
                else:
                    return _text(f"Unknown tool: {name}")
            except ValueError as e:
                return _text(f"Error: {e}")

    async def _handle_navigate(self, arguments: Dict[str, Any]) -> List[TextContent]:
        url = arguments.get("url")
        if not url:
            return _text("Error: 'url' is required")

        target = SurfaceId(arguments.get("target", SurfaceId.AUTOMATION.value))
        if target is SurfaceId.UI:
            started = await self.bridge.load_url(url)
            if started:
                return _text(f"Loading {url} in the interactive surface")
            return _text(f"Stored {url}; it will load when the bridge is opened")

        started = await self.bridge.navigate_automation(url, arguments.get("command_id"))
        if started:
            return _text(f"Navigating automation surface to {url}")
        return _text(f"Navigation to {url} could not start (surfaces not available)")

    async def _handle_inject_script(self, arguments: Dict[str, Any]) -> List[TextContent]:
        script = arguments.get("script")
        if not script:
            return _text("Error: 'script' is required")

        result = await self.bridge.inject_script(
            script,
            command_id=arguments.get("command_id"),
            command_type=CommandType(arguments.get("command_type", CommandType.INJECT_SCRIPT.value)),
        )
        return _text(result.to_dict())

    async def _handle_show(self, arguments: Dict[str, Any]) -> List[TextContent]:
        surface = SurfaceId(arguments.get("surface", ""))
        changed = await self.bridge.show(surface)
        state = "switched to" if changed else "already showing"
        return _text(f"Visibility: {state} {surface.value} surface")

    async def _handle_status(self, arguments: Dict[str, Any]) -> List[TextContent]:
        status = self.bridge.get_status()
        status["browser_state"] = await self.bridge.current_browser_state()
        return _text(status)

    async def run_stdio(self) -> None:
        """Run the MCP server with stdio transport."""
        from mcp.server import NotificationOptions
        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            init_options = self.server.create_initialization_options(
                notification_options=NotificationOptions(
                    tools_changed=False, prompts_changed=False, resources_changed=False
                ),
                experimental_capabilities={},
            )

            await self.server.run(
                read_stream,
                write_stream,
                init_options,
                raise_exceptions=False,
                stateless=False,
            )
