"""CLI entry point for automation-bridge."""

import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .._version import __version__
from ..config import BridgeConfig, create_default_config, get_config_path, load_config
from ..exceptions import BridgeError
from ..services import (
    AutomationBridge,
    ControlService,
    MCPService,
    PlaywrightEngineFactory,
    WebSocketService,
)

logger = logging.getLogger(__name__)

# stdout belongs to the MCP transport in --mcp mode
console = Console(stderr=True)


class BridgeServer:
    """Main server orchestrating the bridge and its control surfaces."""

    def __init__(self, config: BridgeConfig):
        """Initialize the server.

        Args:
            config: Effective bridge configuration
        """
        self.config = config
        self.running = False
        self.factory = PlaywrightEngineFactory(config.engine)
        self.bridge = AutomationBridge(self.factory, config=config)
        self.websocket = WebSocketService(
            start_port=config.websocket.start_port,
            end_port=config.websocket.end_port,
            host=config.websocket.host,
        )
        self.control = ControlService(self.bridge, self.websocket)
        self.mcp = MCPService(self.bridge)

    async def start(self, url: Optional[str] = None) -> None:
        """Start the control server and present the bridge."""
        logger.info("Starting automation bridge server...")

        port = await self.control.start()
        logger.info(f"Control server listening on port {port}")

        if url:
            await self.bridge.load_url(url)
        await self.bridge.open()

        self.running = True
        logger.info("Automation bridge server started successfully")
        self.show_status()

    async def stop(self) -> None:
        """Stop all services."""
        if not self.running:
            return
        logger.info("Stopping automation bridge server...")
        self.running = False

        try:
            await self.control.stop()
        except Exception as e:
            logger.error(f"Error stopping control server: {e}")

        try:
            await self.bridge.shutdown()
        except Exception as e:
            logger.error(f"Error shutting down bridge: {e}")

        logger.info("Automation bridge server stopped")

    def show_status(self) -> None:
        """Show server status."""
        ws_info = self.websocket.get_server_info()
        status = self.bridge.get_status()

        table = Table(title=f"automation-bridge {__version__}", show_header=False)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Control Server", f"ws://{ws_info['host']}:{ws_info['port']}")
        table.add_row("Browser", f"{self.config.engine.browser} (headless={self.config.engine.headless})")
        table.add_row("Foreground", status["foreground"])
        for surface_id, surface in status["surfaces"].items():
            table.add_row(f"{surface_id} surface", surface.get("current_url") or "-")
        console.print(table)

    async def run_server(self, url: Optional[str] = None) -> None:
        """Run the server until interrupted."""
        await self.start(url)

        try:
            while self.running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def run_mcp_stdio(self, url: Optional[str] = None) -> None:
        """Run in MCP stdio mode with the control server in the background."""
        await self.start(url)
        try:
            await self.mcp.run_stdio()
        finally:
            await self.stop()


def _setup_logging(config: BridgeConfig, debug: bool) -> None:
    level = logging.DEBUG if debug else getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.logging.format)


@click.group()
@click.version_option(version=__version__, prog_name="automation-bridge")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration file (defaults to ~/.automation-bridge/config.json)",
)
@click.pass_context
def cli(ctx, debug, config_path):
    """🌉 automation-bridge - dual-surface browser controller.

    \b
    An interactive surface for the user and a hidden automation surface
    for scripted commands, driven over WebSocket or MCP.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--url", default=None, help="URL to load in the interactive surface on start")
@click.option("--mcp", "use_mcp", is_flag=True, help="Serve MCP tools over stdio")
@click.option("--headless", is_flag=True, default=None, help="Run the browser headless")
@click.pass_context
def serve(ctx, url, use_mcp, headless):
    """Start the bridge and its control server.

    \b
    Examples:
      automation-bridge serve
      automation-bridge serve --url https://example.com/connect
      automation-bridge serve --mcp      # for MCP clients
    """
    try:
        config = load_config(ctx.obj["config_path"])
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if headless:
        config.engine.headless = True
    _setup_logging(config, ctx.obj["debug"])

    server = BridgeServer(config)

    def signal_handler(sig, frame):
        logger.info("Received interrupt signal, shutting down...")
        server.running = False

    if not use_mcp:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        if use_mcp:
            asyncio.run(server.run_mcp_stdio(url))
        else:
            asyncio.run(server.run_server(url))
    except KeyboardInterrupt:
        logger.info("Server interrupted")
    except BridgeError as e:
        logger.error(f"Bridge error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


@cli.command("config")
@click.option("--init", "init_config", is_flag=True, help="Write the default configuration file")
@click.option("--json", "as_json", is_flag=True, help="Print the effective configuration as JSON")
@click.pass_context
def show_config(ctx, init_config, as_json):
    """Show the effective configuration."""
    config_path = get_config_path(ctx.obj["config_path"])

    if init_config:
        if config_path.exists():
            console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        else:
            written = create_default_config(config_path)
            console.print(f"[green]✓ Created default configuration at {written}[/green]")

    try:
        config = load_config(config_path)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(config.to_dict(), indent=2))
        return

    console.print(
        Panel.fit(
            f"[bold blue]Configuration[/bold blue]\n{config_path}"
            + ("" if config_path.exists() else " [dim](not found, using defaults)[/dim]"),
            border_style="blue",
        )
    )

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Section", style="cyan")
    table.add_column("Key")
    table.add_column("Value", style="green")
    for section, values in config.to_dict().items():
        for key, value in values.items():
            table.add_row(section, key, str(value))
    console.print(table)


def main():
    """Main CLI entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
