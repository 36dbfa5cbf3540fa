"""Automation bridge facade.

Design Decision: Facade over Single-Purpose Services
----------------------------------------------------
Rationale: The bridge is composed of small services that each own one part
of the state: ``SurfaceManager`` (engine handles), ``NavigationTracker``
(per-surface navigation state and timers), ``ScriptInjector`` (command
readiness and correlation), ``VisibilityArbiter`` (foreground surface) and
``MessageChannel``/``BridgeDispatcher`` (inbound page traffic).
``AutomationBridge`` wires them together, receives engine callbacks and
exposes the controller-facing operations.

Concurrency: everything runs on one asyncio event loop and no locks are
used. Suspension points are engine calls, retry delays and timers; state
transitions that must be atomic happen between awaits.

Usage:
    bridge = AutomationBridge(PlaywrightEngineFactory(config), controller, config)
    await bridge.open()
    await bridge.load_url("https://example.com/connect")
    await bridge.navigate_automation("https://example.com/login", command_id="nav-1")
    result = await bridge.inject_script("document.title", command_id="cmd-1")
"""

import logging
from typing import Any, Dict, Optional, Tuple

from ..config import BridgeConfig
from ..models.commands import CommandType, ScriptCommand, ScriptResult
from ..models.state import BackNavigationGate
from ..models.surface import SurfaceId
from .bootstrap import LOCATION_PROBE, BootstrapLoader
from .controller import ControllerEvents, GuardedController
from .diagnostics import DiagnosticsSink, LoggingDiagnostics, truncate
from .dispatcher import BridgeDispatcher, CloseProtocol
from .engine import EngineFactory, EngineObserver
from .injection_service import ScriptInjector
from .message_channel import MessageChannel
from .navigation_service import NavigationTracker
from .surface_service import SurfaceManager
from .visibility_service import VisibilityArbiter

logger = logging.getLogger(__name__)


class AutomationBridge(EngineObserver):
    """Dual-surface browser controller."""

    def __init__(
        self,
        factory: EngineFactory,
        controller: Optional[ControllerEvents] = None,
        config: Optional[BridgeConfig] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        bootstrap: Optional[BootstrapLoader] = None,
    ):
        """Initialize automation bridge.

        Args:
            factory: Engine factory used to create both surfaces
            controller: Receiver for bridge events
            config: Bridge configuration
            diagnostics: Telemetry sink (defaults to logging)
            bootstrap: Loader for in-page scripts
        """
        self.factory = factory
        self.config = config or BridgeConfig()
        self.controller = GuardedController(controller or ControllerEvents())
        self.diagnostics = diagnostics or LoggingDiagnostics()
        self.bootstrap = bootstrap or BootstrapLoader()
        timings = self.config.timings

        self.gate = BackNavigationGate()
        self.surfaces = SurfaceManager(factory, self.bootstrap, self, self.config)
        self.navigation = NavigationTracker(self.surfaces, self.controller, self.diagnostics, timings, self.gate)
        self.injector = ScriptInjector(self.surfaces, self.bootstrap, self.controller, self.diagnostics, timings)
        self.visibility = VisibilityArbiter(self.surfaces, self.controller, timings)
        self.close_protocol = CloseProtocol(self.surfaces, self.visibility, self.dismiss)
        self.channel = MessageChannel(self.surfaces, self.diagnostics)
        self.dispatcher = BridgeDispatcher(self)
        self.channel.set_handler(self.dispatcher.dispatch)
        self.surfaces.on_surfaces_created = self.visibility.reassert

        self.title: Optional[str] = None
        self.initial_url: Optional[str] = None
        self.deferred_automation: Optional[Tuple[str, Optional[str]]] = None
        self.is_presented = False

    def set_controller(self, controller: ControllerEvents) -> None:
        """Replace the controller receiving bridge events."""
        self.controller.controller = controller

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def navigation_started(self, surface_id: SurfaceId, url: str) -> None:
        self.navigation.navigation_started(surface_id, url)

    def navigation_redirected(self, surface_id: SurfaceId, url: str) -> None:
        self.navigation.navigation_redirected(surface_id, url)

    def navigation_committed(self, surface_id: SurfaceId, url: str) -> None:
        self.navigation.navigation_committed(surface_id, url)

    def navigation_finished(self, surface_id: SurfaceId, url: str) -> None:
        self.navigation.navigation_finished(surface_id, url)

    def navigation_failed(self, surface_id: SurfaceId, url: Optional[str], error: str) -> None:
        self.navigation.navigation_failed(surface_id, url, error)

    def script_message(self, surface_id: SurfaceId, body: Any) -> None:
        self.channel.post(surface_id, body)

    # ------------------------------------------------------------------
    # Presentation lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Present the bridge: create surfaces and load any deferred URL."""
        logger.info("Presenting automation bridge")
        self.surfaces.view_attached = True
        self.is_presented = True
        self.close_protocol.reset()

        await self.surfaces.ensure_surfaces()
        await self.visibility.reset()

        if self.initial_url:
            url = self.initial_url
            self.initial_url = None
            logger.info(f"Loading deferred URL: {truncate(url)}")
            await self.navigation.request_load(SurfaceId.UI, url)

        if self.deferred_automation:
            url, command_id = self.deferred_automation
            self.deferred_automation = None
            logger.info(f"Running deferred automation navigation: {truncate(url)}")
            await self.navigation.navigate_automation(url, command_id)

    async def close(self) -> None:
        """User-initiated close; runs the confirmation protocol."""
        await self.close_protocol.request_close()

    async def dismiss(self) -> None:
        """Close the presentation and notify the controller."""
        logger.info("Closing automation bridge")
        self.is_presented = False
        self.close_protocol.reset()
        self.navigation.reset()
        self.initial_url = None
        self.deferred_automation = None
        self.controller.on_closed()

    # ------------------------------------------------------------------
    # Controller operations
    # ------------------------------------------------------------------

    async def load_url(self, url: str) -> bool:
        """Start a new session by loading ``url`` in the interactive surface.

        If the surfaces do not exist yet the URL is kept and loaded by
        ``open``.

        Returns:
            True if the load was started now
        """
        logger.info(f"Loading URL: {truncate(url)}")
        await self._reset_session()

        if not self.surfaces.has_surfaces():
            logger.warning("Surfaces not ready, storing URL to load later")
            self.initial_url = url
            return False

        engine = self.surfaces.engine(SurfaceId.UI)
        if engine.is_loading:
            logger.debug("Stopping current interactive load")
            await engine.stop_loading()
        return await self.navigation.request_load(SurfaceId.UI, url)

    async def _reset_session(self) -> None:
        logger.info("Resetting state for new session")
        self.initial_url = None
        self.deferred_automation = None
        self.navigation.reset()

        if self.visibility.foreground is not SurfaceId.UI or self.visibility.transitioning:
            await self.visibility.request_show(SurfaceId.UI)

        engine = self.surfaces.engine(SurfaceId.AUTOMATION)
        if engine is not None and engine.is_loading:
            logger.debug("Stopping automation surface loading")
            await engine.stop_loading()

    async def navigate_automation(self, url: str, command_id: Optional[str] = None) -> bool:
        """Navigate the automation surface on behalf of the controller.

        Before the bridge is opened the navigation is kept and run by
        ``open``.

        Returns:
            True if the navigation was started or completed immediately
        """
        logger.info(f"Navigate automation surface to: {truncate(url)}")
        if not self.surfaces.has_surfaces():
            if not self.surfaces.view_attached:
                logger.warning("Surfaces not created and view not attached, navigation deferred until open")
                self.deferred_automation = (url, command_id)
                return False
            await self.surfaces.ensure_surfaces()
        return await self.navigation.navigate_automation(url, command_id)

    async def navigate_foreground(self, url: str) -> bool:
        """Load ``url`` in whichever surface is currently presented."""
        return await self.navigation.request_load(self.visibility.foreground, url)

    async def inject_script(
        self,
        script: str,
        command_id: Optional[str] = None,
        command_type: CommandType = CommandType.INJECT_SCRIPT,
    ) -> ScriptResult:
        """Run a script command in the automation surface.

        Returns:
            ScriptResult; failures are reported in the result, not raised
        """
        command = ScriptCommand(script=script, command_type=command_type)
        if command_id:
            command.command_id = command_id
        return await self.injector.inject(command)

    async def run_command(self, command: ScriptCommand) -> ScriptResult:
        return await self.injector.inject(command)

    async def show(self, surface: SurfaceId) -> bool:
        return await self.visibility.request_show(surface)

    async def go_back(self) -> bool:
        return await self.navigation.go_back()

    async def set_automation_user_agent(self, user_agent: Optional[str]) -> None:
        await self.surfaces.set_automation_user_agent(user_agent)

    async def change_automation_user_agent(self, user_agent: str, reload: bool = True) -> None:
        """Apply a new automation user agent and reload the current document."""
        await self.surfaces.set_automation_user_agent(user_agent)
        if not reload:
            return
        surface = self.surfaces.automation
        url = surface.current_url or surface.intended_url
        if url:
            logger.info(f"Reloading automation surface with new user agent: {truncate(url)}")
            await self.navigation.request_load(SurfaceId.AUTOMATION, url)

    async def update_global_script(self, script: Optional[str]) -> bool:
        """Change the script appended to the automation bootstrap.

        A non-empty change recreates the automation surface and reloads its
        previous document.

        Returns:
            True if the automation surface was recreated
        """
        script = script or ""
        if script == self.surfaces.global_script:
            return False
        self.surfaces.global_script = script
        # An engine created before this point carries the previous script
        await self.surfaces.wait_for_creation()

        if not script:
            logger.info("Global script cleared, applies to the next automation surface")
            return False
        if not self.surfaces.automation.exists:
            logger.info("Global script stored, automation surface not created yet")
            return False

        self.navigation.cancel(SurfaceId.AUTOMATION)
        previous_url = await self.surfaces.recreate_automation()
        if previous_url:
            await self.navigation.request_load(SurfaceId.AUTOMATION, previous_url)
        return True

    async def send_to_page(self, surface: SurfaceId, message: Dict[str, Any]) -> bool:
        return await self.channel.send(surface, message)

    async def current_browser_state(self) -> Dict[str, Any]:
        """Report the automation URL, falling back to the last known URL."""
        surface = self.surfaces.automation
        fallback = surface.last_known_url or surface.intended_url or "unknown"
        if surface.engine is None:
            return {"url": fallback}
        try:
            url = await surface.engine.evaluate(LOCATION_PROBE)
        except Exception as e:
            logger.warning(f"Failed to read automation URL: {e}")
            return {"url": fallback}
        return {"url": url if isinstance(url, str) else fallback}

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def release_surfaces(self) -> None:
        """Tear down both surfaces and fail all pending work."""
        self.deferred_automation = None
        self.dispatcher.cancel()
        self.navigation.reset()
        failed = self.injector.fail_all()
        if failed:
            logger.info(f"Failed {failed} pending commands on release")
        self.visibility.cancel()
        self.surfaces.view_attached = False
        await self.surfaces.release()

    async def shutdown(self) -> None:
        """Release surfaces and backend resources."""
        await self.release_surfaces()
        await self.channel.close()
        try:
            await self.factory.shutdown()
        except Exception as e:
            logger.error(f"Error shutting down engine backend: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Summarize bridge state for status reporting."""
        return {
            "presented": self.is_presented,
            "title": self.title,
            "foreground": self.visibility.foreground.value,
            "transitioning": self.visibility.transitioning,
            "back_navigation_disabled": self.gate.disabled,
            "ready": self.surfaces.is_ready(),
            "surfaces": {sid.value: s.to_dict() for sid, s in self.surfaces.surfaces.items()},
            "pending_commands": self.injector.pending_count,
            "awaiting_replies": self.injector.awaiting_reply,
            "close_press_count": self.close_protocol.state.press_count,
            "quarantined_messages": len(self.channel.quarantine),
        }
