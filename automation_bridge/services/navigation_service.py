"""Per-surface navigation tracking with timeout enforcement.

State machine per surface::

    Idle -> Provisional          load requested (timeout armed)
    Provisional -> Committed     redirect or first byte (timeout stays armed)
    Provisional|Committed -> Finished | Failed | TimedOut

Entering a terminal state cancels the surface's timers. Client-side history
navigations are reported as the same ``finished`` event as full loads.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..config import TimingConfig
from ..exceptions import NavigationFailedError, NavigationTimedOutError
from ..models.events import NavigationEvent, NavigationPhase
from ..models.messages import NavigationMethod
from ..models.state import BackNavigationGate
from ..models.surface import NavigationState, SurfaceId
from .bootstrap import PAGE_STATE_PROBE
from .controller import ControllerEvents
from .diagnostics import DiagnosticsSink, truncate
from .surface_service import SurfaceManager
from .timers import TimerGroup

logger = logging.getLogger(__name__)

TIMEOUT_TIMER = "timeout"
CHECK_TIMER = "check"


class NavigationTracker:
    """Tracks navigation lifecycle for both surfaces."""

    def __init__(
        self,
        surfaces: SurfaceManager,
        controller: ControllerEvents,
        diagnostics: DiagnosticsSink,
        timings: TimingConfig,
        gate: BackNavigationGate,
    ):
        """Initialize navigation tracker.

        Args:
            surfaces: Surface manager owning the engines
            controller: Receiver for navigation events
            diagnostics: Telemetry sink
            timings: Timeout configuration
            gate: Back navigation gate shared with the bridge
        """
        self.surfaces = surfaces
        self.controller = controller
        self.diagnostics = diagnostics
        self.timings = timings
        self.gate = gate
        self.timers = TimerGroup("navigation")

        self.back_navigation_in_progress = False
        self._command_ids: Dict[SurfaceId, Optional[str]] = {}
        self._started_at: Dict[SurfaceId, float] = {}

    # ------------------------------------------------------------------
    # Host-initiated navigation
    # ------------------------------------------------------------------

    async def request_load(self, surface_id: SurfaceId, url: str, command_id: Optional[str] = None) -> bool:
        """Record the intended URL, start tracking and ask the engine to load.

        Args:
            surface_id: Surface to load in
            url: URL to load
            command_id: Controller command that requested the load

        Returns:
            True if the engine accepted the load request
        """
        surface = self.surfaces.surface(surface_id)
        surface.intended_url = url

        engine = surface.engine
        if engine is None:
            logger.warning(f"Cannot load {truncate(url)} - {surface_id.value} surface has been released")
            return False

        self.begin(surface_id, url, command_id)
        try:
            await engine.load(url)
        except Exception as e:
            logger.error(f"Engine rejected load of {truncate(url)} on {surface_id.value}: {e}")
            self.navigation_failed(surface_id, url, str(e))
            return False
        return True

    async def navigate_automation(self, url: str, command_id: Optional[str] = None) -> bool:
        """Navigate the automation surface on behalf of the controller.

        A navigation to the URL the surface already shows completes
        immediately with a synthetic ``finished`` event and leaves the engine
        untouched.

        Returns:
            True if a navigation was started or short-circuited
        """
        surface = self.surfaces.automation
        if surface.current_url and surface.current_url == url:
            logger.info(f"Automation surface already at {truncate(url)}, completing immediately")
            surface.intended_url = url
            if not surface.navigation_state.in_flight:
                surface.navigation_state = NavigationState.FINISHED
            self.gate.disabled = False
            self._emit(NavigationEvent(
                surface=SurfaceId.AUTOMATION,
                url=url,
                phase=NavigationPhase.FINISHED,
                loading=False,
                command_id=command_id,
            ))
            return True

        self.gate.disabled = True
        logger.debug("Back navigation disabled for programmatic navigation")
        return await self.request_load(SurfaceId.AUTOMATION, url, command_id)

    async def go_back(self) -> bool:
        """Step the automation surface back if the gate allows it.

        Returns:
            True if a back navigation was started
        """
        if self.gate.disabled:
            logger.debug("Back navigation is disabled - ignoring")
            return False

        engine = self.surfaces.automation.engine
        if engine is None or not engine.can_go_back:
            logger.debug("Cannot go back - no history")
            return False

        self.back_navigation_in_progress = True
        await engine.go_back()
        return True

    def begin(self, surface_id: SurfaceId, url: str, command_id: Optional[str] = None) -> None:
        """Enter ``Provisional`` and arm the navigation timeout."""
        surface = self.surfaces.surface(surface_id)
        surface.navigation_state = NavigationState.PROVISIONAL
        self._command_ids[surface_id] = command_id
        self._started_at[surface_id] = asyncio.get_running_loop().time()

        self.timers.schedule(
            (surface_id, TIMEOUT_TIMER), self.timings.navigation_timeout, self._on_timeout, surface_id
        )
        if surface_id is SurfaceId.AUTOMATION:
            for index, delay in enumerate(self.timings.diagnostic_checks):
                self.timers.schedule((surface_id, CHECK_TIMER, index), delay, self._diagnostic_check, surface_id, delay)

        self.diagnostics.navigation_started(surface_id.value, url)
        self._emit_loading(surface_id, url, NavigationPhase.STARTED)

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def navigation_started(self, surface_id: SurfaceId, url: str) -> None:
        surface = self.surfaces.surface(surface_id)
        if surface.navigation_state.in_flight:
            # Already tracking the requested load; keep a single timeout armed
            self.timers.schedule(
                (surface_id, TIMEOUT_TIMER), self.timings.navigation_timeout, self._on_timeout, surface_id
            )
            logger.debug(f"{surface_id.value} provisional navigation: {truncate(url)}")
            return
        self.begin(surface_id, url)

    def navigation_redirected(self, surface_id: SurfaceId, url: str) -> None:
        self._advance(surface_id, url, NavigationPhase.REDIRECTED)

    def navigation_committed(self, surface_id: SurfaceId, url: str) -> None:
        self._advance(surface_id, url, NavigationPhase.COMMITTED)

    def _advance(self, surface_id: SurfaceId, url: str, phase: NavigationPhase) -> None:
        surface = self.surfaces.surface(surface_id)
        if not surface.navigation_state.in_flight:
            logger.debug(f"Ignoring {phase.value} on {surface_id.value} without active navigation")
            return
        surface.navigation_state = NavigationState.COMMITTED
        logger.debug(f"{surface_id.value} navigation {phase.value}: {truncate(url)}")
        self._emit_loading(surface_id, url, phase)

    def navigation_finished(self, surface_id: SurfaceId, url: str) -> None:
        surface = self.surfaces.surface(surface_id)
        self._cancel_timers(surface_id)
        surface.navigation_state = NavigationState.FINISHED
        surface.last_known_url = url

        started = self._started_at.pop(surface_id, None)
        duration = asyncio.get_running_loop().time() - started if started is not None else None
        self.diagnostics.navigation_succeeded(surface_id.value, url, duration)

        self._settle_automation(surface_id)
        self._emit(NavigationEvent(
            surface=surface_id,
            url=url,
            phase=NavigationPhase.FINISHED,
            loading=False,
            command_id=self._command_ids.pop(surface_id, None),
        ))

    def navigation_failed(self, surface_id: SurfaceId, url: Optional[str], error: str) -> None:
        surface = self.surfaces.surface(surface_id)
        if surface.navigation_state is NavigationState.TIMED_OUT:
            logger.debug(f"Ignoring failure after timeout on {surface_id.value}: {error}")
            return

        self._cancel_timers(surface_id)
        surface.navigation_state = NavigationState.FAILED
        self._started_at.pop(surface_id, None)

        # intended_url is kept so readiness still passes after a failed load
        failing_url = surface.current_url or url or surface.intended_url or "unknown"
        failure = NavigationFailedError(surface_id.value, failing_url, error)
        self.diagnostics.navigation_failed(surface_id.value, failing_url, error)

        self._settle_automation(surface_id)
        self._emit(NavigationEvent(
            surface=surface_id,
            url=failing_url,
            phase=NavigationPhase.FAILED,
            loading=False,
            command_id=self._command_ids.pop(surface_id, None),
            error=str(failure),
        ))

    def client_navigation(
        self,
        surface_id: SurfaceId,
        url: str,
        method: NavigationMethod,
        old_url: Optional[str] = None,
        new_url: Optional[str] = None,
    ) -> None:
        """Report a history-API or hash navigation as a finished navigation."""
        surface = self.surfaces.surface(surface_id)
        logger.info(f"[CLIENT NAV] {surface_id.value} - {method.value}: {truncate(url)}")
        if old_url is not None:
            logger.debug(f"[CLIENT NAV] {truncate(old_url)} -> {truncate(new_url)}")

        surface.last_known_url = url
        if not surface.navigation_state.in_flight:
            surface.navigation_state = NavigationState.FINISHED

        self.diagnostics.navigation_succeeded(surface_id.value, url, None)
        self._settle_automation(surface_id)
        self._emit(NavigationEvent(
            surface=surface_id,
            url=url,
            phase=NavigationPhase.FINISHED,
            loading=False,
            navigation_method=method.value,
        ))

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _on_timeout(self, surface_id: SurfaceId) -> None:
        surface = self.surfaces.surface(surface_id)
        if not surface.navigation_state.in_flight:
            return

        surface.navigation_state = NavigationState.TIMED_OUT
        self._cancel_timers(surface_id)
        self._started_at.pop(surface_id, None)
        url = surface.intended_url or surface.current_url or "unknown"
        timeout = NavigationTimedOutError(surface_id.value, url, self.timings.navigation_timeout)
        logger.error(f"Navigation timeout for {surface_id.value} surface: {truncate(url)}")

        engine = surface.engine
        if engine is not None:
            try:
                await engine.stop_loading()
            except Exception as e:
                logger.warning(f"Failed to stop loading after timeout: {e}")
            page_state = await self._probe_page_state(surface_id)
            if page_state is not None:
                logger.info(f"Page state at timeout: {page_state}")

        self.diagnostics.navigation_failed(surface_id.value, url, timeout.reason)
        self._settle_automation(surface_id)
        self._emit(NavigationEvent(
            surface=surface_id,
            url=url,
            phase=NavigationPhase.FAILED,
            loading=False,
            command_id=self._command_ids.pop(surface_id, None),
            error=str(timeout),
            timed_out=True,
        ))

    async def _diagnostic_check(self, surface_id: SurfaceId, delay: float) -> None:
        surface = self.surfaces.surface(surface_id)
        if not surface.navigation_state.in_flight:
            return
        page_state = await self._probe_page_state(surface_id)
        logger.warning(
            f"{surface_id.value} navigation still in progress after {delay}s "
            f"(state={surface.navigation_state.value}, loading={surface.is_loading}, page={page_state})"
        )

    async def _probe_page_state(self, surface_id: SurfaceId) -> Optional[str]:
        engine = self.surfaces.engine(surface_id)
        if engine is None:
            return None
        try:
            return await engine.evaluate(PAGE_STATE_PROBE)
        except Exception as e:
            logger.debug(f"Page state probe failed on {surface_id.value}: {e}")
            return None

    def _cancel_timers(self, surface_id: SurfaceId) -> None:
        self.timers.cancel_matching(lambda key: key[0] == surface_id)

    def cancel(self, surface_id: SurfaceId) -> None:
        """Cancel timers for a surface and forget its in-flight navigation."""
        self._cancel_timers(surface_id)
        self._command_ids.pop(surface_id, None)
        self._started_at.pop(surface_id, None)
        surface = self.surfaces.surface(surface_id)
        if surface.navigation_state.in_flight:
            surface.navigation_state = NavigationState.IDLE

    def reset(self) -> None:
        """Drop every timer and all per-session navigation state."""
        self.timers.cancel_all()
        for surface_id in SurfaceId:
            self.cancel(surface_id)
            self.surfaces.surface(surface_id).intended_url = None
        self.gate.disabled = False
        self.back_navigation_in_progress = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _settle_automation(self, surface_id: SurfaceId) -> None:
        if surface_id is not SurfaceId.AUTOMATION:
            return
        if self.back_navigation_in_progress:
            logger.debug("Back navigation completed, resetting flag")
            self.back_navigation_in_progress = False
        if self.gate.disabled:
            logger.debug("Re-enabling back navigation after programmatic navigation")
            self.gate.disabled = False

    def _emit_loading(self, surface_id: SurfaceId, url: str, phase: NavigationPhase) -> None:
        if surface_id is SurfaceId.AUTOMATION and self.back_navigation_in_progress:
            logger.debug("Skipping navigation event - navigation triggered by back button")
            return
        self._emit(NavigationEvent(
            surface=surface_id,
            url=url,
            phase=phase,
            loading=True,
            command_id=self._command_ids.get(surface_id),
        ))

    def _emit(self, event: NavigationEvent) -> None:
        self.controller.on_navigation(event)
