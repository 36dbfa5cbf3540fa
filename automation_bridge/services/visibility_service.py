"""Single-flight arbitration of which surface is presented."""

import asyncio
import logging
from typing import Optional

from ..config import TimingConfig
from ..models.events import VisibilityChanged
from ..models.state import VisibilityState
from ..models.surface import SurfaceId
from .controller import ControllerEvents
from .surface_service import SurfaceManager

logger = logging.getLogger(__name__)


class VisibilityArbiter:
    """Chooses the foreground surface.

    At most one transition runs at a time. A new request forcibly ends any
    in-flight transition without committing it, then either re-asserts the
    current foreground or starts its own transition; requests are never
    queued. Input is disabled on the outgoing surface when a transition starts
    and enabled on the incoming one only when it commits, so the
    non-foreground surface never accepts input.
    """

    def __init__(self, surfaces: SurfaceManager, controller: ControllerEvents, timings: TimingConfig):
        self.surfaces = surfaces
        self.controller = controller
        self.timings = timings
        self.state = VisibilityState()
        self._transition: Optional[asyncio.Task] = None
        self._target: Optional[SurfaceId] = None

    @property
    def foreground(self) -> SurfaceId:
        return self.state.foreground

    @property
    def transitioning(self) -> bool:
        return self.state.transitioning

    async def request_show(self, target: SurfaceId) -> bool:
        """Make ``target`` the foreground surface.

        Args:
            target: Surface to present

        Returns:
            True if this request committed a transition
        """
        if self.state.transitioning:
            self._abort_transition()

        if self.state.foreground is target:
            logger.debug(f"{target.value} surface already showing, re-asserting presentation")
            await self._apply_terminal(target)
            return False

        logger.info(f"Switching from {self.state.foreground.value} to {target.value} surface")
        self.state.transitioning = True
        self._target = target
        task = asyncio.ensure_future(self._run_transition(target))
        self._transition = task

        await asyncio.wait({task})
        return not task.cancelled() and task.exception() is None and task.result()

    async def toggle(self) -> bool:
        """Show whichever surface is not currently foreground."""
        current = self._target if self.state.transitioning and self._target else self.state.foreground
        return await self.request_show(current.other)

    async def reassert(self) -> None:
        """Re-apply terminal presentation for the current foreground."""
        if self.state.transitioning:
            self._abort_transition()
        await self._apply_terminal(self.state.foreground)

    async def reset(self) -> None:
        """Force the interactive surface to the foreground."""
        await self.request_show(SurfaceId.UI)

    def cancel(self) -> None:
        """End any transition and return to the initial state without presenting."""
        if self.state.transitioning:
            self._abort_transition()
        self.state.foreground = SurfaceId.UI

    async def _run_transition(self, target: SurfaceId) -> bool:
        outgoing = self.surfaces.engine(target.other)
        incoming = self.surfaces.engine(target)
        try:
            if outgoing is not None:
                await outgoing.set_input_enabled(False)
            if incoming is not None:
                await incoming.set_presentation(front=True, opacity=0.0)
        except Exception as e:
            logger.warning(f"Error starting transition to {target.value}: {e}")

        await asyncio.sleep(self.timings.transition_duration)

        # Commit synchronously so a later abort cannot observe a half-committed state
        self.state.foreground = target
        self.state.transitioning = False
        self._transition = None
        self._target = None
        self.controller.on_visibility_changed(VisibilityChanged(surface=target))

        await self._apply_terminal(target)
        return True

    def _abort_transition(self) -> None:
        task = self._transition
        logger.debug(f"Forcibly ending in-flight transition to {self._target.value if self._target else '?'}")
        self._transition = None
        self._target = None
        self.state.transitioning = False
        if task is not None and not task.done():
            task.cancel()

    async def _apply_terminal(self, foreground: SurfaceId) -> None:
        background = foreground.other
        front_engine = self.surfaces.engine(foreground)
        back_engine = self.surfaces.engine(background)
        try:
            if back_engine is not None:
                await back_engine.set_input_enabled(False)
                await back_engine.set_presentation(front=False, opacity=0.0)
            if front_engine is not None:
                await front_engine.set_presentation(front=True, opacity=1.0)
                await front_engine.set_input_enabled(True)
        except Exception as e:
            logger.warning(f"Error applying presentation for {foreground.value}: {e}")
