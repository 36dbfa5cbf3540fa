"""Surface lifecycle management."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import BridgeConfig
from ..models.surface import BrowserSurface, NavigationState, SurfaceId
from .bootstrap import BootstrapLoader
from .diagnostics import truncate
from .engine import BrowserEngine, EngineFactory, EngineObserver

logger = logging.getLogger(__name__)


class SurfaceManager:
    """Owns both browser surfaces and their engine handles.

    Engines are created lazily once the owning view is attached, replaced as a
    whole when the automation bootstrap changes, and released together.
    Observers are always detached from an engine before it is closed.
    """

    def __init__(
        self,
        factory: EngineFactory,
        bootstrap: BootstrapLoader,
        observer: EngineObserver,
        config: Optional[BridgeConfig] = None,
    ):
        """Initialize surface manager.

        Args:
            factory: Engine factory for new surfaces
            bootstrap: Loader for document-start scripts
            observer: Receiver for engine callbacks
            config: Bridge configuration
        """
        self.factory = factory
        self.bootstrap = bootstrap
        self.observer = observer
        self.config = config or BridgeConfig()

        self.surfaces: Dict[SurfaceId, BrowserSurface] = {
            SurfaceId.UI: BrowserSurface(SurfaceId.UI),
            SurfaceId.AUTOMATION: BrowserSurface(SurfaceId.AUTOMATION),
        }
        self.view_attached = False
        self.global_script = ""
        self.automation_user_agent: Optional[str] = self.config.engine.automation_user_agent or None
        self.on_surfaces_created: Optional[Callable[[], Awaitable[None]]] = None
        self._creating: Optional[asyncio.Task] = None

    def surface(self, surface_id: SurfaceId) -> BrowserSurface:
        return self.surfaces[surface_id]

    def engine(self, surface_id: SurfaceId) -> Optional[BrowserEngine]:
        return self.surfaces[surface_id].engine

    @property
    def ui(self) -> BrowserSurface:
        return self.surfaces[SurfaceId.UI]

    @property
    def automation(self) -> BrowserSurface:
        return self.surfaces[SurfaceId.AUTOMATION]

    def has_surfaces(self) -> bool:
        return self.ui.exists and self.automation.exists

    def is_ready(self) -> bool:
        """Check whether scripts can be injected into the automation surface.

        Both surfaces must exist and be attached, and the automation surface
        must either show a document or have a load requested for one.
        """
        if self._creating is not None or not self.has_surfaces():
            return False
        if not (self.ui.attached and self.automation.attached):
            return False
        return bool(self.automation.current_url or self.automation.intended_url)

    def readiness_report(self) -> Dict[str, bool]:
        return {
            "view_attached": self.view_attached,
            "ui_exists": self.ui.exists,
            "automation_exists": self.automation.exists,
            "ui_attached": self.ui.attached,
            "automation_attached": self.automation.attached,
            "automation_has_url": bool(self.automation.current_url or self.automation.intended_url),
        }

    @property
    def creating(self) -> bool:
        return self._creating is not None

    async def wait_for_creation(self) -> None:
        """Wait until no surface creation is in flight."""
        while self._creating is not None:
            # Shielded: a cancelled waiter must not abort the creation itself
            await asyncio.wait({self._creating})

    async def _single_flight(self, build: Callable[[], Awaitable[Any]]) -> Any:
        await self.wait_for_creation()
        task = asyncio.ensure_future(build())
        self._creating = task
        task.add_done_callback(self._creation_done)
        await asyncio.wait({task})
        return task.result()

    def _creation_done(self, task: asyncio.Task) -> None:
        if self._creating is task:
            self._creating = None

    async def ensure_surfaces(self) -> bool:
        """Create both surfaces if they are missing or detached.

        Concurrent callers share one creation; a caller arriving while
        surfaces are being built waits for that build instead of starting
        its own.

        Returns:
            True if both surfaces exist and are attached afterwards
        """
        await self.wait_for_creation()
        if self.has_surfaces() and self.ui.attached and self.automation.attached:
            return True

        if not self.view_attached:
            logger.debug("Owning view is not attached, not creating surfaces")
            return False

        return await self._single_flight(self._create_surfaces)

    async def _create_surfaces(self) -> bool:
        if self.has_surfaces() and self.ui.attached and self.automation.attached:
            return True

        # Drop partial leftovers so both surfaces share one generation
        for surface in self.surfaces.values():
            if surface.exists:
                await self._release_engine(surface)

        for surface_id in (SurfaceId.UI, SurfaceId.AUTOMATION):
            await self._create_engine(surface_id)

        logger.info("Browser surfaces created")
        await self._notify_created()
        return True

    async def _notify_created(self) -> None:
        if self.on_surfaces_created is not None:
            await self.on_surfaces_created()

    async def _create_engine(self, surface_id: SurfaceId) -> BrowserEngine:
        global_script = self.global_script if surface_id is SurfaceId.AUTOMATION else ""
        user_agent = self.automation_user_agent if surface_id is SurfaceId.AUTOMATION else None
        scripts = await self.bootstrap.init_scripts(surface_id, global_script)

        engine = await self.factory.create(surface_id, self.observer, scripts, user_agent)
        # New surfaces start hidden; the visibility arbiter presents them
        await engine.set_input_enabled(False)
        await engine.set_presentation(front=False, opacity=0.0)

        surface = self.surfaces[surface_id]
        surface.engine = engine
        surface.navigation_state = NavigationState.IDLE
        logger.debug(f"Created engine for {surface_id.value} surface")
        return engine

    async def _release_engine(self, surface: BrowserSurface) -> None:
        engine = surface.engine
        if engine is None:
            return
        surface.engine = None
        surface.navigation_state = NavigationState.IDLE
        engine.detach()
        try:
            await engine.close()
        except Exception as e:
            logger.error(f"Error closing {surface.id.value} engine: {e}")

    async def recreate_automation(self) -> Optional[str]:
        """Replace the automation engine, keeping the current document.

        Waits for any creation already in flight and runs as the single
        in-flight creation itself.

        Returns:
            URL that should be reloaded in the new engine, if any
        """
        return await self._single_flight(self._recreate_automation)

    async def _recreate_automation(self) -> Optional[str]:
        surface = self.automation
        previous_url = surface.current_url or surface.intended_url
        logger.info(f"Recreating automation surface (previous url: {truncate(previous_url)})")

        await self._release_engine(surface)
        if not self.view_attached:
            return previous_url

        await self._create_engine(SurfaceId.AUTOMATION)
        await self._notify_created()
        return previous_url

    async def set_automation_user_agent(self, user_agent: Optional[str]) -> None:
        """Store the automation user agent and apply it to a live engine.

        Args:
            user_agent: New user agent; empty or None restores the default
        """
        self.automation_user_agent = user_agent or None
        engine = self.automation.engine
        if engine is not None:
            await engine.set_user_agent(self.automation_user_agent)
            logger.info(f"Automation user agent set to {self.automation_user_agent!r}")
        else:
            logger.debug("Automation surface not created yet, user agent stored for later")

    async def release(self) -> None:
        """Stop, unload and close both engines."""
        await self.wait_for_creation()
        logger.info("Releasing browser surfaces")
        for surface in self.surfaces.values():
            engine = surface.engine
            if engine is None:
                continue
            engine.detach()
            try:
                if surface.id is SurfaceId.AUTOMATION and self.automation_user_agent:
                    await engine.set_user_agent(None)
                await engine.stop_loading()
                await engine.load_blank()
            except Exception as e:
                logger.warning(f"Error unloading {surface.id.value} surface: {e}")
            await self._release_engine(surface)

        self.automation_user_agent = None
        for surface in self.surfaces.values():
            surface.intended_url = None
            surface.last_known_url = None
