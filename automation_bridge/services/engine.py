"""Browser engine abstraction.

Design Decision: Engine Interface Separate from Bridge Logic
------------------------------------------------------------
Rationale: The readiness protocol, navigation tracker and visibility arbiter
only need a small set of engine capabilities (load, evaluate, stop, present).
Keeping them behind ``BrowserEngine`` lets the bridge run against Playwright
in production and against an in-memory engine in tests.

Trade-offs:
- Engine state (url, is_loading) is exposed as cached synchronous properties
  so readiness checks never suspend; backends must keep them current from
  their own event callbacks.
- Navigation progress is reported through ``EngineObserver`` callbacks, not
  through the return value of ``load``; ``load`` only initiates.

Extension Points: New backends implement ``BrowserEngine`` and
``EngineFactory``.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..models.surface import SurfaceId


class EngineObserver:
    """Receives engine callbacks. Methods are synchronous and run on the loop."""

    def navigation_started(self, surface_id: SurfaceId, url: str) -> None:
        pass

    def navigation_redirected(self, surface_id: SurfaceId, url: str) -> None:
        pass

    def navigation_committed(self, surface_id: SurfaceId, url: str) -> None:
        pass

    def navigation_finished(self, surface_id: SurfaceId, url: str) -> None:
        pass

    def navigation_failed(self, surface_id: SurfaceId, url: Optional[str], error: str) -> None:
        pass

    def script_message(self, surface_id: SurfaceId, body: Any) -> None:
        pass


class BrowserEngine(ABC):
    """One embedded browser instance backing a surface."""

    def __init__(self, surface_id: SurfaceId, observer: Optional[EngineObserver] = None):
        self.surface_id = surface_id
        self.observer = observer

    @property
    @abstractmethod
    def url(self) -> Optional[str]:
        """Current document URL, None before the first navigation."""

    @property
    @abstractmethod
    def is_loading(self) -> bool:
        """True while a main-frame navigation is in progress."""

    @property
    @abstractmethod
    def can_go_back(self) -> bool:
        """True when the session history has an earlier entry."""

    @property
    @abstractmethod
    def attached(self) -> bool:
        """True while the engine is part of the presentation tree."""

    @abstractmethod
    async def load(self, url: str) -> None:
        """Start loading ``url``; progress is reported to the observer."""

    @abstractmethod
    async def stop_loading(self) -> None:
        """Abort the current load, if any."""

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Evaluate a script in the main frame and return its completion value."""

    @abstractmethod
    async def go_back(self) -> None:
        """Navigate one entry back in the session history."""

    @abstractmethod
    async def load_blank(self) -> None:
        """Replace the current document with an empty page."""

    @abstractmethod
    async def set_user_agent(self, user_agent: Optional[str]) -> None:
        """Override the user agent; None restores the engine default."""

    @abstractmethod
    async def set_presentation(self, front: bool, opacity: float) -> None:
        """Apply stacking order and opacity."""

    @abstractmethod
    async def set_input_enabled(self, enabled: bool) -> None:
        """Allow or block user input on the surface."""

    @abstractmethod
    async def close(self) -> None:
        """Release the engine. The instance must not be used afterwards."""

    def detach(self) -> None:
        """Stop delivering callbacks to the observer."""
        self.observer = None


class EngineFactory(ABC):
    """Creates engines for surfaces."""

    @abstractmethod
    async def create(
        self,
        surface_id: SurfaceId,
        observer: EngineObserver,
        init_scripts: List[str],
        user_agent: Optional[str] = None,
    ) -> BrowserEngine:
        """Create an engine for ``surface_id``.

        Args:
            surface_id: Surface the engine will back
            observer: Receiver for navigation and message callbacks
            init_scripts: Scripts run at document start on every navigation
            user_agent: Optional user agent override

        Returns:
            A live engine
        """

    async def shutdown(self) -> None:
        """Release backend resources shared by all engines."""
