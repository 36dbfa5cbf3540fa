"""Browser surface model."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class SurfaceId(str, Enum):
    """Identifies one of the two browser surfaces."""

    UI = "ui"
    AUTOMATION = "automation"

    @property
    def other(self) -> "SurfaceId":
        return SurfaceId.AUTOMATION if self is SurfaceId.UI else SurfaceId.UI


class NavigationState(str, Enum):
    """Navigation lifecycle of a single surface."""

    IDLE = "idle"
    PROVISIONAL = "provisional"
    COMMITTED = "committed"
    FINISHED = "finished"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def in_flight(self) -> bool:
        return self in (NavigationState.PROVISIONAL, NavigationState.COMMITTED)


@dataclass
class BrowserSurface:
    """One embedded browser engine plus the navigation bookkeeping around it.

    The engine handle is exclusively owned by the surface and is replaced,
    never mutated, when the surface is recreated. ``intended_url`` is recorded
    before a load is requested and survives a failed load; only a new load
    request or an explicit reset clears it.

    Attributes:
        id: Which surface this is
        engine: Live engine handle, or None once released
        intended_url: URL most recently requested for this surface
        last_known_url: Last URL reported by a finished navigation
        navigation_state: Current navigation lifecycle state
    """

    id: SurfaceId
    engine: Optional[Any] = None
    intended_url: Optional[str] = None
    last_known_url: Optional[str] = None
    navigation_state: NavigationState = NavigationState.IDLE

    @property
    def exists(self) -> bool:
        return self.engine is not None

    @property
    def attached(self) -> bool:
        return self.engine is not None and self.engine.attached

    @property
    def is_loading(self) -> bool:
        return self.engine is not None and self.engine.is_loading

    @property
    def current_url(self) -> Optional[str]:
        if self.engine is None:
            return None
        return self.engine.url or None

    @property
    def can_go_back(self) -> bool:
        return self.engine is not None and self.engine.can_go_back

    def to_dict(self) -> dict:
        """Convert surface state to a dictionary for status reporting."""
        return {
            "id": self.id.value,
            "exists": self.exists,
            "attached": self.attached,
            "is_loading": self.is_loading,
            "current_url": self.current_url,
            "intended_url": self.intended_url,
            "navigation_state": self.navigation_state.value,
            "can_go_back": self.can_go_back,
        }
