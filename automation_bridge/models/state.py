"""Small pieces of presentation state owned by the bridge."""

from dataclasses import dataclass

from .surface import SurfaceId


@dataclass
class VisibilityState:
    """Which surface is presented, and whether a transition is running."""

    foreground: SurfaceId = SurfaceId.UI
    transitioning: bool = False


@dataclass
class CloseConfirmationState:
    """Close-button bookkeeping for the current presentation."""

    press_count: int = 0
    was_automation_foreground: bool = False

    def reset(self) -> None:
        self.press_count = 0
        self.was_automation_foreground = False


@dataclass
class BackNavigationGate:
    """Disabled while a controller-initiated automation navigation is outstanding."""

    disabled: bool = False
