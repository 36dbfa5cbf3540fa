"""Outbound events delivered to the controller."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .surface import SurfaceId


class NavigationPhase(str, Enum):
    """Navigation lifecycle phases reported to the controller.

    A timeout is reported as ``FAILED`` with ``timed_out`` set on the event.
    """

    STARTED = "started"
    REDIRECTED = "redirected"
    COMMITTED = "committed"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class NavigationEvent:
    """Navigation progress on one surface.

    Attributes:
        surface: Surface the navigation happened on
        url: URL associated with the phase
        phase: Lifecycle phase
        loading: True while the navigation is still in progress
        command_id: Controller command that triggered the navigation, if any
        error: Failure reason for failed and timed out navigations
        timed_out: True when the failure was the navigation timeout
        navigation_method: History mechanism for client-side navigations
    """

    surface: SurfaceId
    url: str
    phase: NavigationPhase
    loading: bool
    command_id: Optional[str] = None
    error: Optional[str] = None
    navigation_method: Optional[str] = None
    timed_out: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "surface": self.surface.value,
            "url": self.url,
            "phase": self.phase.value,
            "loading": self.loading,
            "commandId": self.command_id,
            "error": self.error,
            "navigationMethod": self.navigation_method,
            "timedOut": self.timed_out,
            "timestamp": self.timestamp,
        }


@dataclass
class VisibilityChanged:
    """A surface became the foreground surface."""

    surface: SurfaceId
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"surface": self.surface.value, "timestamp": self.timestamp}


@dataclass
class AppMessage:
    """Application-level message passed through to the controller."""

    type: str
    payload: Any
    source_surface: SurfaceId
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "sourceSurface": self.source_surface.value,
            "timestamp": self.timestamp,
        }
