"""Exception hierarchy for the automation bridge.

Transient conditions (surfaces not ready, page still loading, in-page bridge
missing) are retried inside the injection protocol and only surface as these
exceptions once the retry budget is spent. Navigation errors always carry the
surface and URL they relate to.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all automation bridge errors."""

    pass


class NotReadyError(BridgeError):
    """Raised when the browser surfaces are not ready for script injection."""

    pass


class StillLoadingError(BridgeError):
    """Raised when the automation surface keeps loading past the retry budget."""

    pass


class BridgeNotInitializedError(BridgeError):
    """Raised when the in-page bridge object cannot be verified."""

    pass


class ScriptEvaluationError(BridgeError):
    """Raised when the browser engine rejects or fails to evaluate a script."""

    pass


class CorrelationTimeoutError(BridgeError):
    """Raised when a correlated command receives no reply within the watchdog."""

    pass


class SurfacesReleasedError(BridgeError):
    """Raised for work that was pending when the surfaces were released."""

    pass


class MalformedMessageError(BridgeError):
    """Raised when an inbound bridge message fails validation."""

    pass


class EngineUnavailableError(BridgeError):
    """Raised when the browser engine backend cannot be started."""

    pass


class NavigationFailedError(BridgeError):
    """Raised when a navigation fails on a surface."""

    def __init__(self, surface: str, url: Optional[str], reason: str):
        self.surface = surface
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation failed on {surface} surface ({url or 'unknown'}): {reason}")


class NavigationTimedOutError(NavigationFailedError):
    """Raised when a navigation does not finish within the navigation timeout."""

    def __init__(self, surface: str, url: Optional[str], timeout: float):
        self.timeout = timeout
        super().__init__(surface, url, f"timed out after {timeout}s")
