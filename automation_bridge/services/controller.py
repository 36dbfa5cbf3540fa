"""Outbound controller interface.

The controller is the collaborator that decides which scripts to run and what
navigation results mean. The bridge reports to it through the typed methods
below. Methods are synchronous and must not block; adapters that forward
events over a transport queue them for delivery.
"""

import logging

from ..models.commands import ScriptResult
from ..models.events import AppMessage, NavigationEvent, VisibilityChanged

logger = logging.getLogger(__name__)


class ControllerEvents:
    """Base controller: every callback is a no-op."""

    def on_navigation(self, event: NavigationEvent) -> None:
        pass

    def on_script_result(self, result: ScriptResult) -> None:
        pass

    def on_visibility_changed(self, event: VisibilityChanged) -> None:
        pass

    def on_app_message(self, message: AppMessage) -> None:
        pass

    def on_title_changed(self, title: str) -> None:
        pass

    def on_closed(self) -> None:
        pass


class GuardedController(ControllerEvents):
    """Wraps a controller so a failing callback never disturbs bridge state."""

    def __init__(self, controller: ControllerEvents):
        self.controller = controller

    def _call(self, name: str, *args) -> None:
        try:
            getattr(self.controller, name)(*args)
        except Exception as e:
            logger.error(f"Controller callback {name} failed: {e}")

    def on_navigation(self, event: NavigationEvent) -> None:
        self._call("on_navigation", event)

    def on_script_result(self, result: ScriptResult) -> None:
        self._call("on_script_result", result)

    def on_visibility_changed(self, event: VisibilityChanged) -> None:
        self._call("on_visibility_changed", event)

    def on_app_message(self, message: AppMessage) -> None:
        self._call("on_app_message", message)

    def on_title_changed(self, title: str) -> None:
        self._call("on_title_changed", title)

    def on_closed(self) -> None:
        self._call("on_closed")
