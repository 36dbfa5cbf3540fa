"""Shared fixtures: an in-memory browser engine and a recording controller."""

import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from automation_bridge.config import BridgeConfig, TimingConfig
from automation_bridge.models.surface import SurfaceId
from automation_bridge.services.bootstrap import (
    LIVENESS_PROBE,
    LOCATION_PROBE,
    PAGE_STATE_PROBE,
    READY_PING,
)
from automation_bridge.services.bridge import AutomationBridge
from automation_bridge.services.controller import ControllerEvents
from automation_bridge.services.engine import BrowserEngine, EngineFactory, EngineObserver


class FakeEngine(BrowserEngine):
    """Engine double that records calls and reports navigation on demand.

    With ``auto_complete`` set, ``load`` reports started, committed and
    finished immediately. Otherwise tests drive the callbacks through
    ``start``, ``commit``, ``finish`` and ``fail``.
    """

    def __init__(self, surface_id: SurfaceId, observer: Optional[EngineObserver] = None):
        super().__init__(surface_id, observer)
        self._url: Optional[str] = None
        self._loading = False
        self._closed = False
        self.history: List[str] = []

        self.auto_complete = True
        self.bridge_alive: Any = True
        self.script_results: Dict[str, Any] = {}
        self.script_handler: Optional[Callable[[str], Any]] = None
        self.evaluate_error: Optional[Exception] = None
        self.load_error: Optional[Exception] = None

        self.evaluated: List[str] = []
        self.loads: List[str] = []
        self.user_agents: List[Optional[str]] = []
        self.presentation: List[tuple] = []
        self.input_changes: List[bool] = []
        self.stop_count = 0
        self.blank_loads = 0

        self.front = False
        self.opacity = 0.0
        self.input_enabled = True

    # State -----------------------------------------------------------

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def can_go_back(self) -> bool:
        return len(self.history) > 1

    @property
    def attached(self) -> bool:
        return not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    # Driving callbacks ------------------------------------------------

    def start(self, url: str) -> None:
        self._loading = True
        if self.observer:
            self.observer.navigation_started(self.surface_id, url)

    def commit(self, url: str) -> None:
        self._url = url
        self.history.append(url)
        if self.observer:
            self.observer.navigation_committed(self.surface_id, url)

    def finish(self, url: Optional[str] = None) -> None:
        self._loading = False
        if self.observer:
            self.observer.navigation_finished(self.surface_id, url or self._url)

    def fail(self, url: Optional[str], error: str = "net::ERR_NAME_NOT_RESOLVED") -> None:
        self._loading = False
        if self.observer:
            self.observer.navigation_failed(self.surface_id, url, error)

    def post(self, body: Any) -> None:
        if self.observer:
            self.observer.script_message(self.surface_id, body)

    # BrowserEngine ----------------------------------------------------

    async def load(self, url: str) -> None:
        if self.load_error is not None:
            raise self.load_error
        self.loads.append(url)
        self._loading = True
        if self.auto_complete:
            self.start(url)
            self.commit(url)
            self.finish(url)

    async def stop_loading(self) -> None:
        self.stop_count += 1
        self._loading = False

    async def evaluate(self, script: str) -> Any:
        self.evaluated.append(script)
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if script == LIVENESS_PROBE:
            if isinstance(self.bridge_alive, Exception):
                raise self.bridge_alive
            return self.bridge_alive
        if script == READY_PING:
            return None
        if script == PAGE_STATE_PROBE:
            return json.dumps({"readyState": "loading", "href": self._url})
        if script == LOCATION_PROBE:
            return self._url
        if self.script_handler is not None:
            return self.script_handler(script)
        return self.script_results.get(script)

    async def go_back(self) -> None:
        self.history.pop()
        previous = self.history.pop()
        self.start(previous)
        self.commit(previous)
        self.finish(previous)

    async def load_blank(self) -> None:
        self.blank_loads += 1
        self._url = None
        self.history = []

    async def set_user_agent(self, user_agent: Optional[str]) -> None:
        self.user_agents.append(user_agent)

    async def set_presentation(self, front: bool, opacity: float) -> None:
        self.front = front
        self.opacity = opacity
        self.presentation.append((front, opacity))

    async def set_input_enabled(self, enabled: bool) -> None:
        self.input_enabled = enabled
        self.input_changes.append(enabled)

    async def close(self) -> None:
        self._closed = True


class FakeEngineFactory(EngineFactory):
    """Creates FakeEngines and remembers every one it made."""

    def __init__(self):
        self.created: List[FakeEngine] = []
        self.init_scripts: Dict[SurfaceId, List[str]] = {}
        self.user_agents: Dict[SurfaceId, Optional[str]] = {}
        self.configure: Optional[Callable[[FakeEngine], None]] = None
        self.shutdown_called = False

    async def create(self, surface_id, observer, init_scripts, user_agent=None):
        engine = FakeEngine(surface_id, observer)
        if self.configure is not None:
            self.configure(engine)
        self.created.append(engine)
        self.init_scripts[surface_id] = init_scripts
        self.user_agents[surface_id] = user_agent
        return engine

    def latest(self, surface_id: SurfaceId) -> FakeEngine:
        return [e for e in self.created if e.surface_id is surface_id][-1]

    async def shutdown(self) -> None:
        self.shutdown_called = True


class RecordingController(ControllerEvents):
    """Controller that records every callback."""

    def __init__(self):
        self.navigation = []
        self.results = []
        self.visibility = []
        self.app_messages = []
        self.titles = []
        self.closed = 0

    def on_navigation(self, event):
        self.navigation.append(event)

    def on_script_result(self, result):
        self.results.append(result)

    def on_visibility_changed(self, event):
        self.visibility.append(event)

    def on_app_message(self, message):
        self.app_messages.append(message)

    def on_title_changed(self, title):
        self.titles.append(title)

    def on_closed(self):
        self.closed += 1

    def phases(self, surface: SurfaceId) -> List[str]:
        return [e.phase.value for e in self.navigation if e.surface is surface]


@pytest.fixture
def fast_config() -> BridgeConfig:
    """Configuration with timings shrunk for tests."""
    return BridgeConfig(
        timings=TimingConfig(
            retry_delay=0.01,
            max_retries=3,
            navigation_timeout=0.2,
            diagnostic_checks=[0.05],
            correlation_timeout=0.1,
            transition_duration=0.01,
        )
    )


@pytest.fixture
def factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def controller() -> RecordingController:
    return RecordingController()


@pytest.fixture
def bridge(factory, controller, fast_config):
    """Bridge wired to fake engines; surfaces are created by ``open``."""
    return AutomationBridge(factory, controller, fast_config)
