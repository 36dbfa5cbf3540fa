"""Playwright-backed browser engine.

Both surfaces are pages in one shared browser context, so cookies and storage
set by the interactive page are visible to the automation page. Playwright
events are translated into ``EngineObserver`` callbacks:

- main-frame navigation ``request``  -> navigation_started / navigation_redirected
- main-frame ``framenavigated``      -> navigation_committed
- ``load``                           -> navigation_finished
- main-frame navigation ``requestfailed`` -> navigation_failed

In-page messages arrive through a binding exposed on each page. On Chromium a
CDP session provides user agent overrides, input blocking and stop-loading.
"""

import asyncio
import logging
from typing import Any, List, Optional

from playwright.async_api import Browser, BrowserContext, CDPSession, Error, Page, Playwright, Request, async_playwright

from ..config import EngineConfig
from ..exceptions import EngineUnavailableError
from ..models.surface import SurfaceId
from .bootstrap import HOST_BINDING
from .diagnostics import truncate
from .engine import BrowserEngine, EngineFactory, EngineObserver

logger = logging.getLogger(__name__)

BLANK_URL = "about:blank"


class PlaywrightEngine(BrowserEngine):
    """Browser engine backed by one Playwright page."""

    def __init__(
        self,
        surface_id: SurfaceId,
        page: Page,
        observer: Optional[EngineObserver] = None,
        cdp: Optional[CDPSession] = None,
    ):
        super().__init__(surface_id, observer)
        self.page = page
        self.cdp = cdp
        self.opacity = 0.0
        self.input_enabled = True

        self._loading = False
        self._closed = False
        self._default_user_agent: Optional[str] = None
        self._history_length = 0
        self._saw_navigation_request = False
        self._goto_task: Optional[asyncio.Task] = None

        self._listeners = [
            ("request", self._on_request),
            ("framenavigated", self._on_frame_navigated),
            ("load", self._on_load),
            ("requestfailed", self._on_request_failed),
        ]

    async def setup(self, init_scripts: List[str], user_agent: Optional[str] = None) -> None:
        """Install listeners, the host binding and document-start scripts."""
        for event, handler in self._listeners:
            self.page.on(event, handler)

        await self.page.expose_binding(HOST_BINDING, self._on_binding)
        for script in init_scripts:
            await self.page.add_init_script(script=script)

        if user_agent:
            await self.set_user_agent(user_agent)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def url(self) -> Optional[str]:
        if self._closed:
            return None
        url = self.page.url
        return None if not url or url == BLANK_URL else url

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def can_go_back(self) -> bool:
        return self._history_length > 1

    @property
    def attached(self) -> bool:
        return not self._closed and not self.page.is_closed()

    # ------------------------------------------------------------------
    # Playwright events
    # ------------------------------------------------------------------

    def _is_main_frame_navigation(self, request: Request) -> bool:
        try:
            return request.is_navigation_request() and request.frame == self.page.main_frame
        except Error:
            return False

    def _on_request(self, request: Request) -> None:
        if not self._is_main_frame_navigation(request):
            return
        self._saw_navigation_request = True
        self._loading = True
        if self.observer is None:
            return
        if request.redirected_from is not None:
            self.observer.navigation_redirected(self.surface_id, request.url)
        else:
            self.observer.navigation_started(self.surface_id, request.url)

    def _on_frame_navigated(self, frame) -> None:
        if frame != self.page.main_frame:
            return
        if frame.url and frame.url != BLANK_URL:
            self._history_length += 1
        if self.observer is not None:
            self.observer.navigation_committed(self.surface_id, frame.url)

    def _on_load(self, page: Page) -> None:
        self._loading = False
        if not self.input_enabled:
            asyncio.ensure_future(self._apply_input_state())
        if self.observer is not None:
            self.observer.navigation_finished(self.surface_id, page.url)

    def _on_request_failed(self, request: Request) -> None:
        if not self._is_main_frame_navigation(request):
            return
        self._loading = False
        if self.observer is not None:
            self.observer.navigation_failed(self.surface_id, request.url, request.failure or "request failed")

    def _on_binding(self, source: Any, payload: Any) -> None:
        if self.observer is not None:
            self.observer.script_message(self.surface_id, payload)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load(self, url: str) -> None:
        self._saw_navigation_request = False
        self._loading = True
        # Progress and errors are reported through page events; goto only initiates
        self._goto_task = asyncio.ensure_future(self._goto(url))

    async def _goto(self, url: str) -> None:
        try:
            await self.page.goto(url, timeout=0, wait_until="commit")
        except Error as e:
            if self._closed:
                return
            if not self._saw_navigation_request:
                self._loading = False
                logger.error(f"[{self.surface_id.value}] goto {truncate(url)} failed: {e.message}")
                if self.observer is not None:
                    self.observer.navigation_failed(self.surface_id, url, e.message)
            else:
                logger.debug(f"[{self.surface_id.value}] goto {truncate(url)} ended: {e.message}")

    async def stop_loading(self) -> None:
        self._loading = False
        if self.cdp is not None:
            await self.cdp.send("Page.stopLoading")
        else:
            await self.page.evaluate("window.stop()")

    async def evaluate(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def go_back(self) -> None:
        self._history_length = max(self._history_length - 2, 0)
        await self.page.go_back(timeout=0, wait_until="commit")

    async def load_blank(self) -> None:
        await self.page.goto(BLANK_URL)
        self._history_length = 0

    async def set_user_agent(self, user_agent: Optional[str]) -> None:
        if self.cdp is None:
            logger.warning(f"User agent override requires Chromium, ignoring for {self.surface_id.value}")
            return
        if self._default_user_agent is None:
            self._default_user_agent = await self.page.evaluate("navigator.userAgent")
        await self.cdp.send(
            "Network.setUserAgentOverride", {"userAgent": user_agent or self._default_user_agent}
        )

    async def set_presentation(self, front: bool, opacity: float) -> None:
        self.opacity = opacity
        if front and opacity > 0:
            await self.page.bring_to_front()

    async def set_input_enabled(self, enabled: bool) -> None:
        self.input_enabled = enabled
        await self._apply_input_state()

    async def _apply_input_state(self) -> None:
        if self.cdp is None or self._closed:
            return
        try:
            await self.cdp.send("Input.setIgnoreInputEvents", {"ignore": not self.input_enabled})
        except Error as e:
            logger.debug(f"Could not apply input state on {self.surface_id.value}: {e.message}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for event, handler in self._listeners:
            self.page.remove_listener(event, handler)
        if self._goto_task is not None and not self._goto_task.done():
            self._goto_task.cancel()
        if self.cdp is not None:
            try:
                await self.cdp.detach()
            except Error:
                pass
        await self.page.close()


class PlaywrightEngineFactory(EngineFactory):
    """Launches one browser and creates a page per surface."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    @property
    def is_chromium(self) -> bool:
        return self.config.browser == "chromium"

    async def _ensure_context(self) -> BrowserContext:
        if self.context is not None:
            return self.context

        try:
            if not self.playwright:
                self.playwright = await async_playwright().start()
            browser_type = getattr(self.playwright, self.config.browser)
            self.browser = await browser_type.launch(headless=self.config.headless)
            self.context = await self.browser.new_context(viewport=self.config.viewport)
        except (Error, AttributeError) as e:
            await self.shutdown()
            raise EngineUnavailableError(
                f"Failed to launch {self.config.browser}: {e}. "
                "Install browsers with: playwright install"
            ) from e

        logger.info(f"Launched {self.config.browser} (headless={self.config.headless})")
        return self.context

    async def create(
        self,
        surface_id: SurfaceId,
        observer: EngineObserver,
        init_scripts: List[str],
        user_agent: Optional[str] = None,
    ) -> BrowserEngine:
        context = await self._ensure_context()
        page = await context.new_page()
        cdp = await context.new_cdp_session(page) if self.is_chromium else None

        engine = PlaywrightEngine(surface_id, page, observer, cdp)
        await engine.setup(init_scripts, user_agent)
        logger.debug(f"Created Playwright page for {surface_id.value} surface")
        return engine

    async def shutdown(self) -> None:
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.error(f"Error shutting down Playwright: {e}")
        finally:
            self.context = None
            self.browser = None
            self.playwright = None
