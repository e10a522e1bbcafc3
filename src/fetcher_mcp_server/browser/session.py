from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright

from ..models import FetchOptions
from ..settings import settings

LOGGER = logging.getLogger(__name__)


USER_AGENTS = (
    # Chrome - Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    # Chrome - Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    # Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:123.0) Gecko/20100101 Firefox/123.0",
    # Safari
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
)

VIEWPORTS = (
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1280, "height": 720},
)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})

EXTRA_HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
}

# Runs before any page script in every page of the context.
STEALTH_INIT_SCRIPT = """
(() => {
  Object.defineProperty(navigator, 'webdriver', { get: () => false });

  for (const key of Object.keys(window)) {
    if (key.startsWith('cdc_') || key.startsWith('$cdc_')) {
      try { delete window[key]; } catch (e) {}
    }
  }

  if (!window.chrome) {
    window.chrome = { runtime: {} };
  }

  Object.defineProperty(screen, 'width', { get: () => window.innerWidth });
  Object.defineProperty(screen, 'height', { get: () => window.innerHeight });
  Object.defineProperty(screen, 'availWidth', { get: () => window.innerWidth });
  Object.defineProperty(screen, 'availHeight', { get: () => window.innerHeight });

  Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });

  const pluginCount = 5 + Math.floor(Math.random() * 5);
  const plugins = [];
  for (let i = 0; i < pluginCount; i++) {
    plugins.push({
      name: 'Plugin ' + i,
      description: 'Description ' + i,
      filename: 'plugin' + i + '.dll',
    });
  }
  Object.defineProperty(navigator, 'plugins', { get: () => plugins });
})();
"""


class BrowserLaunchError(RuntimeError):
    """Raised when the Playwright driver or Chromium cannot be started."""


def _resolve_sandbox_enabled() -> bool:
    """
    Determine whether the Chromium sandbox should be enabled.

    - In containers the server often runs as root; Chromium cannot start sandboxed as root.
    - Otherwise `FETCHER_BROWSER_SANDBOX` decides; default is disabled for headless reliability.
    """
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return False

    raw_sandbox = (os.environ.get("FETCHER_BROWSER_SANDBOX") or "").strip().lower()
    if raw_sandbox in ("1", "true", "yes", "on"):
        return True
    return False


def build_launch_args(viewport: dict[str, int], *, sandbox_enabled: bool) -> list[str]:
    return [
        "--disable-blink-features=AutomationControlled",
        "--disable-features=IsolateOrigins,site-per-process",
        *([] if sandbox_enabled else ["--no-sandbox", "--disable-setuid-sandbox"]),
        "--disable-dev-shm-usage",
        "--disable-webgl",
        "--disable-infobars",
        f"--window-size={viewport['width']},{viewport['height']}",
        "--disable-extensions",
    ]


def load_storage_state(path: Path) -> dict[str, Any] | None:
    """
    Read a persisted Playwright storage state.

    Returns `None` (a fresh, empty session) when nothing usable is on disk.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        LOGGER.warning("Could not read storage state %s: %s", path, exc)
        return None

    try:
        state = json.loads(raw) if raw.strip() else {}
    except ValueError as exc:
        LOGGER.warning("Ignoring malformed storage state %s: %s", path, exc)
        return None
    if not isinstance(state, dict):
        return None
    return {
        "cookies": list(state.get("cookies") or []),
        "origins": list(state.get("origins") or []),
    }


class BrowserService:
    """
    Owns the shared Chromium browser, its single browser context and the
    persisted session state.

    One instance is created at server start and handed to the tools. Browser
    and context are created lazily and reused until `cleanup()`, after which
    the next call starts over from scratch.
    """

    def __init__(
        self,
        *,
        debug: bool | None = None,
        storage_state_path: Path | str | None = None,
        executable_path: str | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.default_debug = settings.debug if debug is None else debug
        self.storage_state_path = Path(storage_state_path or settings.storage_state_path)
        self.executable_path = executable_path or settings.browser_executable_path or None
        self._playwright_factory = playwright_factory

        self._playwright: Playwright | None = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.viewport: dict[str, int] | None = None

        self._browser_lock = asyncio.Lock()
        self._context_lock = asyncio.Lock()
        self._active_leases = 0

        self.block_media = True
        self.blocked_requests = 0
        self.passed_requests = 0

    @property
    def is_active(self) -> bool:
        return self.browser is not None or self._playwright is not None

    def is_debug(self, options: FetchOptions | None = None) -> bool:
        if options is None:
            return self.default_debug
        return options.effective_debug(self.default_debug)

    async def get_or_create_browser(self, *, debug: bool | None = None) -> Browser:
        if self.browser is not None:
            return self.browser
        async with self._browser_lock:
            if self.browser is None:
                self.browser = await self._launch_browser(
                    self.default_debug if debug is None else debug
                )
        return self.browser

    async def _launch_browser(self, debug: bool) -> Browser:
        # The context reuses this viewport so it matches --window-size.
        viewport = self.viewport = random.choice(VIEWPORTS)
        launch_kwargs: dict[str, Any] = {
            "headless": not debug,
            "args": build_launch_args(viewport, sandbox_enabled=_resolve_sandbox_enabled()),
        }
        if self.executable_path:
            launch_kwargs["executable_path"] = self.executable_path

        LOGGER.info("Launching Chromium%s", " (debug mode, headed)" if debug else "")
        try:
            if self._playwright is None:
                self._playwright = await self._playwright_factory().start()
            return await self._playwright.chromium.launch(**launch_kwargs)
        except Exception as exc:
            playwright, self._playwright = self._playwright, None
            await self._stop_driver(playwright)
            raise BrowserLaunchError(f"Failed to launch browser: {exc}") from exc

    async def get_or_create_context(self, browser: Browser) -> BrowserContext:
        if self.context is not None:
            return self.context
        async with self._context_lock:
            if self.context is None:
                self.context = await self._create_context(browser)
        return self.context

    async def _create_context(self, browser: Browser) -> BrowserContext:
        viewport = self.viewport or random.choice(VIEWPORTS)
        context = await browser.new_context(
            java_script_enabled=True,
            ignore_https_errors=True,
            user_agent=random.choice(USER_AGENTS),
            viewport=viewport,
            device_scale_factor=random.choice((1, 2)),
            is_mobile=False,
            has_touch=False,
            locale="en-US",
            timezone_id="America/New_York",
            color_scheme="light",
            storage_state=load_storage_state(self.storage_state_path),
            accept_downloads=True,
            extra_http_headers=dict(EXTRA_HTTP_HEADERS),
        )
        await context.add_init_script(STEALTH_INIT_SCRIPT)
        await context.route("**/*", self._handle_route)
        self.viewport = viewport
        LOGGER.info("Created browser context, viewport %sx%s", viewport["width"], viewport["height"])
        return context

    async def _handle_route(self, route: Route) -> None:
        if self.block_media and route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            self.blocked_requests += 1
            await route.abort()
        else:
            self.passed_requests += 1
            await route.continue_()

    async def create_page(self, context: BrowserContext) -> Page:
        return await context.new_page()

    async def close_page(self, page: Page | None) -> None:
        if page is None:
            return
        try:
            await page.close()
        except Exception as exc:
            LOGGER.error("Failed to close page: %s", exc)

    @asynccontextmanager
    async def lease(self, options: FetchOptions) -> AsyncIterator[BrowserContext]:
        """
        Hand out the shared context for one batch of fetches.

        On exit the session is torn down (state persisted) once no other batch
        holds a lease, unless debug mode asks to keep the browser open.
        """
        debug = self.is_debug(options)
        # Counted before any await so a concurrent teardown sees this batch.
        self._active_leases += 1
        try:
            browser = await self.get_or_create_browser(debug=debug)
            context = await self.get_or_create_context(browser)
            self.block_media = options.disable_media
            yield context
        finally:
            self._active_leases -= 1
            if debug:
                LOGGER.info("Debug mode: browser kept open for inspection")
            elif self._active_leases > 0:
                LOGGER.debug("Browser still in use by %d batch(es)", self._active_leases)
            else:
                await self.cleanup()

    async def cleanup(self) -> bool:
        """
        Persist session state, close the browser and forget all handles.

        Handles are cleared before the first await, so a batch starting while
        this runs gets a fresh browser instead of the one being closed.
        Returns False when there was nothing to clean up.
        """
        if not self.is_active:
            return False
        playwright, browser, context = self._playwright, self.browser, self.context
        self._playwright = None
        self.browser = None
        self.context = None
        self.viewport = None

        if context is not None:
            try:
                await self._save_storage_state(context)
            except Exception as exc:
                LOGGER.error("Failed to save storage state: %s", exc)
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                LOGGER.error("Failed to close browser: %s", exc)
        await self._stop_driver(playwright)
        return True

    async def _save_storage_state(self, context: BrowserContext) -> None:
        self.storage_state_path.parent.mkdir(parents=True, exist_ok=True)
        await context.storage_state(path=self.storage_state_path)
        LOGGER.info("Saved storage state to %s", self.storage_state_path)

    async def _stop_driver(self, playwright: Playwright | None) -> None:
        if playwright is None:
            return
        try:
            await playwright.stop()
        except Exception as exc:
            LOGGER.error("Failed to stop Playwright: %s", exc)
