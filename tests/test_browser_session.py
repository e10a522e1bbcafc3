from __future__ import annotations

import asyncio
import json
import sys
import tempfile
from pathlib import Path
import unittest
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from fakes import FakePage, FakePlaywrightFactory, FakeRoute
from fetcher_mcp_server.browser.session import (
    BLOCKED_RESOURCE_TYPES,
    STEALTH_INIT_SCRIPT,
    USER_AGENTS,
    VIEWPORTS,
    BrowserLaunchError,
    BrowserService,
    build_launch_args,
    load_storage_state,
)
from fetcher_mcp_server.models import FetchOptions


class TestBrowserLifecycle(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp_path = Path(tmp.name)

    def _service(self, **kwargs) -> tuple[BrowserService, FakePlaywrightFactory]:
        factory = FakePlaywrightFactory()
        service = BrowserService(
            storage_state_path=self.tmp_path / "state" / "storage.json",
            playwright_factory=factory,
            **kwargs,
        )
        return service, factory

    async def test_concurrent_callers_share_one_browser(self) -> None:
        service, factory = self._service()

        browsers = await asyncio.gather(*(service.get_or_create_browser() for _ in range(5)))

        self.assertEqual(factory.starts, 1)
        self.assertEqual(factory.launches, 1)
        self.assertTrue(all(b is browsers[0] for b in browsers))

    async def test_concurrent_callers_share_one_context(self) -> None:
        service, factory = self._service()
        browser = await service.get_or_create_browser()

        contexts = await asyncio.gather(
            *(service.get_or_create_context(browser) for _ in range(5))
        )

        self.assertEqual(len(factory.browser.contexts), 1)
        self.assertTrue(all(c is contexts[0] for c in contexts))

    async def test_headless_follows_effective_debug(self) -> None:
        service, factory = self._service(debug=False)
        await service.get_or_create_browser(debug=True)
        self.assertFalse(factory.browser.launch_kwargs["headless"])

        service, factory = self._service(debug=True)
        await service.get_or_create_browser()
        self.assertFalse(factory.browser.launch_kwargs["headless"])

        service, factory = self._service(debug=False)
        await service.get_or_create_browser()
        self.assertTrue(factory.browser.launch_kwargs["headless"])

    async def test_launch_args_hide_automation(self) -> None:
        service, factory = self._service()
        await service.get_or_create_browser()

        args = factory.browser.launch_kwargs["args"]
        self.assertIn("--disable-blink-features=AutomationControlled", args)
        self.assertTrue(any(a.startswith("--window-size=") for a in args))

    async def test_executable_path_is_forwarded(self) -> None:
        service, factory = self._service(executable_path="/usr/bin/chromium")
        await service.get_or_create_browser()
        self.assertEqual(factory.browser.launch_kwargs["executable_path"], "/usr/bin/chromium")

    async def test_launch_failure_raises_and_resets(self) -> None:
        service, factory = self._service()
        factory.launch_error = RuntimeError("Executable doesn't exist")

        with self.assertRaises(BrowserLaunchError) as ctx:
            await service.get_or_create_browser()

        self.assertIn("Executable doesn't exist", str(ctx.exception))
        self.assertFalse(service.is_active)
        self.assertTrue(factory.drivers[0].stopped)

    async def test_context_is_configured_for_stealth(self) -> None:
        service, factory = self._service()
        browser = await service.get_or_create_browser()
        await service.get_or_create_context(browser)

        context = factory.context
        self.assertIn(context.kwargs["user_agent"], USER_AGENTS)
        self.assertIn(context.kwargs["viewport"], VIEWPORTS)
        self.assertIn(context.kwargs["device_scale_factor"], (1, 2))
        self.assertEqual(context.kwargs["locale"], "en-US")
        self.assertEqual(context.kwargs["timezone_id"], "America/New_York")
        self.assertEqual(context.kwargs["extra_http_headers"]["Accept-Language"], "en-US,en;q=0.9")
        self.assertIsNone(context.kwargs["storage_state"])
        self.assertEqual(context.init_scripts, [STEALTH_INIT_SCRIPT])
        self.assertEqual([pattern for pattern, _ in context.routes], ["**/*"])
        self.assertEqual(service.viewport, context.kwargs["viewport"])

    async def test_window_size_matches_context_viewport(self) -> None:
        service, factory = self._service()
        for _ in range(10):
            browser = await service.get_or_create_browser()
            await service.get_or_create_context(browser)

            viewport = factory.context.kwargs["viewport"]
            self.assertIn(
                f"--window-size={viewport['width']},{viewport['height']}",
                factory.browser.launch_kwargs["args"],
            )
            await service.cleanup()

    async def test_context_loads_persisted_state(self) -> None:
        service, factory = self._service()
        service.storage_state_path.parent.mkdir(parents=True)
        service.storage_state_path.write_text(
            json.dumps({"cookies": [{"name": "sid", "value": "1"}], "origins": []}),
            encoding="utf-8",
        )

        browser = await service.get_or_create_browser()
        await service.get_or_create_context(browser)

        self.assertEqual(
            factory.context.kwargs["storage_state"],
            {"cookies": [{"name": "sid", "value": "1"}], "origins": []},
        )

    async def test_cleanup_persists_state_and_resets(self) -> None:
        service, factory = self._service()
        browser = await service.get_or_create_browser()
        await service.get_or_create_context(browser)

        self.assertTrue(await service.cleanup())

        saved = json.loads(service.storage_state_path.read_text(encoding="utf-8"))
        self.assertEqual(saved["cookies"][0]["name"], "sid")
        self.assertTrue(factory.browser.closed)
        self.assertTrue(factory.drivers[0].stopped)
        self.assertFalse(service.is_active)
        self.assertIsNone(service.context)

    async def test_cleanup_twice_reports_nothing_to_do(self) -> None:
        service, _factory = self._service()
        await service.get_or_create_browser()

        self.assertTrue(await service.cleanup())
        self.assertFalse(await service.cleanup())

    async def test_cleanup_without_context_writes_nothing(self) -> None:
        service, _factory = self._service()
        await service.get_or_create_browser()

        await service.cleanup()

        self.assertFalse(service.storage_state_path.exists())

    async def test_reinitializes_after_cleanup(self) -> None:
        service, factory = self._service()
        first = await service.get_or_create_browser()
        await service.cleanup()

        second = await service.get_or_create_browser()

        self.assertIsNot(first, second)
        self.assertEqual(factory.launches, 2)

    async def test_browser_close_failure_is_logged_not_raised(self) -> None:
        service, factory = self._service()
        await service.get_or_create_browser()

        async def boom() -> None:
            raise RuntimeError("already gone")

        factory.browser.close = boom
        with self.assertLogs("fetcher_mcp_server.browser.session", level="ERROR"):
            self.assertTrue(await service.cleanup())
        self.assertFalse(service.is_active)

    async def test_close_page_swallows_errors(self) -> None:
        service, _factory = self._service()
        page = FakePage({}, close_error=RuntimeError("Target closed"))

        with self.assertLogs("fetcher_mcp_server.browser.session", level="ERROR"):
            await service.close_page(page)
        await service.close_page(None)


class TestLease(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp_path = Path(tmp.name)

    def _service(self, **kwargs) -> tuple[BrowserService, FakePlaywrightFactory]:
        factory = FakePlaywrightFactory()
        service = BrowserService(
            storage_state_path=self.tmp_path / "storage.json",
            playwright_factory=factory,
            **kwargs,
        )
        return service, factory

    async def test_lease_tears_down_when_not_debug(self) -> None:
        service, factory = self._service(debug=False)

        async with service.lease(FetchOptions()) as context:
            self.assertIs(context, factory.context)

        self.assertFalse(service.is_active)
        self.assertTrue(service.storage_state_path.exists())

    async def test_lease_keeps_browser_in_debug(self) -> None:
        service, factory = self._service(debug=False)

        async with service.lease(FetchOptions(debug=True)):
            pass

        self.assertTrue(service.is_active)
        self.assertFalse(factory.browser.closed)
        self.assertFalse(service.storage_state_path.exists())

    async def test_teardown_waits_for_last_lease(self) -> None:
        service, factory = self._service()
        release_first = asyncio.Event()

        async def first() -> None:
            async with service.lease(FetchOptions()):
                await release_first.wait()

        task = asyncio.create_task(first())
        await asyncio.sleep(0.05)
        async with service.lease(FetchOptions()):
            pass
        self.assertTrue(service.is_active)

        release_first.set()
        await task
        self.assertFalse(service.is_active)
        self.assertEqual(factory.launches, 1)

    async def test_close_during_batch_then_overlapping_batches(self) -> None:
        service, factory = self._service()

        async def batch(release: asyncio.Event) -> None:
            async with service.lease(FetchOptions()):
                await release.wait()

        release_a = asyncio.Event()
        a = asyncio.create_task(batch(release_a))
        await asyncio.sleep(0.05)
        self.assertTrue(await service.cleanup())
        release_a.set()
        await a
        self.assertEqual(service._active_leases, 0)

        release_b = asyncio.Event()
        b = asyncio.create_task(batch(release_b))
        await asyncio.sleep(0.05)
        async with service.lease(FetchOptions()):
            pass

        self.assertTrue(service.is_active)
        self.assertFalse(factory.browser.closed)

        release_b.set()
        await b
        self.assertFalse(service.is_active)
        self.assertTrue(factory.browser.closed)
        self.assertEqual(service._active_leases, 0)

    async def test_batch_starting_during_teardown_gets_fresh_browser(self) -> None:
        service, factory = self._service()
        async with service.lease(FetchOptions(debug=True)) as old_context:
            pass
        old_browser = factory.browser
        old_context.state_delay = 0.05

        teardown = asyncio.create_task(service.cleanup())
        await asyncio.sleep(0.01)
        async with service.lease(FetchOptions(debug=True)) as context:
            self.assertIsNot(context, old_context)
        await teardown

        self.assertTrue(old_browser.closed)
        self.assertIsNot(factory.browser, old_browser)
        self.assertFalse(factory.browser.closed)
        self.assertTrue(service.is_active)

    async def test_lease_released_when_launch_fails(self) -> None:
        service, factory = self._service()
        factory.launch_error = RuntimeError("no chromium")

        with self.assertRaises(BrowserLaunchError):
            async with service.lease(FetchOptions()):
                pass

        self.assertEqual(service._active_leases, 0)

    async def test_lease_applies_media_policy(self) -> None:
        service, _factory = self._service(debug=True)

        async with service.lease(FetchOptions(disable_media=False)):
            self.assertFalse(service.block_media)
        async with service.lease(FetchOptions()):
            self.assertTrue(service.block_media)


class TestResourceBlocking(unittest.IsolatedAsyncioTestCase):
    async def test_media_requests_are_aborted(self) -> None:
        service = BrowserService(playwright_factory=FakePlaywrightFactory())
        service.block_media = True

        routes = [FakeRoute(t) for t in ("document", "image", "stylesheet", "font", "media", "script", "xhr")]
        for route in routes:
            await service._handle_route(route)

        fulfilled = [r.request.resource_type for r in routes if r.continued]
        aborted = [r.request.resource_type for r in routes if r.aborted]
        self.assertEqual(set(aborted), set(BLOCKED_RESOURCE_TYPES))
        self.assertEqual(fulfilled, ["document", "script", "xhr"])
        self.assertEqual(service.blocked_requests, 4)
        self.assertEqual(service.passed_requests, 3)

    async def test_everything_passes_when_media_allowed(self) -> None:
        service = BrowserService(playwright_factory=FakePlaywrightFactory())
        service.block_media = False

        routes = [FakeRoute(t) for t in ("image", "font", "document")]
        for route in routes:
            await service._handle_route(route)

        self.assertTrue(all(r.continued for r in routes))
        self.assertEqual(service.blocked_requests, 0)


class TestHelpers(unittest.TestCase):
    def test_sandbox_flags_only_when_disabled(self) -> None:
        viewport = {"width": 1280, "height": 720}
        self.assertIn("--no-sandbox", build_launch_args(viewport, sandbox_enabled=False))
        self.assertNotIn("--no-sandbox", build_launch_args(viewport, sandbox_enabled=True))
        self.assertIn("--window-size=1280,720", build_launch_args(viewport, sandbox_enabled=True))

    def test_sandbox_env_override_for_non_root(self) -> None:
        from fetcher_mcp_server.browser import session

        with patch.object(session.os, "geteuid", return_value=1000, create=True), patch.dict(
            "os.environ", {"FETCHER_BROWSER_SANDBOX": "1"}
        ):
            self.assertTrue(session._resolve_sandbox_enabled())
        with patch.object(session.os, "geteuid", return_value=0, create=True), patch.dict(
            "os.environ", {"FETCHER_BROWSER_SANDBOX": "1"}
        ):
            self.assertFalse(session._resolve_sandbox_enabled())


def test_load_storage_state_missing_file(tmp_path: Path) -> None:
    assert load_storage_state(tmp_path / "absent.json") is None


def test_load_storage_state_malformed_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_storage_state(path) is None


def test_load_storage_state_empty_object(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{}", encoding="utf-8")
    assert load_storage_state(path) == {"cookies": [], "origins": []}
