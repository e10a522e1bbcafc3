from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum

from playwright.async_api import Page

from ..models import FetchOptions, FetchResult
from .extract import process_content

LOGGER = logging.getLogger(__name__)

EMPTY_CONTENT_ERROR = "Browser returned empty content"


class NavigationWaitOutcome(str, Enum):
    NAVIGATED = "navigated"
    TIMED_OUT = "timed_out"


def format_page(title: str, url: str, content: str) -> str:
    return f"Title: {title}\nURL: {url}\nContent:\n\n{content}"


def format_error(url: str, message: str, *, action: str = "retrieve web page content") -> str:
    return format_page("Error", url, f"<error>Failed to {action}: {message}</error>")


def failure_result(
    url: str, message: str, *, index: int = 0, action: str = "retrieve web page content"
) -> FetchResult:
    return FetchResult(
        success=False,
        content=format_error(url, message, action=action),
        error=message,
        index=index,
    )


def _error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


async def wait_for_follow_up_navigation(
    page: Page, timeout_ms: int, *, log_prefix: str = ""
) -> NavigationWaitOutcome:
    """
    Race a main-frame navigation against a timer of `timeout_ms`.

    Pages that redirect or finish an anti-bot challenge after the first load
    navigate again; pages that never do simply time out, which is fine.
    """
    LOGGER.info("%s Waiting for possible navigation/redirection...", log_prefix)
    navigation = asyncio.ensure_future(
        page.wait_for_event(
            "framenavigated",
            predicate=lambda frame: frame == page.main_frame,
            timeout=timeout_ms,
        )
    )
    timer = asyncio.ensure_future(asyncio.sleep(timeout_ms / 1000))
    try:
        done, _pending = await asyncio.wait(
            {navigation, timer}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (navigation, timer):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task

    if navigation in done and navigation.exception() is None:
        LOGGER.info("%s Page navigated/redirected successfully", log_prefix)
        return NavigationWaitOutcome.NAVIGATED

    if navigation in done:
        LOGGER.warning(
            "%s No navigation occurred or navigation timeout: %s",
            log_prefix,
            navigation.exception(),
        )
    else:
        LOGGER.warning("%s No navigation occurred within %dms", log_prefix, timeout_ms)
    return NavigationWaitOutcome.TIMED_OUT


async def process_page_content(
    page: Page,
    url: str,
    options: FetchOptions,
    *,
    index: int = 0,
    log_prefix: str = "",
) -> FetchResult:
    """
    Navigate `page` to `url` and turn it into a `FetchResult`.

    Never raises: navigation errors, timeouts and empty pages all come back as
    `success=False` results with a formatted error body.
    """
    try:
        page.set_default_timeout(options.timeout)

        LOGGER.info("%s Navigating to URL: %s", log_prefix, url)
        await page.goto(url, timeout=options.timeout, wait_until=options.wait_until.value)

        if options.wait_for_navigation:
            await wait_for_follow_up_navigation(
                page, options.navigation_timeout, log_prefix=log_prefix
            )

        title = await page.title()
        LOGGER.info("%s Page title: %s", log_prefix, title)

        html = await page.content()
        if not html:
            LOGGER.warning("%s %s", log_prefix, EMPTY_CONTENT_ERROR)
            return failure_result(url, EMPTY_CONTENT_ERROR, index=index)

        LOGGER.info(
            "%s Successfully retrieved web page content, length: %d", log_prefix, len(html)
        )
        # CPU-bound; runs in a worker thread.
        content = await asyncio.to_thread(
            process_content, html, url, options, log_prefix=log_prefix
        )
        return FetchResult(success=True, content=format_page(title, url, content), index=index)
    except Exception as exc:
        message = _error_message(exc)
        LOGGER.error("%s Error: %s", log_prefix, message)
        return failure_result(url, message, index=index)
