from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Sequence

from playwright.async_api import BrowserContext

from ..browser.session import BrowserService
from ..models import FetchOptions, FetchResult
from ..settings import settings
from .processor import failure_result, process_page_content

LOGGER = logging.getLogger(__name__)


class ParameterError(ValueError):
    """Raised for missing or empty URL arguments, before any browser work."""


def format_batch(results: Sequence[FetchResult]) -> str:
    """Wrap each result in numbered `[webpage N begin]`/`[webpage N end]` markers."""
    return "\n\n".join(
        f"[webpage {n} begin]\n{result.content}\n[webpage {n} end]"
        for n, result in enumerate(results, start=1)
    )


async def _fetch_one(
    service: BrowserService,
    context: BrowserContext,
    url: str,
    index: int,
    total: int,
    options: FetchOptions,
    *,
    keep_open: bool,
) -> FetchResult:
    log_prefix = f"[Tab {index + 1}]"
    LOGGER.info("Creating tab for URL %d/%d: %s", index + 1, total, url)
    try:
        page = await service.create_page(context)
    except Exception as exc:
        LOGGER.error("Failed to create tab for URL %d: %s", index + 1, exc)
        return failure_result(
            url, str(exc) or type(exc).__name__, index=index, action="create browser tab"
        )

    try:
        return await process_page_content(
            page, url, options, index=index, log_prefix=log_prefix
        )
    finally:
        if keep_open:
            LOGGER.info("%s Debug mode: page kept open for inspection: %s", log_prefix, url)
        else:
            await service.close_page(page)


async def fetch_many(
    service: BrowserService,
    urls: Sequence[str],
    options: FetchOptions,
) -> list[FetchResult]:
    """
    Fetch every URL concurrently in its own page of the shared context.

    Results are returned in the order of `urls`, whatever order the pages
    finished in. A failing URL yields a failed result; it never aborts the
    rest of the batch.
    """
    if not urls:
        raise ParameterError("URLs parameter is required and must be a non-empty array")

    debug = service.is_debug(options)
    total = len(urls)
    results: list[FetchResult | None] = [None] * total
    semaphore = asyncio.Semaphore(settings.max_concurrency) if settings.max_concurrency else None

    async with service.lease(options) as context:

        async def run(index: int, url: str) -> None:
            async with semaphore if semaphore is not None else contextlib.nullcontext():
                try:
                    result = await _fetch_one(
                        service, context, url, index, total, options, keep_open=debug
                    )
                except Exception as exc:
                    result = failure_result(url, str(exc) or type(exc).__name__, index=index)
            results[index] = result

        LOGGER.info("Waiting for all %d tabs to complete", total)
        await asyncio.gather(*(run(index, url) for index, url in enumerate(urls)))
        LOGGER.info("All tabs completed")

    return [
        result if result is not None else failure_result(url, "No result produced", index=index)
        for index, (url, result) in enumerate(zip(urls, results))
    ]
