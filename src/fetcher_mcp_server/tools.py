from __future__ import annotations

import logging
from typing import Any, Sequence

from .browser.session import BrowserService
from .models import FetchOptions
from .scrape.batch import ParameterError, fetch_many, format_batch

LOGGER = logging.getLogger(__name__)

NO_ACTIVE_BROWSER_MESSAGE = "No active browser instance found."
BROWSER_CLOSED_MESSAGE = "Storage state saved and browser closed successfully."


def build_options(**raw: Any) -> FetchOptions:
    """Build `FetchOptions` from loosely typed tool arguments, dropping unset ones."""
    return FetchOptions.model_validate({k: v for k, v in raw.items() if v is not None})


async def fetch_url(service: BrowserService, url: str, options: FetchOptions) -> str:
    """Fetch a single URL; a batch of one without the page markers."""
    url = url.strip() if isinstance(url, str) else ""
    if not url:
        LOGGER.error("URL parameter missing")
        raise ParameterError("URL parameter is required")

    LOGGER.info("[FetchURL] Fetching: %s", url)
    results = await fetch_many(service, [url], options)
    return results[0].content


async def fetch_urls(
    service: BrowserService, urls: Sequence[str] | None, options: FetchOptions
) -> str:
    """Fetch several URLs concurrently and join them in request order."""
    if not urls or isinstance(urls, str):
        LOGGER.error("URLs parameter missing or empty")
        raise ParameterError("URLs parameter is required and must be a non-empty array")

    cleaned = [str(u).strip() for u in urls]
    if not all(cleaned):
        raise ParameterError("URLs must be non-empty strings")

    LOGGER.info("[FetchURLs] Number of URLs to fetch: %d", len(cleaned))
    results = await fetch_many(service, cleaned, options)
    return format_batch(results)


async def close_browser(service: BrowserService) -> str:
    """Persist session state and close the shared browser, if there is one."""
    LOGGER.debug("Closing browser...")
    if not await service.cleanup():
        return NO_ACTIVE_BROWSER_MESSAGE
    return BROWSER_CLOSED_MESSAGE
