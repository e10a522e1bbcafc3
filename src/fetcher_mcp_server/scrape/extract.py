from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from bs4 import BeautifulSoup
from markdownify import markdownify as md
from readability import Document

from ..models import FetchOptions
from .sanitize import sanitize_markdown

LOGGER = logging.getLogger(__name__)

# Elements whose text never belongs in converted output.
_NON_CONTENT_TAGS = ("script", "style", "noscript", "template", "head")


class ExtractionKind(str, Enum):
    EXTRACTED = "extracted"
    FELL_BACK_TO_FULL = "fell_back_to_full"


@dataclass(frozen=True)
class ExtractionOutcome:
    """Result of main-content extraction; `html` is what the next stage sees."""

    kind: ExtractionKind
    html: str

    @property
    def extracted(self) -> bool:
        return self.kind is ExtractionKind.EXTRACTED


def _has_text(html: str) -> bool:
    return bool(BeautifulSoup(html, "html.parser").get_text(strip=True))


def extract_main_content(html: str, url: str, *, log_prefix: str = "") -> ExtractionOutcome:
    """
    Isolate the primary article of a page with readability.

    Falls back to the unmodified markup when no article can be found; that is
    a degraded result, not an error.
    """
    try:
        article_html = Document(html, url=url).summary(html_partial=True)
    except Exception as exc:
        LOGGER.warning(
            "%s Could not extract main content (%s: %s), will use full HTML",
            log_prefix,
            type(exc).__name__,
            exc,
        )
        return ExtractionOutcome(ExtractionKind.FELL_BACK_TO_FULL, html)

    if not article_html or not _has_text(article_html):
        LOGGER.warning("%s Could not extract main content, will use full HTML", log_prefix)
        return ExtractionOutcome(ExtractionKind.FELL_BACK_TO_FULL, html)

    LOGGER.info(
        "%s Successfully extracted main content, length: %d", log_prefix, len(article_html)
    )
    return ExtractionOutcome(ExtractionKind.EXTRACTED, article_html)


def html_to_markdown(html: str) -> str:
    """
    Convert HTML (a fragment or a full page) to Markdown.
    """
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(list(_NON_CONTENT_TAGS)):
        element.decompose()
    return sanitize_markdown(md(str(soup), heading_style="ATX", bullets="-"))


def truncate_content(text: str, max_length: int) -> str:
    """Hard cut to `max_length` characters; 0 means unbounded."""
    if max_length > 0 and len(text) > max_length:
        return text[:max_length]
    return text


def process_content(
    html: str,
    url: str,
    options: FetchOptions,
    *,
    log_prefix: str = "",
) -> str:
    """
    Turn rendered page markup into the text returned to the caller.

    Stages (each optional, driven by `options`):
    1. readability extraction (`extract_content`), falling back to the full page;
    2. HTML -> Markdown conversion (unless `return_html`);
    3. truncation to `max_length` characters.
    """
    content = html
    if options.extract_content:
        LOGGER.info("%s Extracting main content", log_prefix)
        content = extract_main_content(html, url, log_prefix=log_prefix).html

    if not options.return_html:
        LOGGER.info("%s Converting to Markdown", log_prefix)
        content = html_to_markdown(content)
        LOGGER.info(
            "%s Successfully converted to Markdown, length: %d", log_prefix, len(content)
        )

    if options.max_length > 0 and len(content) > options.max_length:
        LOGGER.info(
            "%s Content exceeds maximum length, will truncate to %d characters",
            log_prefix,
            options.max_length,
        )
    return truncate_content(content, options.max_length)
