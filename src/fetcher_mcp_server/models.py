from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 10_000


class WaitUntil(str, Enum):
    """Navigation signal Playwright waits for before `goto` returns."""

    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"
    COMMIT = "commit"


def _positive_int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


class FetchOptions(BaseModel):
    """Per-call fetch configuration.

    Invalid or missing values fall back to defaults instead of failing
    validation, so loosely typed tool arguments still produce a usable
    option set.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    timeout: int = Field(
        default=DEFAULT_TIMEOUT_MS, description="Navigation deadline in milliseconds."
    )
    wait_until: WaitUntil = Field(
        default=WaitUntil.LOAD, description="When navigation is considered complete."
    )
    extract_content: bool = Field(
        default=True, description="Run readability extraction before conversion."
    )
    max_length: int = Field(
        default=0, description="Maximum characters of returned content (0 = unbounded)."
    )
    return_html: bool = Field(
        default=False, description="Return HTML instead of converting to Markdown."
    )
    wait_for_navigation: bool = Field(
        default=False, description="Wait for a follow-up navigation after the initial load."
    )
    navigation_timeout: int = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS,
        description="Bound on the follow-up navigation wait in milliseconds.",
    )
    disable_media: bool = Field(
        default=True, description="Abort image, stylesheet, font and media requests."
    )
    debug: bool | None = Field(
        default=None, description="Per-call override of the process-wide debug flag."
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: Any) -> int:
        return _positive_int_or(value, DEFAULT_TIMEOUT_MS)

    @field_validator("navigation_timeout", mode="before")
    @classmethod
    def _coerce_navigation_timeout(cls, value: Any) -> int:
        return _positive_int_or(value, DEFAULT_NAVIGATION_TIMEOUT_MS)

    @field_validator("max_length", mode="before")
    @classmethod
    def _coerce_max_length(cls, value: Any) -> int:
        return _positive_int_or(value, 0)

    @field_validator("wait_until", mode="before")
    @classmethod
    def _coerce_wait_until(cls, value: Any) -> WaitUntil:
        if isinstance(value, WaitUntil):
            return value
        try:
            return WaitUntil(str(value).strip().lower())
        except ValueError:
            return WaitUntil.LOAD

    @field_validator(
        "extract_content", "wait_for_navigation", "disable_media", mode="before"
    )
    @classmethod
    def _coerce_flag(cls, value: Any, info) -> bool:
        default = cls.model_fields[info.field_name].default
        if isinstance(value, bool):
            return value
        if value is None:
            return default
        raw = str(value).strip().lower()
        if raw in ("1", "true", "yes", "on"):
            return True
        if raw in ("0", "false", "no", "off"):
            return False
        return default

    @field_validator("return_html", mode="before")
    @classmethod
    def _coerce_return_html(cls, value: Any) -> bool:
        # Only an explicit true switches HTML output on.
        return value is True or str(value).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("debug", mode="before")
    @classmethod
    def _coerce_debug(cls, value: Any) -> bool | None:
        if value is None or isinstance(value, bool):
            return value
        raw = str(value).strip().lower()
        if raw in ("1", "true", "yes", "on"):
            return True
        if raw in ("0", "false", "no", "off"):
            return False
        return None

    def effective_debug(self, default: bool) -> bool:
        """Per-call `debug` wins over the process-wide flag."""
        return default if self.debug is None else self.debug


class FetchResult(BaseModel):
    success: bool = Field(description="Whether the page was fetched and processed.")
    content: str = Field(description="Formatted text block; present even on failure.")
    error: str | None = Field(default=None, description="Failure message when `success` is false.")
    index: int = Field(default=0, description="Position in the originating URL list.")
