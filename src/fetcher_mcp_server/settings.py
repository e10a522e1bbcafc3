from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path


def _env_flag(key: str, default: bool = False) -> bool:
    raw = (os.environ.get(key) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _default_storage_state_path() -> Path:
    raw = (os.environ.get("FETCHER_STORAGE_STATE_PATH") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path(tempfile.gettempdir()) / "fetcher-mcp-server" / "storage.json"


def _resolve_max_concurrency() -> int:
    raw = (os.environ.get("FETCHER_MAX_CONCURRENCY") or "").strip()
    try:
        value = int(raw) if raw else 0
    except ValueError:
        value = 0
    return max(0, min(value, 32))


@dataclass
class Settings:
    """Runtime configuration (env-first).

    Note: keep this module lightweight; it is imported by tests.
    """

    debug: bool = field(default_factory=lambda: _env_flag("FETCHER_DEBUG"))
    storage_state_path: Path = field(default_factory=_default_storage_state_path)
    browser_executable_path: str = field(
        default_factory=lambda: (os.environ.get("FETCHER_BROWSER_EXECUTABLE_PATH") or "").strip()
    )
    max_concurrency: int = field(default_factory=_resolve_max_concurrency)


settings = Settings()
