from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from fetcher_mcp_server import settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Keep tests away from the real session-state file and the host's debug flag.
    """
    monkeypatch.setattr(settings.settings, "debug", False)
    monkeypatch.setattr(settings.settings, "storage_state_path", tmp_path / "storage.json")
    monkeypatch.setattr(settings.settings, "browser_executable_path", "")
    monkeypatch.setattr(settings.settings, "max_concurrency", 0)
    yield settings.settings
