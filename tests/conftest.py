"""Pytest configuration for test isolation.

Settings and logging read ``PVM_*`` environment variables (possibly loaded
from a developer's ``.env``). Tests must not depend on whatever happens to be
set in the shell, so an autouse fixture clears them for every test.

The workspace ``packages/`` directory is put on ``sys.path`` so the package is
importable without installation.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
# Ensure `packages/` precedes the repo root on sys.path so local packages resolve first.
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

_ENV_VARS = (
    "PVM_CHUNK_SIZE",
    "PVM_PROGRESS_INTERVAL",
    "PVM_CANCEL_POLL_ROWS",
    "PVM_BRIDGE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
