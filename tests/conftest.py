"""Pytest configuration for boardsync tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Keep retry delays predictable regardless of the developer's shell.
for _var in ("BOARDSYNC_RETRY_ATTEMPTS", "BOARDSYNC_RETRY_BASE", "BOARDSYNC_RETRY_MAX"):
    os.environ.pop(_var, None)


@pytest.fixture(autouse=True)
def _fresh_logger():  # type: ignore[no-untyped-def]
    from boardsync.logging import configure_logging  # noqa: PLC0415

    configure_logging(level="DEBUG")
    yield


@pytest.fixture
def sample_config_path() -> Path:
    return ROOT / "config" / "rules.yml"
