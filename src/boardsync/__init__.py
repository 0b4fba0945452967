"""boardsync - rule-driven sync of GitHub issues and PRs into a Projects board.

High-level public API:

from boardsync import EnvSettings, build_runner, load_config

cfg = load_config('config/rules.yml', monitored_user='octocat')
runner = build_runner(cfg, EnvSettings.from_env(), dry_run=True)
summary = runner.run()
print(summary.totals())

The CLI (``boardsync sync``) is a thin wrapper over the same calls.
"""

from __future__ import annotations

from .board import BoardAccessor, ProjectBoard
from .config import BoardConfig, load_config
from .env_auth import EnvSettings
from .errors import (
    AuthenticationError,
    BoardSyncError,
    ColumnNotFoundError,
    ConfigError,
    VerificationError,
)
from .orchestrator import RunSummary, SyncRunner
from .runtime import build_runner

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "BoardAccessor",
    "BoardConfig",
    "BoardSyncError",
    "ColumnNotFoundError",
    "ConfigError",
    "EnvSettings",
    "ProjectBoard",
    "RunSummary",
    "SyncRunner",
    "VerificationError",
    "__version__",
    "build_runner",
    "load_config",
]
