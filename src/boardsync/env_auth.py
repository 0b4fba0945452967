"""Environment-based settings and credential checks.

Reads ``GITHUB_TOKEN`` (or one of the usual alternatives), ``GITHUB_AUTHOR``
and the optional project/flag overrides, loading a ``.env`` file first when
one is present.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError
from .logging import get_logger

TOKEN_ALTERNATIVES = ("GH_TOKEN", "GITHUB_ACCESS_TOKEN", "GITHUB_PAT")
DOTENV_LOCATIONS = (".env", ".env.local")


def _flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() == "true"


def load_env_files(dotenv_path: str | None = None) -> Path | None:
    """Load the first ``.env`` file found; existing variables win."""
    logger = get_logger()
    candidates = [dotenv_path] if dotenv_path else list(DOTENV_LOCATIONS)
    for location in candidates:
        env_path = Path(location)
        if env_path.exists():
            load_dotenv(str(env_path), override=False)
            logger.debug(f"Loaded environment variables from {env_path}")
            return env_path
    return None


@dataclass(frozen=True)
class EnvSettings:
    token: str
    author: str
    project_id: str | None = None
    project_url: str | None = None
    verbose: bool = False
    strict_mode: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> EnvSettings:
        source = os.environ if env is None else env
        token = source.get("GITHUB_TOKEN")
        if not token:
            token = next((source[k] for k in TOKEN_ALTERNATIVES if source.get(k)), None)
        missing = []
        if not token:
            missing.append("GITHUB_TOKEN")
        author = source.get("GITHUB_AUTHOR")
        if not author:
            missing.append("GITHUB_AUTHOR")
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            token=str(token),
            author=str(author),
            project_id=source.get("PROJECT_ID") or None,
            project_url=source.get("PROJECT_URL") or None,
            verbose=_flag(source, "VERBOSE"),
            strict_mode=_flag(source, "STRICT_MODE"),
        )


__all__ = ["EnvSettings", "TOKEN_ALTERNATIVES", "load_env_files"]
