"""Error taxonomy & redaction helpers.

Every failure raised by boardsync derives from :class:`BoardSyncError` so the
orchestrator can tell "this item failed" apart from "the run is broken". The
split that matters at runtime:

- :class:`AuthenticationError` is fatal and aborts the whole run.
- :class:`TransientRemoteError` is retried by :mod:`boardsync.retry`.
- Everything else is recorded against the item being processed.

Public API:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gh[osu]_[A-Za-z0-9]{20,40}"),  # OAuth / app tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"(?i)bearer\s+[A-Za-z0-9_\-\.]{20,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class BoardSyncError(RuntimeError):
    """Base class for all boardsync failures."""


class ConfigError(BoardSyncError):
    """Raised for invalid rule files, unknown predicates or missing settings."""


class AuthenticationError(BoardSyncError):
    """Raised when GitHub rejects the configured credentials."""


class GitHubAPIError(BoardSyncError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


class TransientRemoteError(GitHubAPIError):
    """Raised for rate limits and gateway failures that are worth retrying."""


class ColumnNotFoundError(BoardSyncError):
    """Raised when a column name has no matching Status option on the board."""

    def __init__(self, column: str, available: Iterable[str]):
        self.column = column
        self.available = _dedupe_casefold(available)
        super().__init__(
            f'Column "{column}" not found in project. '
            f"Available columns: {', '.join(self.available)}"
        )


class VerificationError(BoardSyncError):
    """Raised when a mutation could not be confirmed after every attempt."""

    def __init__(
        self,
        message: str,
        *,
        last_error: BaseException | None = None,
        last_state: Any = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.last_error = last_error
        self.last_state = last_state
        self.attempts = attempts


def _dedupe_casefold(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        key = name.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(name)
    return out


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    Typed boardsync errors map directly onto a category; anything else falls
    back to keyword sniffing on the message text.
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, AuthenticationError):
        return ErrorInfo("github.auth", redact(msg), name)
    if isinstance(exc, ConfigError):
        return ErrorInfo("config", redact(msg), name)
    if isinstance(exc, ColumnNotFoundError):
        return ErrorInfo(
            "board.column", redact(msg), name, details={"available": exc.available}
        )
    if isinstance(exc, VerificationError):
        return ErrorInfo(
            "board.verification",
            redact(msg),
            name,
            transient=True,
            details={"attempts": exc.attempts},
        )
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("github.rate_limit", redact(msg), name, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), name, transient=True)
    if isinstance(exc, TransientRemoteError):
        return ErrorInfo("github.transient", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if isinstance(exc, GitHubAPIError):
        return ErrorInfo("github.api", redact(msg), name, details={"status": exc.status})
    if any(k in low for k in ("yaml", "scannererror", "parsererror")):
        return ErrorInfo("parse", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "AuthenticationError",
    "BoardSyncError",
    "ColumnNotFoundError",
    "ConfigError",
    "ErrorInfo",
    "GitHubAPIError",
    "TransientRemoteError",
    "VerificationError",
    "classify_error",
    "redact",
]
