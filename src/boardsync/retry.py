"""Centralized retry / backoff helpers.

GitHub's Projects API is eventually consistent: a mutation can succeed and a
read issued immediately afterwards may still return the old value. Every
place that needs "try, check, wait, try again" goes through
:func:`run_with_retries` so attempt counts and delays stay uniform.

Delay before attempt ``n`` (``n >= 2``)::

    min(base_delay * 2 ** (n - 2), max_delay)

With the defaults (1s base, 5s cap, 3 attempts) that is 1s then 2s.

Environment overrides:
  BOARDSYNC_RETRY_ATTEMPTS (default 3)
  BOARDSYNC_RETRY_BASE (seconds, default 1.0)
  BOARDSYNC_RETRY_MAX (seconds, default 5.0)
"""

from __future__ import annotations

import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .errors import TransientRemoteError, VerificationError
from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = field(default_factory=lambda: _env_int("BOARDSYNC_RETRY_ATTEMPTS", 3))
    base_delay: float = field(default_factory=lambda: _env_float("BOARDSYNC_RETRY_BASE", 1.0))
    max_delay: float = field(default_factory=lambda: _env_float("BOARDSYNC_RETRY_MAX", 5.0))

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based); zero for the first."""
        if attempt < 2:  # noqa: PLR2004
            return 0.0
        return float(min(self.base_delay * (2 ** (attempt - 2)), self.max_delay))


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def explicit_backoff(text: str) -> float | None:
    """Return a positive ``Retry-After`` hint embedded in ``text``, if any."""
    if not text:
        return None
    m = _RE_RETRY_AFTER.search(text)
    if m:
        val = float(m.group(1))
        return val if val > 0 else None
    return None


def _default_retry_on(exc: BaseException) -> bool:
    return isinstance(exc, TransientRemoteError) or is_transient(str(exc))


def run_with_retries(
    fn: Callable[[int], T],
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Any] = time.sleep,
    retry_on: Callable[[BaseException], bool] = _default_retry_on,
    describe: str = "operation",
    snapshot: Callable[[], Any] | None = None,
    reraise: bool = False,
) -> T:
    """Call ``fn(attempt)`` until it returns or the policy is exhausted.

    ``fn`` receives the 1-based attempt number. Exceptions for which
    ``retry_on`` is false propagate untouched on the first occurrence. When
    every attempt fails a :class:`VerificationError` is raised carrying the
    last exception and, when ``snapshot`` is given, the last observed state.
    With ``reraise`` the last exception itself propagates instead.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_attempts)
    last_error: BaseException | None = None
    logger = get_logger()
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = policy.delay_for(attempt)
            hint = explicit_backoff(str(last_error)) if last_error else None
            if hint is not None:
                delay = min(hint, policy.max_delay)
            logger.debug(
                f"[retry] {describe}: attempt {attempt}/{attempts}, sleeping {delay:.2f}s"
            )
            sleep(delay)
        try:
            return fn(attempt)
        except Exception as exc:
            if not retry_on(exc):
                raise
            last_error = exc
    if reraise and last_error is not None:
        raise last_error
    last_state = snapshot() if snapshot is not None else None
    raise VerificationError(
        f"{describe} failed after {attempts} attempts: {last_error}",
        last_error=last_error,
        last_state=last_state,
        attempts=attempts,
    )


__all__ = ["RetryPolicy", "explicit_backoff", "is_transient", "run_with_retries"]
