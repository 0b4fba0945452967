"""Post-mutation state verification.

Writes to the Projects API are eventually consistent, so after each mutation
the reconciler re-reads the board until it sees the expected value. Each
read is recorded in a bounded :class:`StateChangeLog` that ends up in the run
summary.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from typing import Any

from .board import BoardAccessor
from .errors import BoardSyncError, VerificationError
from .logging import StructuredLogger, get_logger
from .models import same_column
from .retry import RetryPolicy, run_with_retries

DEFAULT_LOG_SIZE = 500


class StateMismatch(BoardSyncError):
    """Observed state does not (yet) match the expected state."""


@dataclass(frozen=True)
class StateChange:
    item: str
    check: str
    attempt: int
    expected: Any
    observed: Any
    ok: bool
    at: str
    before: Any = None


class StateChangeLog:
    """Bounded in-memory record of every verification attempt."""

    def __init__(self, maxlen: int = DEFAULT_LOG_SIZE) -> None:
        self._entries: deque[StateChange] = deque(maxlen=maxlen)

    def record(
        self,
        item: str,
        check: str,
        attempt: int,
        expected: Any,
        observed: Any,
        ok: bool,
        *,
        before: Any = None,
    ) -> None:
        self._entries.append(
            StateChange(
                item=item,
                check=check,
                attempt=attempt,
                expected=expected,
                observed=observed,
                ok=ok,
                at=datetime.now(timezone.utc).isoformat(),
                before=before,
            )
        )

    def __iter__(self) -> Iterator[StateChange]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def retries(self) -> int:
        return sum(1 for e in self._entries if e.attempt > 1)

    def as_dicts(self) -> list[dict[str, Any]]:
        return [
            {
                "item": e.item,
                "check": e.check,
                "attempt": e.attempt,
                "before": _jsonable(e.before),
                "expected": _jsonable(e.expected),
                "observed": _jsonable(e.observed),
                "ok": e.ok,
                "at": e.at,
            }
            for e in self._entries
        ]


def _jsonable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


class StateVerifier:
    def __init__(
        self,
        board: BoardAccessor,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        log: StateChangeLog | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.board = board
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.log = log if log is not None else StateChangeLog()
        self._logger = logger or get_logger()

    def _verify(
        self,
        label: str,
        check: str,
        expected: Any,
        read: Callable[[], Any],
        matches: Callable[[Any], bool],
        before: Any = None,
    ) -> Any:
        observed: dict[str, Any] = {}

        def _attempt(attempt: int) -> Any:
            value = read()
            observed["value"] = value
            ok = matches(value)
            self.log.record(label, check, attempt, expected, value, ok, before=before)
            if not ok:
                raise StateMismatch(f"{check} for {label}: expected {expected!r}, got {value!r}")
            return value

        try:
            return run_with_retries(
                _attempt,
                policy=self.policy,
                sleep=self.sleep,
                retry_on=lambda exc: isinstance(exc, StateMismatch),
                describe=f"verify {check} for {label}",
                snapshot=lambda: observed.get("value"),
            )
        except VerificationError as exc:
            self._logger.log_error(
                f"State verification failed for {label}",
                error=str(exc),
                check=check,
                attempts=exc.attempts,
            )
            raise

    def verify_addition(self, label: str, node_id: str) -> str:
        """Confirm ``node_id`` is on the board; returns its project item id.

        Reads bypass the membership cache so a lagging add is actually seen.
        """
        membership = self._verify(
            label,
            "addition",
            True,
            lambda: self.board.is_in_project(node_id, fresh=True),
            lambda m: bool(m.in_project),
            before=False,
        )
        return str(membership.project_item_id)

    def verify_column(
        self, label: str, project_item_id: str, column: str, *, before: str | None = None
    ) -> str | None:
        return self._verify(
            label,
            "column",
            column,
            lambda: self.board.get_column(project_item_id),
            lambda observed: same_column(observed, column),
            before=before,
        )

    def verify_sprint(
        self, label: str, project_item_id: str, sprint_id: str, *, before: Any = None
    ) -> Any:
        return self._verify(
            label,
            "sprint",
            sprint_id,
            lambda: self.board.get_sprint(project_item_id),
            lambda observed: observed is not None and observed.id == sprint_id,
            before=before,
        )

    def verify_assignees(
        self,
        label: str,
        project_item_id: str,
        assignees: Iterable[str],
        *,
        before: Iterable[str] | None = None,
    ) -> frozenset[str]:
        expected = frozenset(assignees)
        return self._verify(
            label,
            "assignees",
            expected,
            lambda: self.board.get_assignees(project_item_id),
            lambda observed: frozenset(observed) == expected,
            before=frozenset(before) if before is not None else None,
        )


__all__ = ["StateChange", "StateChangeLog", "StateMismatch", "StateVerifier"]
