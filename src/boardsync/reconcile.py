"""Idempotent application of rule actions.

Each handler reads the current remote value, decides whether a mutation is
needed and issues at most one. Re-applying the same action to a converged
board produces no writes. Terminal states are never contested: an item that
sits in Done keeps its column, and a Done item that already carries a sprint
keeps that sprint.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from .board import BoardAccessor
from .errors import ConfigError
from .logging import StructuredLogger, get_logger
from .models import (
    Action,
    ActionKind,
    ApplyResult,
    ItemSnapshot,
    ProjectItem,
    column_is_unset,
    same_column,
)
from .verification import StateVerifier

DONE = "Done"
SETTLE_DELAY_SECONDS = 2.0
SPRINT_COLUMNS = frozenset({"next", "active", "done", "waiting"})
HISTORICAL_SPRINT_COLUMNS = frozenset({"done", "waiting"})
CURRENT_SPRINT = "current"
AUTHOR_PLACEHOLDER = "item.author"


def dedupe_actions(actions: Iterable[Action]) -> list[Action]:
    """Drop repeated ``(kind, value)`` pairs, keeping first occurrence order."""
    seen: set[tuple[ActionKind, str | None]] = set()
    out: list[Action] = []
    for action in actions:
        if action.key in seen:
            continue
        seen.add(action.key)
        out.append(action)
    return out


class Reconciler:
    def __init__(
        self,
        board: BoardAccessor,
        *,
        verifier: StateVerifier | None = None,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        sleep: Callable[[float], Any] = time.sleep,
        dry_run: bool = False,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.board = board
        self.sleep = sleep
        self.verifier = verifier if verifier is not None else StateVerifier(board, sleep=sleep)
        self.settle_delay = settle_delay
        self.dry_run = dry_run
        self._logger = logger or get_logger()
        self._handlers: dict[ActionKind, Callable[[ItemSnapshot, Action], ApplyResult]] = {
            ActionKind.ADD_TO_BOARD: self._add_to_board,
            ActionKind.SET_COLUMN: self._set_column,
            ActionKind.SET_SPRINT: self._set_sprint,
            ActionKind.SET_ASSIGNEE: self._set_assignee,
            ActionKind.INHERIT_COLUMN: self._inherit_column,
            ActionKind.INHERIT_ASSIGNEES: self._inherit_assignees,
        }

    # ---- public API ---------------------------------------------------
    def apply(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        result = self._handlers[action.kind](snapshot, action)
        if result.changed:
            self._logger.log_item_action(
                action.kind.value,
                snapshot.item.label,
                result.detail,
                dry_run=self.dry_run,
                rule=action.rule,
            )
        else:
            self._logger.debug(
                f"{snapshot.item.label} {action.kind.value} skipped: {result.detail}",
                rule=action.rule,
            )
        return result

    def apply_all(self, snapshot: ItemSnapshot, actions: Iterable[Action]) -> list[ApplyResult]:
        results: list[ApplyResult] = []
        for action in dedupe_actions(actions):
            result = self.apply(snapshot, action)
            if result.project_item_id and snapshot.project_item is None:
                snapshot = replace(snapshot, project_item=ProjectItem(result.project_item_id))
            results.append(result)
        return results

    # ---- helpers ------------------------------------------------------
    def _unchanged(self, action: Action, detail: str, snapshot: ItemSnapshot) -> ApplyResult:
        pid = snapshot.project_item.project_item_id if snapshot.project_item else None
        return ApplyResult(action=action, changed=False, detail=detail, project_item_id=pid)

    def _changed(self, action: Action, detail: str, project_item_id: str | None) -> ApplyResult:
        text = f"would {detail[0].lower()}{detail[1:]}" if self.dry_run else detail
        return ApplyResult(action=action, changed=True, detail=text, project_item_id=project_item_id)

    @staticmethod
    def _project_item_id(snapshot: ItemSnapshot) -> str:
        if snapshot.project_item is None:
            raise ConfigError(f"{snapshot.item.label} is not on the board")
        return snapshot.project_item.project_item_id

    # ---- handlers -----------------------------------------------------
    def _add_to_board(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        if snapshot.in_project:
            return self._unchanged(action, "Already in project", snapshot)
        item = snapshot.item
        membership = self.board.is_in_project(item.node_id)
        if membership.in_project:
            return ApplyResult(
                action=action,
                changed=False,
                detail="Already in project",
                project_item_id=membership.project_item_id,
            )
        if self.dry_run:
            return self._changed(action, "Added to project board", None)
        self.board.add_to_project(item.node_id)
        self.sleep(self.settle_delay)
        project_item_id = self.verifier.verify_addition(item.label, item.node_id)
        return self._changed(action, "Added to project board", project_item_id)

    def _column_reason(self, snapshot: ItemSnapshot, current: str | None, target: str) -> str:
        if snapshot.item.is_pull_request and same_column(target, "Active"):
            if column_is_unset(current):
                return "Initial PR placement in Active"
            if same_column(current, "New"):
                return "PR moved from New to Active"
        if not snapshot.item.is_pull_request and column_is_unset(current):
            return f"Initial issue placement in {target}"
        return f"Column set to {target} (was {current or 'None'})"

    def _write_column(
        self,
        snapshot: ItemSnapshot,
        action: Action,
        target: str,
        reason: str,
        before: str | None,
    ) -> ApplyResult:
        pid = self._project_item_id(snapshot)
        option_id = self.board.get_column_option_id(target)
        if self.dry_run:
            return self._changed(action, reason, pid)
        self.board.set_column(pid, option_id)
        self.verifier.verify_column(snapshot.item.label, pid, target, before=before)
        return self._changed(action, reason, pid)

    def _set_column(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        target = action.value
        if not target:
            raise ConfigError(f"Rule '{action.rule}' sets a column without a value")
        pid = self._project_item_id(snapshot)
        current = self.board.get_column(pid)
        if same_column(current, target):
            return self._unchanged(action, f"Column already set to {target}", snapshot)
        if same_column(current, DONE):
            if snapshot.item.is_closed:
                return self._unchanged(
                    action, "Column already set to Done by GitHub automation", snapshot
                )
            return self._unchanged(action, "Column is Done; terminal state kept", snapshot)
        return self._write_column(
            snapshot, action, target, self._column_reason(snapshot, current, target), current
        )

    def _set_sprint(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        if action.value not in (None, CURRENT_SPRINT):
            raise ConfigError(
                f"Rule '{action.rule}' requests sprint {action.value!r}; only 'current' is supported"
            )
        pid = self._project_item_id(snapshot)
        state = self.board.get_project_item(pid)
        column = state.column
        if column_is_unset(column) or str(column).casefold() not in SPRINT_COLUMNS:
            return self._unchanged(
                action, f"Column {column or 'None'} is not eligible for sprint assignment", snapshot
            )
        if str(column).casefold() in HISTORICAL_SPRINT_COLUMNS and state.sprint is not None:
            return self._unchanged(
                action, f"Sprint already set to {state.sprint.title} in {column}", snapshot
            )
        current = self.board.get_current_sprint()
        if state.sprint is not None and state.sprint.id == current.id:
            return self._unchanged(action, f"Sprint already set to {current.title}", snapshot)
        detail = f"Sprint set to {current.title}"
        if self.dry_run:
            return self._changed(action, detail, pid)
        self.board.set_sprint(pid, current.id)
        self.verifier.verify_sprint(snapshot.item.label, pid, current.id, before=state.sprint)
        return self._changed(action, detail, pid)

    def _set_assignee(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        pid = self._project_item_id(snapshot)
        current = self.board.get_assignees(pid)
        if current:
            return self._unchanged(
                action, f"Already assigned to {', '.join(sorted(current))}", snapshot
            )
        item = snapshot.item
        if action.value in (None, AUTHOR_PLACEHOLDER):
            if not item.is_pull_request:
                return self._unchanged(action, "Author assignment applies to pull requests only", snapshot)
            if not item.author:
                return self._unchanged(action, "Pull request author is unknown", snapshot)
            user = item.author
        else:
            user = str(action.value)
        detail = f"Assigned to {user}"
        if self.dry_run:
            return self._changed(action, detail, pid)
        self.board.set_assignees(pid, [user])
        self.verifier.verify_assignees(item.label, pid, [user], before=current)
        return self._changed(action, detail, pid)

    def _inherit_column(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        pr = snapshot.pull_request
        if pr is None:
            raise ConfigError("inherit_column is only valid for linked issues")
        if column_is_unset(pr.column):
            return self._unchanged(action, "Pull request has no column", snapshot)
        if same_column(snapshot.column, pr.column):
            return self._unchanged(action, f"Column already matches PR ({pr.column})", snapshot)
        if snapshot.item.is_closed and same_column(snapshot.column, DONE):
            return self._unchanged(
                action, "Column already set to Done by GitHub automation", snapshot
            )
        target = str(pr.column)
        return self._write_column(
            snapshot,
            action,
            target,
            f"Column inherited from {pr.item.label}: {target}",
            snapshot.column,
        )

    def _inherit_assignees(self, snapshot: ItemSnapshot, action: Action) -> ApplyResult:
        pr = snapshot.pull_request
        if pr is None:
            raise ConfigError("inherit_assignees is only valid for linked issues")
        if not pr.assignees:
            return self._unchanged(action, "Pull request has no assignees", snapshot)
        if snapshot.assignees == pr.assignees:
            return self._unchanged(action, "Assignees already match PR", snapshot)
        pid = self._project_item_id(snapshot)
        detail = f"Assignees inherited from {pr.item.label}: {', '.join(sorted(pr.assignees))}"
        if self.dry_run:
            return self._changed(action, detail, pid)
        self.board.set_assignees(pid, pr.assignees)
        self.verifier.verify_assignees(
            snapshot.item.label, pid, pr.assignees, before=snapshot.assignees
        )
        return self._changed(action, detail, pid)


__all__ = ["Reconciler", "dedupe_actions"]
