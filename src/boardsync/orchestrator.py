"""Run-level orchestration: fetch candidates, apply every rule group, summarize.

Items are processed one at a time. For each item the rule groups run in
their fixed order and the board state is re-read before every group, since
earlier groups (adding the item, placing it in a column) change what later
groups see. A failing item is recorded and the run moves on; only an
authentication failure stops the run.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypedDict

from .board import BoardAccessor
from .errors import AuthenticationError, BoardSyncError, classify_error
from .linked_issues import LinkedIssuesResult, process_linked_issues
from .logging import StructuredLogger, get_logger
from .models import (
    GROUP_ORDER,
    ActionKind,
    ApplyResult,
    Item,
    ItemSnapshot,
    MonitoredScope,
    ProjectItem,
    RuleGroup,
    RuleSet,
)
from .observability import span
from .reconcile import Reconciler
from .rules import evaluate_rules
from .schemas import SUMMARY_SCHEMA_VERSION
from .verification import StateChangeLog

STATUS_ADDED = "added"
STATUS_UPDATED = "updated"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


class Totals(TypedDict):
    items: int
    added: int
    updated: int
    skipped: int
    errors: int
    warnings: int


class ItemEntry(TypedDict, total=False):
    item: str
    status: str
    changes: list[str]
    error: str | None
    linked_issues: dict[str, Any]


class SummaryDocument(TypedDict, total=False):
    schemaVersion: int
    generated_at: str
    dry_run: bool
    project_id: str
    totals: Totals
    items: list[ItemEntry]
    verification: list[dict[str, Any]]


@dataclass
class ItemRecord:
    item: str
    status: str = STATUS_SKIPPED
    changes: list[str] = field(default_factory=list)
    error: str | None = None
    linked: LinkedIssuesResult | None = None

    def as_entry(self) -> ItemEntry:
        entry: ItemEntry = {
            "item": self.item,
            "status": self.status,
            "changes": list(self.changes),
            "error": self.error,
        }
        if self.linked is not None:
            entry["linked_issues"] = self.linked.as_dict()
        return entry


@dataclass
class RunSummary:
    project_id: str
    dry_run: bool = False
    records: list[ItemRecord] = field(default_factory=list)
    warnings: int = 0
    verification: list[dict[str, Any]] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.records if r.status == status)

    @property
    def added(self) -> int:
        return self._count(STATUS_ADDED)

    @property
    def updated(self) -> int:
        return self._count(STATUS_UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def errors(self) -> int:
        return self._count(STATUS_ERROR)

    def totals(self) -> Totals:
        return {
            "items": len(self.records),
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    def as_dict(self) -> SummaryDocument:
        return {
            "schemaVersion": SUMMARY_SCHEMA_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "dry_run": self.dry_run,
            "project_id": self.project_id,
            "totals": self.totals(),
            "items": [r.as_entry() for r in self.records],
            "verification": list(self.verification),
        }

    def write(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.as_dict(), indent=2) + "\n", encoding="utf-8")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncRunner:
    def __init__(
        self,
        board: BoardAccessor,
        rule_set: RuleSet,
        scope: MonitoredScope,
        *,
        reconciler: Reconciler | None = None,
        state_log: StateChangeLog | None = None,
        update_window_hours: float = 24.0,
        clock: Callable[[], datetime] = _utcnow,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.board = board
        self.rule_set = rule_set
        self.scope = scope
        self.reconciler = reconciler or Reconciler(board)
        self.state_log = state_log if state_log is not None else self.reconciler.verifier.log
        self.update_window_hours = update_window_hours
        self._clock = clock
        self._logger = logger or get_logger()
        self._current_sprint_id: str | None = None
        self._sprint_resolved = False

    # ---- per-run lookups ------------------------------------------------
    def current_sprint_id(self) -> str | None:
        if not self._sprint_resolved:
            self._sprint_resolved = True
            try:
                self._current_sprint_id = self.board.get_current_sprint().id
            except AuthenticationError:
                raise
            except BoardSyncError as exc:
                self._logger.warning(f"Current sprint unavailable: {exc}")
        return self._current_sprint_id

    def _snapshot(self, item: Item, project_item_id: str | None) -> ItemSnapshot:
        project_item: ProjectItem | None = None
        if project_item_id:
            project_item = self.board.get_project_item(project_item_id)
        return ItemSnapshot(
            item=item,
            project_item=project_item,
            current_sprint_id=self.current_sprint_id(),
        )

    # ---- item processing ------------------------------------------------
    def _apply_group(
        self, item: Item, group: RuleGroup, project_item_id: str | None, record: ItemRecord
    ) -> str | None:
        snapshot = self._snapshot(item, project_item_id)
        actions = evaluate_rules(snapshot, group, self.rule_set, self.scope, logger=self._logger)
        results: list[ApplyResult] = self.reconciler.apply_all(snapshot, actions)
        for result in results:
            if result.project_item_id and project_item_id is None:
                project_item_id = result.project_item_id
            if not result.changed:
                continue
            record.changes.append(result.detail)
            if result.action.kind is ActionKind.ADD_TO_BOARD:
                record.status = STATUS_ADDED
            elif record.status != STATUS_ADDED:
                record.status = STATUS_UPDATED
        return project_item_id

    def _apply_linked(self, item: Item, project_item_id: str | None, record: ItemRecord) -> None:
        if not item.is_pull_request or project_item_id is None:
            return
        state = self.board.get_project_item(project_item_id)
        record.linked = process_linked_issues(
            item,
            board=self.board,
            reconciler=self.reconciler,
            rule_set=self.rule_set,
            scope=self.scope,
            pr_column=state.column,
            pr_assignees=state.assignees,
            current_sprint_id=self.current_sprint_id(),
            logger=self._logger,
        )
        if record.linked.changed and record.status == STATUS_SKIPPED:
            record.status = STATUS_UPDATED
        if record.linked.changed:
            record.changes.append(f"Linked issues: {record.linked.reason}")

    def process_item(self, item: Item) -> ItemRecord:
        """Run every rule group for ``item``.

        A failing group is logged and recorded on the item; the remaining
        groups still run, so a missing sprint does not block assignees or
        linked issues.
        """
        record = ItemRecord(item=item.label)
        membership = self.board.is_in_project(item.node_id)
        project_item_id = membership.project_item_id if membership.in_project else None
        failures: list[str] = []
        for group in GROUP_ORDER:
            try:
                if group is RuleGroup.LINKED_ISSUES:
                    self._apply_linked(item, project_item_id, record)
                else:
                    project_item_id = self._apply_group(item, group, project_item_id, record)
            except AuthenticationError:
                raise
            except Exception as exc:  # noqa: BLE001 - isolate one rule group
                info = classify_error(exc)
                self._logger.log_error(
                    f"{group.value} rules failed for {item.label}",
                    error=info.message,
                    category=info.category,
                    group=group.value,
                )
                failures.append(f"{group.value}: {info.message}")
        if failures:
            record.status = STATUS_ERROR
            record.error = "; ".join(failures)
        return record

    def run(self, items: Iterable[Item] | None = None) -> RunSummary:
        """Process ``items`` (default: recently updated candidates)."""
        warnings_before = len(self._logger.warnings)
        summary = RunSummary(project_id=self.board.project_id, dry_run=self.reconciler.dry_run)
        if items is None:
            since = self._clock() - timedelta(hours=self.update_window_hours)
            items = self.board.search_recent_items(
                self.scope.organization,
                sorted(self.scope.repositories),
                self.scope.monitored_user,
                since,
            )
        with (
            self._logger.bound(project_id=self.board.project_id, dry_run=summary.dry_run),
            self._logger.timed_operation("sync_run"),
        ):
            for item in items:
                with span("boardsync.item", item=item.label, kind=item.kind.value):
                    try:
                        record = self.process_item(item)
                    except AuthenticationError:
                        raise
                    except Exception as exc:  # noqa: BLE001 - isolate one item
                        info = classify_error(exc)
                        self._logger.log_error(
                            f"Failed to process {item.label}",
                            error=info.message,
                            category=info.category,
                        )
                        record = ItemRecord(item=item.label, status=STATUS_ERROR, error=info.message)
                summary.records.append(record)
        summary.warnings = len(self._logger.warnings) - warnings_before
        summary.verification = self.state_log.as_dicts()
        return summary


__all__ = ["ItemRecord", "RunSummary", "SummaryDocument", "SyncRunner", "Totals"]
