"""Propagate a pull request's column and assignees to the issues it closes.

Only an open or merged PR propagates; a PR closed without merging leaves
its linked issues alone. Each linked issue is processed in isolation so one
failure does not stop its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .board import BoardAccessor
from .errors import AuthenticationError, classify_error
from .logging import StructuredLogger, get_logger
from .models import (
    Action,
    ActionKind,
    Item,
    ItemRef,
    ItemSnapshot,
    ItemState,
    LinkedPullRequest,
    MonitoredScope,
    RuleGroup,
    RuleSet,
)
from .reconcile import Reconciler
from .rules import evaluate_rules

REASON_CLOSED_UNMERGED = "PR is closed but not merged"
REASON_NO_LINKED = "No linked issues"


@dataclass
class LinkedIssueOutcome:
    issue: str
    changed: bool
    details: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class LinkedIssuesResult:
    changed: bool = False
    reason: str = ""
    processed: int = 0
    errors: int = 0
    linked_issues: list[LinkedIssueOutcome] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "reason": self.reason,
            "processed": self.processed,
            "errors": self.errors,
            "linked_issues": [
                {
                    "issue": o.issue,
                    "changed": o.changed,
                    "details": list(o.details),
                    "error": o.error,
                }
                for o in self.linked_issues
            ],
        }


def _sync_one(
    ref: ItemRef,
    pr: LinkedPullRequest,
    *,
    board: BoardAccessor,
    reconciler: Reconciler,
    rule_set: RuleSet,
    scope: MonitoredScope,
    current_sprint_id: str | None,
    logger: StructuredLogger,
) -> LinkedIssueOutcome:
    issue: Item = board.get_item(ref.node_id)
    membership = board.is_in_project(ref.node_id)
    outcome = LinkedIssueOutcome(issue=ref.label, changed=False)
    if membership.in_project and membership.project_item_id:
        project_item_id = membership.project_item_id
    else:
        add = reconciler.apply(
            ItemSnapshot(item=issue), Action(ActionKind.ADD_TO_BOARD, rule="linked_issue")
        )
        outcome.details.append(add.detail)
        outcome.changed = add.changed
        if add.project_item_id is None:
            # dry run: nothing further can be observed for an item not on the board
            return outcome
        project_item_id = add.project_item_id
    snapshot = ItemSnapshot(
        item=issue,
        project_item=board.get_project_item(project_item_id),
        current_sprint_id=current_sprint_id,
        pull_request=pr,
    )
    actions = evaluate_rules(snapshot, RuleGroup.LINKED_ISSUES, rule_set, scope, logger=logger)
    for result in reconciler.apply_all(snapshot, actions):
        outcome.details.append(result.detail)
        outcome.changed = outcome.changed or result.changed
    return outcome


def process_linked_issues(
    pr: Item,
    *,
    board: BoardAccessor,
    reconciler: Reconciler,
    rule_set: RuleSet,
    scope: MonitoredScope,
    pr_column: str | None,
    pr_assignees: frozenset[str],
    current_sprint_id: str | None = None,
    logger: StructuredLogger | None = None,
) -> LinkedIssuesResult:
    """Sync every issue closed by ``pr``; failures are counted, not raised.

    :class:`~boardsync.errors.AuthenticationError` still propagates since no
    further call can succeed.
    """
    log = logger or get_logger()
    if pr.state is ItemState.CLOSED:
        return LinkedIssuesResult(changed=False, reason=REASON_CLOSED_UNMERGED)
    if not pr.linked_issues:
        return LinkedIssuesResult(changed=False, reason=REASON_NO_LINKED)

    linked_pr = LinkedPullRequest(item=pr, column=pr_column, assignees=frozenset(pr_assignees))
    result = LinkedIssuesResult()
    for ref in pr.linked_issues:
        try:
            outcome = _sync_one(
                ref,
                linked_pr,
                board=board,
                reconciler=reconciler,
                rule_set=rule_set,
                scope=scope,
                current_sprint_id=current_sprint_id,
                logger=log,
            )
        except AuthenticationError:
            raise
        except Exception as exc:  # noqa: BLE001 - isolate one linked issue
            info = classify_error(exc)
            log.log_error(
                f"Failed to sync linked issue {ref.label} of {pr.label}",
                error=info.message,
                category=info.category,
            )
            result.errors += 1
            result.linked_issues.append(
                LinkedIssueOutcome(issue=ref.label, changed=False, error=info.message)
            )
            continue
        result.processed += 1
        result.changed = result.changed or outcome.changed
        result.linked_issues.append(outcome)

    result.reason = (
        f"Synced {result.processed} linked issue(s)"
        + (f", {result.errors} failed" if result.errors else "")
    )
    return result


__all__ = [
    "LinkedIssueOutcome",
    "LinkedIssuesResult",
    "REASON_CLOSED_UNMERGED",
    "REASON_NO_LINKED",
    "process_linked_issues",
]
