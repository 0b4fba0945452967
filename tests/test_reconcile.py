from __future__ import annotations

import pytest
from fake_board import (
    CURRENT_SPRINT,
    PREVIOUS_SPRINT,
    FakeBoard,
    make_issue,
    make_pr,
    make_reconciler,
)

from boardsync.errors import ColumnNotFoundError, ConfigError
from boardsync.models import Action, ActionKind, ItemSnapshot, ItemState, ProjectItem
from boardsync.reconcile import dedupe_actions

SET_ACTIVE = Action(ActionKind.SET_COLUMN, "Active", "test")
SET_SPRINT = Action(ActionKind.SET_SPRINT, "current", "test")
ASSIGN_AUTHOR = Action(ActionKind.SET_ASSIGNEE, "item.author", "test")


def _snapshot(board: FakeBoard, item):  # type: ignore[no-untyped-def]
    membership = board.is_in_project(item.node_id)
    project_item = board.get_project_item(membership.project_item_id) if membership.in_project else None
    return ItemSnapshot(item=item, project_item=project_item, current_sprint_id=CURRENT_SPRINT.id)


def test_add_to_board_waits_settle_delay_and_verifies() -> None:
    board = FakeBoard()
    pr = make_pr(1)
    board.put(pr)
    sleeps: list[float] = []
    reconciler = make_reconciler(board, sleeps)

    result = reconciler.apply(_snapshot(board, pr), Action(ActionKind.ADD_TO_BOARD))

    assert result.changed is True
    assert result.project_item_id == board.pid(pr)
    assert sleeps == [2.0]
    assert reconciler.verifier.log.as_dicts()[0]["check"] == "addition"
    assert board.fresh_reads == 1

    again = reconciler.apply(_snapshot(board, pr), Action(ActionKind.ADD_TO_BOARD))
    assert again.changed is False
    assert board.mutations == [("add", pr.node_id)]


def test_set_column_is_idempotent() -> None:
    board = FakeBoard()
    pr = make_pr(1)
    board.put(pr, on_board=True)
    reconciler = make_reconciler(board, [])

    first = reconciler.apply(_snapshot(board, pr), SET_ACTIVE)
    second = reconciler.apply(_snapshot(board, pr), SET_ACTIVE)

    assert first.changed and first.detail == "Initial PR placement in Active"
    assert not second.changed
    assert len(board.mutations) == 1


def test_set_column_reasons() -> None:
    board = FakeBoard()
    pr = make_pr(1)
    issue = make_issue(2)
    board.put(pr, on_board=True, column="New")
    board.put(issue, on_board=True)
    reconciler = make_reconciler(board, [])

    moved = reconciler.apply(_snapshot(board, pr), SET_ACTIVE)
    placed = reconciler.apply(_snapshot(board, issue), Action(ActionKind.SET_COLUMN, "New"))

    assert moved.detail == "PR moved from New to Active"
    assert placed.detail == "Initial issue placement in New"


def test_case_insensitive_match_is_a_noop() -> None:
    board = FakeBoard()
    issue = make_issue(1)
    board.put(issue, on_board=True, column="active")
    result = make_reconciler(board, []).apply(_snapshot(board, issue), SET_ACTIVE)
    assert result.changed is False
    assert board.mutations == []


@pytest.mark.parametrize("state", [ItemState.CLOSED, ItemState.MERGED, ItemState.OPEN])
def test_done_column_is_never_contested(state: ItemState) -> None:
    board = FakeBoard()
    pr = make_pr(1, state=state)
    board.put(pr, on_board=True, column="Done")
    reconciler = make_reconciler(board, [])

    for _ in range(3):
        result = reconciler.apply(_snapshot(board, pr), SET_ACTIVE)
        assert result.changed is False

    assert board.column_of(pr) == "Done"
    assert board.mutations == []
    if state is not ItemState.OPEN:
        assert result.detail == "Column already set to Done by GitHub automation"


def test_missing_column_lists_available_options() -> None:
    board = FakeBoard(columns=["New", "new", "Active", "Backlog"])
    issue = make_issue(1)
    board.put(issue, on_board=True, column="Active")
    with pytest.raises(ColumnNotFoundError) as excinfo:
        make_reconciler(board, []).apply(_snapshot(board, issue), Action(ActionKind.SET_COLUMN, "Done"))
    assert str(excinfo.value) == (
        'Column "Done" not found in project. Available columns: New, Active, Backlog'
    )


def test_set_sprint_on_active_item() -> None:
    board = FakeBoard()
    issue = make_issue(1)
    board.put(issue, on_board=True, column="Active")
    reconciler = make_reconciler(board, [])

    result = reconciler.apply(_snapshot(board, issue), SET_SPRINT)

    assert result.changed
    assert board.mutations == [("sprint", board.pid(issue), CURRENT_SPRINT.id)]
    assert not reconciler.apply(_snapshot(board, issue), SET_SPRINT).changed


def test_active_item_with_stale_sprint_moves_to_current() -> None:
    board = FakeBoard()
    issue = make_issue(1)
    board.put(issue, on_board=True, column="Next", sprint=PREVIOUS_SPRINT)
    result = make_reconciler(board, []).apply(_snapshot(board, issue), SET_SPRINT)
    assert result.changed
    assert board.state[board.pid(issue)].sprint == CURRENT_SPRINT


@pytest.mark.parametrize("column", ["Done", "Waiting"])
def test_sprint_is_not_overwritten_once_finished(column: str) -> None:
    board = FakeBoard()
    issue = make_issue(1, state=ItemState.CLOSED)
    board.put(issue, on_board=True, column=column, sprint=PREVIOUS_SPRINT)
    reconciler = make_reconciler(board, [])
    for _ in range(2):
        assert not reconciler.apply(_snapshot(board, issue), SET_SPRINT).changed
    assert board.state[board.pid(issue)].sprint == PREVIOUS_SPRINT
    assert board.mutations == []


def test_sprint_skipped_for_ineligible_column() -> None:
    board = FakeBoard()
    issue = make_issue(1)
    board.put(issue, on_board=True, column="New")
    result = make_reconciler(board, []).apply(_snapshot(board, issue), SET_SPRINT)
    assert not result.changed
    assert "not eligible" in result.detail


def test_set_assignee_uses_author_and_never_overrides() -> None:
    board = FakeBoard()
    pr = make_pr(1, author="octocat")
    other = make_pr(2, author="octocat")
    board.put(pr, on_board=True)
    board.put(other, on_board=True, assignees=["alice"])
    reconciler = make_reconciler(board, [])

    assigned = reconciler.apply(_snapshot(board, pr), ASSIGN_AUTHOR)
    kept = reconciler.apply(_snapshot(board, other), ASSIGN_AUTHOR)

    assert assigned.changed and board.assignees_of(pr) == {"octocat"}
    assert not kept.changed and board.assignees_of(other) == {"alice"}


def test_set_assignee_without_author_is_noop() -> None:
    board = FakeBoard()
    pr = make_pr(1, author=None)
    board.put(pr, on_board=True)
    assert not make_reconciler(board, []).apply(_snapshot(board, pr), ASSIGN_AUTHOR).changed
    assert board.mutations == []


def test_dry_run_reports_without_mutating() -> None:
    board = FakeBoard()
    pr = make_pr(1)
    board.put(pr, on_board=True)
    result = make_reconciler(board, [], dry_run=True).apply(_snapshot(board, pr), SET_ACTIVE)
    assert result.changed
    assert result.detail == "would initial PR placement in Active"
    assert board.mutations == []


def test_apply_all_dedupes_and_threads_new_project_item() -> None:
    board = FakeBoard()
    pr = make_pr(1)
    board.put(pr)
    reconciler = make_reconciler(board, [])
    add = Action(ActionKind.ADD_TO_BOARD, None, "a")
    results = reconciler.apply_all(
        ItemSnapshot(item=pr), [add, Action(ActionKind.ADD_TO_BOARD, None, "b"), SET_ACTIVE]
    )
    assert [r.changed for r in results] == [True, True]
    assert board.column_of(pr) == "Active"


def test_dedupe_actions_keeps_first_occurrence() -> None:
    actions = [SET_ACTIVE, SET_SPRINT, Action(ActionKind.SET_COLUMN, "Active", "dup")]
    assert dedupe_actions(actions) == [SET_ACTIVE, SET_SPRINT]


def test_inherit_requires_pull_request_context() -> None:
    board = FakeBoard()
    issue = make_issue(1)
    board.put(issue, on_board=True)
    snapshot = ItemSnapshot(item=issue, project_item=ProjectItem(board.pid(issue)))
    with pytest.raises(ConfigError):
        make_reconciler(board, []).apply(snapshot, Action(ActionKind.INHERIT_COLUMN))


def test_verification_log_records_state_before_each_write() -> None:
    board = FakeBoard()
    pr = make_pr(1, author="octocat")
    issue = make_issue(2)
    board.put(pr, on_board=True, column="New")
    board.put(issue, on_board=True, column="Next", sprint=PREVIOUS_SPRINT)
    reconciler = make_reconciler(board, [])

    reconciler.apply(_snapshot(board, pr), SET_ACTIVE)
    reconciler.apply(_snapshot(board, pr), ASSIGN_AUTHOR)
    reconciler.apply(_snapshot(board, issue), SET_SPRINT)

    entries = {e["check"]: e for e in reconciler.verifier.log.as_dicts()}
    assert (entries["column"]["before"], entries["column"]["observed"]) == ("New", "Active")
    assert (entries["assignees"]["before"], entries["assignees"]["observed"]) == ([], ["octocat"])
    assert entries["sprint"]["before"]["id"] == PREVIOUS_SPRINT.id
    assert entries["sprint"]["observed"]["id"] == CURRENT_SPRINT.id
