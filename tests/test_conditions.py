from __future__ import annotations

import pytest
from fake_board import CURRENT_SPRINT, PREVIOUS_SPRINT, make_issue, make_pr, sample_scope

from boardsync.conditions import Predicate, PredicateKind, evaluate, parse_condition
from boardsync.errors import ConfigError
from boardsync.models import (
    NO_COLUMN,
    ItemSnapshot,
    ItemState,
    LinkedPullRequest,
    MonitoredScope,
    ProjectItem,
)

SCOPE = sample_scope()


def _snap(item, column=None, sprint=None, assignees=(), on_board=True, pr=None):  # type: ignore[no-untyped-def]
    project_item = (
        ProjectItem("PVTI_1", column=column, sprint=sprint, assignees=frozenset(assignees))
        if on_board
        else None
    )
    return ItemSnapshot(
        item=item, project_item=project_item, current_sprint_id=CURRENT_SPRINT.id, pull_request=pr
    )


@pytest.mark.parametrize(
    ("expr", "expected"),
    [
        ("item.author === monitored.user", Predicate(PredicateKind.AUTHOR_IS_MONITORED_USER)),
        ("item.assignees.includes(monitored.user)", Predicate(PredicateKind.ASSIGNEE_IS_MONITORED_USER)),
        ("monitored.repos.includes(item.repository)", Predicate(PredicateKind.REPOSITORY_IS_MONITORED)),
        ("!item.column", Predicate(PredicateKind.COLUMN_IS_UNSET)),
        ("item.column", Predicate(PredicateKind.COLUMN_IS_UNSET, negated=True)),
        ("item.column === 'New'", Predicate(PredicateKind.COLUMN_EQUALS, ("New",))),
        ("item.column !== 'New'", Predicate(PredicateKind.COLUMN_EQUALS, ("New",), negated=True)),
        (
            "item.column === 'Next' || item.column === 'Active'",
            Predicate(PredicateKind.COLUMN_IN, ("Next", "Active")),
        ),
        ("item.sprint === 'current'", Predicate(PredicateKind.SPRINT_EQUALS_CURRENT)),
        ("item.sprint != null", Predicate(PredicateKind.SPRINT_IS_SET)),
        ("item.inProject", Predicate(PredicateKind.ALREADY_IN_PROJECT)),
        (
            "!item.pr.closed || item.pr.merged",
            Predicate(PredicateKind.PR_CLOSED_NOT_MERGED, negated=True),
        ),
        (
            "item.column === item.pr.column && item.assignees === item.pr.assignees",
            Predicate(PredicateKind.INHERITANCE_ALREADY_SATISFIED),
        ),
    ],
)
def test_legacy_expressions_map_to_predicates(expr: str, expected: Predicate) -> None:
    assert parse_condition(expr) == expected


def test_structured_conditions() -> None:
    assert parse_condition("already_in_project") == Predicate(PredicateKind.ALREADY_IN_PROJECT)
    assert parse_condition({"predicate": "column_equals", "value": "Done"}) == Predicate(
        PredicateKind.COLUMN_EQUALS, ("Done",)
    )
    assert parse_condition({"predicate": "column_in", "values": ["Next", "Active"]}).params == (
        "Next",
        "Active",
    )
    negated = parse_condition({"not": "pr_closed_not_merged"})
    assert negated.kind is PredicateKind.PR_CLOSED_NOT_MERGED
    assert negated.negated is True


@pytest.mark.parametrize(
    "raw",
    [
        "item.labels.includes('bug')",
        "unknown_predicate",
        {"predicate": "labels_match"},
        {"predicate": "column_equals"},
        {"predicate": "column_in", "values": []},
        {"value": "New"},
        42,
    ],
)
def test_unknown_conditions_raise_config_error(raw: object) -> None:
    with pytest.raises(ConfigError):
        parse_condition(raw)


def test_monitored_user_predicates_false_without_user() -> None:
    pr = make_pr(1, author="octocat", assignees=["octocat"])
    empty_scope = MonitoredScope()
    snap = _snap(pr)
    assert evaluate(Predicate(PredicateKind.AUTHOR_IS_MONITORED_USER), snap, SCOPE)
    assert evaluate(Predicate(PredicateKind.ASSIGNEE_IS_MONITORED_USER), snap, SCOPE)
    assert not evaluate(Predicate(PredicateKind.AUTHOR_IS_MONITORED_USER), snap, empty_scope)
    assert not evaluate(Predicate(PredicateKind.ASSIGNEE_IS_MONITORED_USER), snap, empty_scope)


def test_repository_membership_uses_full_names() -> None:
    pred = Predicate(PredicateKind.REPOSITORY_IS_MONITORED)
    assert evaluate(pred, _snap(make_issue(1, repository="example-org/api")), SCOPE)
    assert not evaluate(pred, _snap(make_issue(1, repository="other-org/api")), SCOPE)


def test_column_predicates_are_case_insensitive_and_honor_sentinel() -> None:
    issue = make_issue(1)
    unset = Predicate(PredicateKind.COLUMN_IS_UNSET)
    assert evaluate(unset, _snap(issue, column=None), SCOPE)
    assert evaluate(unset, _snap(issue, column=NO_COLUMN), SCOPE)
    assert evaluate(unset, _snap(issue, on_board=False), SCOPE)
    assert not evaluate(unset, _snap(issue, column="New"), SCOPE)
    assert evaluate(Predicate(PredicateKind.COLUMN_EQUALS, ("new",)), _snap(issue, column="New"), SCOPE)
    column_in = Predicate(PredicateKind.COLUMN_IN, ("Next", "Active"))
    assert evaluate(column_in, _snap(issue, column="ACTIVE"), SCOPE)
    assert not evaluate(column_in, _snap(issue, column="Done"), SCOPE)


def test_sprint_predicates() -> None:
    issue = make_issue(1)
    current = Predicate(PredicateKind.SPRINT_EQUALS_CURRENT)
    is_set = Predicate(PredicateKind.SPRINT_IS_SET)
    assert evaluate(current, _snap(issue, sprint=CURRENT_SPRINT), SCOPE)
    assert not evaluate(current, _snap(issue, sprint=PREVIOUS_SPRINT), SCOPE)
    assert not evaluate(current, _snap(issue, sprint=None), SCOPE)
    assert evaluate(is_set, _snap(issue, sprint=PREVIOUS_SPRINT), SCOPE)
    assert not evaluate(is_set, _snap(issue), SCOPE)


def test_already_in_project_and_author_is_assignee() -> None:
    pr = make_pr(1, author="octocat")
    assert evaluate(Predicate(PredicateKind.ALREADY_IN_PROJECT), _snap(pr), SCOPE)
    assert not evaluate(Predicate(PredicateKind.ALREADY_IN_PROJECT), _snap(pr, on_board=False), SCOPE)
    author_assigned = Predicate(PredicateKind.AUTHOR_IS_ASSIGNEE)
    assert evaluate(author_assigned, _snap(pr, assignees=["octocat"]), SCOPE)
    assert not evaluate(author_assigned, _snap(pr, assignees=["alice"]), SCOPE)


@pytest.mark.parametrize(
    ("state", "expected"),
    [(ItemState.OPEN, False), (ItemState.MERGED, False), (ItemState.CLOSED, True)],
)
def test_pr_closed_not_merged(state: ItemState, expected: bool) -> None:
    pr = make_pr(5, state=state)
    issue = make_issue(9)
    linked = LinkedPullRequest(item=pr, column="Active", assignees=frozenset())
    pred = Predicate(PredicateKind.PR_CLOSED_NOT_MERGED)
    assert evaluate(pred, _snap(issue, pr=linked), SCOPE) is expected
    assert evaluate(pred, _snap(pr), SCOPE) is expected


def test_inheritance_already_satisfied() -> None:
    pr = make_pr(5, state=ItemState.MERGED)
    linked = LinkedPullRequest(item=pr, column="Active", assignees=frozenset({"alice"}))
    pred = Predicate(PredicateKind.INHERITANCE_ALREADY_SATISFIED)
    issue = make_issue(9)
    assert evaluate(pred, _snap(issue, column="active", assignees=["alice"], pr=linked), SCOPE)
    assert not evaluate(pred, _snap(issue, column="New", assignees=["alice"], pr=linked), SCOPE)
    assert not evaluate(pred, _snap(issue, column="Active", assignees=["bob"], pr=linked), SCOPE)
    assert not evaluate(pred, _snap(issue, column="Active"), SCOPE)
