"""Closed predicate vocabulary for rule triggers and skip conditions.

Rule files may spell a condition two ways:

* structured: ``{predicate: column_equals, value: New}``, ``{predicate:
  column_in, values: [Next, Active]}`` or ``{not: <condition>}``
* expression strings kept from older rule files, e.g.
  ``"item.column === 'New'"``. These are matched against a fixed table once
  at load time; nothing is ever evaluated as code.

Anything outside the vocabulary raises :class:`~boardsync.errors.ConfigError`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ConfigError
from .models import ItemSnapshot, ItemState, MonitoredScope, column_is_unset, same_column


class PredicateKind(str, Enum):
    ALWAYS = "always"
    AUTHOR_IS_MONITORED_USER = "author_is_monitored_user"
    ASSIGNEE_IS_MONITORED_USER = "assignee_is_monitored_user"
    REPOSITORY_IS_MONITORED = "repository_is_monitored"
    COLUMN_IS_UNSET = "column_is_unset"
    COLUMN_EQUALS = "column_equals"
    COLUMN_IN = "column_in"
    SPRINT_EQUALS_CURRENT = "sprint_equals_current"
    SPRINT_IS_SET = "sprint_is_set"
    ALREADY_IN_PROJECT = "already_in_project"
    AUTHOR_IS_ASSIGNEE = "author_is_assignee"
    PR_CLOSED_NOT_MERGED = "pr_closed_not_merged"
    INHERITANCE_ALREADY_SATISFIED = "inheritance_already_satisfied"


_PARAMETRIZED = {PredicateKind.COLUMN_EQUALS, PredicateKind.COLUMN_IN}


@dataclass(frozen=True)
class Predicate:
    kind: PredicateKind
    params: tuple[str, ...] = ()
    negated: bool = False

    def negate(self) -> Predicate:
        return Predicate(self.kind, self.params, not self.negated)

    def describe(self) -> str:
        body = self.kind.value
        if self.params:
            body += f"({', '.join(self.params)})"
        return f"not {body}" if self.negated else body


# Legacy expression strings, whitespace-normalized.
_LEGACY_TABLE: dict[str, Predicate] = {
    "true": Predicate(PredicateKind.ALWAYS),
    "item.author === monitored.user": Predicate(PredicateKind.AUTHOR_IS_MONITORED_USER),
    "item.assignees.includes(monitored.user)": Predicate(
        PredicateKind.ASSIGNEE_IS_MONITORED_USER
    ),
    "monitored.repos.includes(item.repository)": Predicate(
        PredicateKind.REPOSITORY_IS_MONITORED
    ),
    "!item.column": Predicate(PredicateKind.COLUMN_IS_UNSET),
    "item.column": Predicate(PredicateKind.COLUMN_IS_UNSET, negated=True),
    "item.sprint === 'current'": Predicate(PredicateKind.SPRINT_EQUALS_CURRENT),
    "item.sprint != null": Predicate(PredicateKind.SPRINT_IS_SET),
    "item.sprint": Predicate(PredicateKind.SPRINT_IS_SET),
    "item.inProject": Predicate(PredicateKind.ALREADY_IN_PROJECT),
    "item.assignees.includes(item.author)": Predicate(PredicateKind.AUTHOR_IS_ASSIGNEE),
    "item.pr.closed && !item.pr.merged": Predicate(PredicateKind.PR_CLOSED_NOT_MERGED),
    "!item.pr.closed || item.pr.merged": Predicate(
        PredicateKind.PR_CLOSED_NOT_MERGED, negated=True
    ),
    "item.column === item.pr.column && item.assignees === item.pr.assignees": Predicate(
        PredicateKind.INHERITANCE_ALREADY_SATISFIED
    ),
}

_RE_COLUMN_CMP = re.compile(r"^item\.column\s*(===|!==)\s*['\"]([^'\"]+)['\"]$")


def _normalize(expr: str) -> str:
    return " ".join(expr.replace('"', "'").split())


def _parse_legacy(expr: str) -> Predicate:
    text = _normalize(expr)
    if text in _LEGACY_TABLE:
        return _LEGACY_TABLE[text]
    m = _RE_COLUMN_CMP.match(text)
    if m:
        pred = Predicate(PredicateKind.COLUMN_EQUALS, (m.group(2),))
        return pred.negate() if m.group(1) == "!==" else pred
    if "||" in text:
        columns: list[str] = []
        for part in text.split("||"):
            pm = _RE_COLUMN_CMP.match(part.strip())
            if not pm or pm.group(1) != "===":
                break
            columns.append(pm.group(2))
        else:
            return Predicate(PredicateKind.COLUMN_IN, tuple(columns))
    raise ConfigError(f"Unknown condition: {expr!r}")


def _parse_structured(raw: Mapping[str, Any]) -> Predicate:
    if "not" in raw:
        return parse_condition(raw["not"]).negate()
    name = raw.get("predicate")
    if not isinstance(name, str):
        raise ConfigError(f"Condition is missing a 'predicate' name: {dict(raw)!r}")
    try:
        kind = PredicateKind(name)
    except ValueError as exc:
        raise ConfigError(f"Unknown predicate: {name!r}") from exc
    params: tuple[str, ...] = ()
    if kind is PredicateKind.COLUMN_EQUALS:
        value = raw.get("value")
        if not isinstance(value, str) or not value:
            raise ConfigError("column_equals requires a string 'value'")
        params = (value,)
    elif kind is PredicateKind.COLUMN_IN:
        values = raw.get("values")
        if not isinstance(values, list) or not values:
            raise ConfigError("column_in requires a non-empty 'values' list")
        params = tuple(str(v) for v in values)
    return Predicate(kind, params, bool(raw.get("negate", False)))


def parse_condition(raw: Any) -> Predicate:
    """Parse one trigger/skip condition from a rule file."""
    if isinstance(raw, Predicate):
        return raw
    if isinstance(raw, bool):
        return Predicate(PredicateKind.ALWAYS, negated=not raw)
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return _PLAIN_NAMES[text]
        except KeyError:
            return _parse_legacy(text)
    if isinstance(raw, Mapping):
        return _parse_structured(raw)
    raise ConfigError(f"Unsupported condition type: {type(raw).__name__}")


_PLAIN_NAMES: dict[str, Predicate] = {
    kind.value: Predicate(kind) for kind in PredicateKind if kind not in _PARAMETRIZED
}


def _pr_closed_not_merged(snapshot: ItemSnapshot) -> bool:
    pr = snapshot.pull_request.item if snapshot.pull_request else snapshot.item
    return pr.state is ItemState.CLOSED


def _inheritance_satisfied(snapshot: ItemSnapshot) -> bool:
    pr = snapshot.pull_request
    if pr is None:
        return False
    return same_column(snapshot.column, pr.column) and snapshot.assignees == pr.assignees


def _evaluate_kind(pred: Predicate, snapshot: ItemSnapshot, scope: MonitoredScope) -> bool:  # noqa: PLR0911
    item = snapshot.item
    kind = pred.kind
    if kind is PredicateKind.ALWAYS:
        return True
    if kind is PredicateKind.AUTHOR_IS_MONITORED_USER:
        return bool(scope.monitored_user) and item.author == scope.monitored_user
    if kind is PredicateKind.ASSIGNEE_IS_MONITORED_USER:
        return bool(scope.monitored_user) and scope.monitored_user in item.assignees
    if kind is PredicateKind.REPOSITORY_IS_MONITORED:
        return item.repository in scope.repositories
    if kind is PredicateKind.COLUMN_IS_UNSET:
        return column_is_unset(snapshot.column)
    if kind is PredicateKind.COLUMN_EQUALS:
        return same_column(snapshot.column, pred.params[0])
    if kind is PredicateKind.COLUMN_IN:
        return any(same_column(snapshot.column, c) for c in pred.params)
    if kind is PredicateKind.SPRINT_EQUALS_CURRENT:
        sprint = snapshot.sprint
        return (
            sprint is not None
            and snapshot.current_sprint_id is not None
            and sprint.id == snapshot.current_sprint_id
        )
    if kind is PredicateKind.SPRINT_IS_SET:
        return snapshot.sprint is not None
    if kind is PredicateKind.ALREADY_IN_PROJECT:
        return snapshot.in_project
    if kind is PredicateKind.AUTHOR_IS_ASSIGNEE:
        return bool(item.author) and item.author in snapshot.assignees
    if kind is PredicateKind.PR_CLOSED_NOT_MERGED:
        return _pr_closed_not_merged(snapshot)
    if kind is PredicateKind.INHERITANCE_ALREADY_SATISFIED:
        return _inheritance_satisfied(snapshot)
    raise ConfigError(f"Unhandled predicate: {kind!r}")  # pragma: no cover


def evaluate(pred: Predicate, snapshot: ItemSnapshot, scope: MonitoredScope) -> bool:
    """Evaluate ``pred`` against a snapshot. Pure; never touches the network."""
    result = _evaluate_kind(pred, snapshot, scope)
    return not result if pred.negated else result


__all__ = ["Predicate", "PredicateKind", "evaluate", "parse_condition"]
