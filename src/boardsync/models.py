"""Core value types shared across the sync engine.

All types are immutable: an :class:`ItemSnapshot` describes the world as it
was observed at one point of a pass, and a fresh snapshot is built whenever
board state may have changed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NO_COLUMN = "None"


class ItemKind(str, Enum):
    PULL_REQUEST = "PullRequest"
    ISSUE = "Issue"


class ItemState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"

    @classmethod
    def from_payload(cls, state: Any, merged: Any = False) -> ItemState:
        if merged is True or str(state).upper() == "MERGED":
            return cls.MERGED
        if str(state).upper() == "CLOSED":
            return cls.CLOSED
        return cls.OPEN


class RuleGroup(str, Enum):
    """Rule groups; declaration order is evaluation order."""

    BOARD_ITEMS = "board_items"
    COLUMNS = "columns"
    SPRINTS = "sprints"
    ASSIGNEES = "assignees"
    LINKED_ISSUES = "linked_issues"


GROUP_ORDER: tuple[RuleGroup, ...] = tuple(RuleGroup)


class RuleTarget(str, Enum):
    PULL_REQUEST = "PullRequest"
    ISSUE = "Issue"
    LINKED_ISSUE = "LinkedIssue"


class ActionKind(str, Enum):
    ADD_TO_BOARD = "add_to_board"
    SET_COLUMN = "set_column"
    SET_SPRINT = "set_sprint"
    SET_ASSIGNEE = "set_assignee"
    INHERIT_COLUMN = "inherit_column"
    INHERIT_ASSIGNEES = "inherit_assignees"


@dataclass(frozen=True)
class ItemRef:
    node_id: str
    number: int
    repository: str

    @property
    def label(self) -> str:
        return f"{self.repository}#{self.number}"


@dataclass(frozen=True)
class Item:
    kind: ItemKind
    number: int
    node_id: str
    repository: str
    author: str | None = None
    assignees: frozenset[str] = frozenset()
    state: ItemState = ItemState.OPEN
    linked_issues: tuple[ItemRef, ...] = ()
    updated_at: str | None = None

    @property
    def label(self) -> str:
        return f"{self.repository}#{self.number}"

    @property
    def is_pull_request(self) -> bool:
        return self.kind is ItemKind.PULL_REQUEST

    @property
    def is_closed(self) -> bool:
        return self.state is not ItemState.OPEN

    @property
    def is_merged(self) -> bool:
        return self.state is ItemState.MERGED

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Item:
        """Build an item from a GraphQL ``Issue``/``PullRequest`` node."""
        typename = payload.get("__typename") or ItemKind.ISSUE.value
        kind = ItemKind(typename)
        repo = payload.get("repository") or {}
        author = payload.get("author") or {}
        assignee_nodes = (payload.get("assignees") or {}).get("nodes") or []
        linked_nodes = (payload.get("closingIssuesReferences") or {}).get("nodes") or []
        linked = tuple(
            ItemRef(
                node_id=str(node["id"]),
                number=int(node["number"]),
                repository=str((node.get("repository") or {}).get("nameWithOwner", "")),
            )
            for node in linked_nodes
            if isinstance(node, Mapping) and node.get("id")
        )
        return cls(
            kind=kind,
            number=int(payload.get("number") or 0),
            node_id=str(payload["id"]),
            repository=str(repo.get("nameWithOwner", "")),
            author=author.get("login") if isinstance(author, Mapping) else None,
            assignees=frozenset(
                str(n["login"]) for n in assignee_nodes if isinstance(n, Mapping) and n.get("login")
            ),
            state=ItemState.from_payload(payload.get("state"), payload.get("merged")),
            linked_issues=linked,
            updated_at=payload.get("updatedAt"),
        )


@dataclass(frozen=True)
class Sprint:
    id: str
    title: str
    start_date: str | None = None
    duration: int | None = None


@dataclass(frozen=True)
class ProjectItem:
    project_item_id: str
    column: str | None = None
    sprint: Sprint | None = None
    assignees: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Membership:
    in_project: bool
    project_item_id: str | None = None


@dataclass(frozen=True)
class MonitoredScope:
    monitored_user: str | None = None
    repositories: frozenset[str] = frozenset()
    organization: str | None = None

    @classmethod
    def build(
        cls, monitored_user: str | None, organization: str | None, repositories: Iterable[str]
    ) -> MonitoredScope:
        """Normalize bare repo names to ``org/repo`` full names."""
        full: set[str] = set()
        for repo in repositories:
            if "/" in repo or not organization:
                full.add(repo)
            else:
                full.add(f"{organization}/{repo}")
        return cls(monitored_user=monitored_user, repositories=frozenset(full), organization=organization)


@dataclass(frozen=True)
class LinkedPullRequest:
    item: Item
    column: str | None
    assignees: frozenset[str]


@dataclass(frozen=True)
class ItemSnapshot:
    item: Item
    project_item: ProjectItem | None = None
    current_sprint_id: str | None = None
    pull_request: LinkedPullRequest | None = None

    @property
    def target(self) -> RuleTarget:
        if self.pull_request is not None:
            return RuleTarget.LINKED_ISSUE
        if self.item.is_pull_request:
            return RuleTarget.PULL_REQUEST
        return RuleTarget.ISSUE

    @property
    def in_project(self) -> bool:
        return self.project_item is not None

    @property
    def column(self) -> str | None:
        return self.project_item.column if self.project_item else None

    @property
    def sprint(self) -> Sprint | None:
        return self.project_item.sprint if self.project_item else None

    @property
    def assignees(self) -> frozenset[str]:
        """Board-side assignees when on the board, else the item's own."""
        if self.project_item is not None:
            return self.project_item.assignees
        return self.item.assignees


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    value: str | None = None
    rule: str = ""

    @property
    def key(self) -> tuple[ActionKind, str | None]:
        return (self.kind, self.value)


@dataclass(frozen=True)
class ApplyResult:
    action: Action
    changed: bool
    detail: str
    project_item_id: str | None = None


@dataclass(frozen=True)
class Rule:
    """A declarative rule from the rule file.

    ``trigger`` and ``skip_if`` are :class:`boardsync.conditions.Predicate`
    values; typed as ``Any`` here to keep this module import-free.
    """

    name: str
    group: RuleGroup
    targets: frozenset[RuleTarget]
    trigger: Any
    actions: tuple[ActionKind, ...]
    skip_if: Any = None
    value: str | None = None
    description: str = ""


@dataclass(frozen=True)
class RuleSet:
    rules: Mapping[RuleGroup, tuple[Rule, ...]] = field(default_factory=dict)

    def for_group(self, group: RuleGroup) -> tuple[Rule, ...]:
        return tuple(self.rules.get(group, ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self.rules.values())


def column_is_unset(column: str | None) -> bool:
    return not column or column == NO_COLUMN


def same_column(left: str | None, right: str | None) -> bool:
    if column_is_unset(left) or column_is_unset(right):
        return column_is_unset(left) and column_is_unset(right)
    return str(left).casefold() == str(right).casefold()


__all__ = [
    "GROUP_ORDER",
    "NO_COLUMN",
    "Action",
    "ActionKind",
    "ApplyResult",
    "Item",
    "ItemKind",
    "ItemRef",
    "ItemSnapshot",
    "ItemState",
    "LinkedPullRequest",
    "Membership",
    "MonitoredScope",
    "ProjectItem",
    "Rule",
    "RuleGroup",
    "RuleSet",
    "RuleTarget",
    "Sprint",
    "column_is_unset",
    "same_column",
]
