"""Remote state accessor for a GitHub Projects (v2) board.

:class:`ProjectBoard` wraps the handful of GraphQL queries/mutations the sync
engine needs. Lookups that never change during a run (field ids, Status
options, the project's item list, the current iteration) are cached on the
instance, so one ``ProjectBoard`` equals one run's cache lifetime.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

from .errors import BoardSyncError, ColumnNotFoundError, ConfigError, GitHubAPIError
from .github_rest import GitHubClient
from .logging import StructuredLogger, get_logger
from .models import Item, ItemKind, Membership, ProjectItem, Sprint

STATUS_FIELD = "Status"
SPRINT_FIELD = "Sprint"
ASSIGNEES_FIELD = "Assignees"
PAGE_SIZE = 100
PROJECT_ITEMS_LIMIT = 300
SEARCH_LIMIT = 100

_RE_PROJECT_URL = re.compile(r"^https://github\.com/orgs/([^/]+)/projects/(\d+)/?$")

_ITEM_FIELDS = """
  __typename
  ... on Issue {
    id number state updatedAt
    repository { nameWithOwner }
    author { login }
    assignees(first: 10) { nodes { login } }
  }
  ... on PullRequest {
    id number state merged updatedAt
    repository { nameWithOwner }
    author { login }
    assignees(first: 10) { nodes { login } }
    closingIssuesReferences(first: 10) {
      nodes { id number repository { nameWithOwner } }
    }
  }
"""

SEARCH_QUERY = f"""
query($searchQuery: String!, $first: Int!) {{
  search(query: $searchQuery, type: ISSUE, first: $first) {{
    nodes {{ {_ITEM_FIELDS} }}
  }}
}}
"""

CONTENT_QUERY = f"""
query($id: ID!) {{
  node(id: $id) {{ {_ITEM_FIELDS} }}
}}
"""

PROJECT_ITEMS_QUERY = """
query($projectId: ID!, $cursor: String, $first: Int!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      items(first: $first, after: $cursor) {
        nodes {
          id
          content {
            ... on PullRequest { id }
            ... on Issue { id }
          }
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
"""

CONTENT_PROJECT_ITEMS_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on Issue { projectItems(first: 50) { nodes { id project { id } } } }
    ... on PullRequest { projectItems(first: 50) { nodes { id project { id } } } }
  }
}
"""

ADD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""

FIELD_QUERY = """
query($projectId: ID!, $fieldName: String!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      field(name: $fieldName) {
        ... on ProjectV2FieldCommon { id name }
        ... on ProjectV2SingleSelectField { options { id name } }
        ... on ProjectV2IterationField {
          configuration { iterations { id title startDate duration } }
        }
      }
    }
  }
}
"""

ITEM_VALUES_QUERY = """
query($itemId: ID!) {
  node(id: $itemId) {
    ... on ProjectV2Item {
      id
      status: fieldValueByName(name: "Status") {
        ... on ProjectV2ItemFieldSingleSelectValue { name optionId }
      }
      sprint: fieldValueByName(name: "Sprint") {
        ... on ProjectV2ItemFieldIterationValue { iterationId title startDate duration }
      }
      assignees: fieldValueByName(name: "Assignees") {
        ... on ProjectV2ItemFieldUserValue { users(first: 10) { nodes { login } } }
      }
    }
  }
}
"""

ITEM_CONTENT_QUERY = """
query($itemId: ID!) {
  node(id: $itemId) {
    ... on ProjectV2Item {
      type
      content {
        ... on Issue { number repository { nameWithOwner } }
        ... on PullRequest { number repository { nameWithOwner } }
      }
    }
  }
}
"""

UPDATE_SINGLE_SELECT_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(
    input: {projectId: $projectId, itemId: $itemId, fieldId: $fieldId, value: {singleSelectOptionId: $optionId}}
  ) {
    projectV2Item { id }
  }
}
"""

UPDATE_ITERATION_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $iterationId: String!) {
  updateProjectV2ItemFieldValue(
    input: {projectId: $projectId, itemId: $itemId, fieldId: $fieldId, value: {iterationId: $iterationId}}
  ) {
    projectV2Item { id }
  }
}
"""

PROJECT_LOOKUP_QUERY = """
query($organization: String!, $number: Int!) {
  organization(login: $organization) {
    projectV2(number: $number) { id title }
  }
}
"""

VIEWER_QUERY = "query { viewer { login } }"


class BoardAccessor(Protocol):
    """Surface of the remote board the engine depends on."""

    project_id: str

    def search_recent_items(
        self,
        organization: str | None,
        repositories: Iterable[str],
        monitored_user: str | None,
        since: datetime,
    ) -> list[Item]: ...

    def is_in_project(self, node_id: str, *, fresh: bool = False) -> Membership: ...

    def add_to_project(self, node_id: str) -> str: ...

    def get_item(self, node_id: str) -> Item: ...

    def get_project_item(self, project_item_id: str) -> ProjectItem: ...

    def get_column(self, project_item_id: str) -> str | None: ...

    def get_column_option_id(self, column: str) -> str: ...

    def set_column(self, project_item_id: str, option_id: str) -> None: ...

    def get_sprint(self, project_item_id: str) -> Sprint | None: ...

    def get_current_sprint(self) -> Sprint: ...

    def set_sprint(self, project_item_id: str, iteration_id: str) -> None: ...

    def get_assignees(self, project_item_id: str) -> frozenset[str]: ...

    def set_assignees(self, project_item_id: str, usernames: Iterable[str]) -> None: ...


@dataclass
class BoardCache:
    """Per-run lookups; discarded with the owning :class:`ProjectBoard`."""

    fields: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    column_options: dict[str, tuple[str, str]] | None = None
    project_items: dict[str, str] | None = None
    current_sprint: Sprint | None = None
    item_contents: dict[str, tuple[str, int]] = field(default_factory=dict)


def parse_project_url(url: str) -> tuple[str, int]:
    """Split ``https://github.com/orgs/<org>/projects/<n>`` into ``(org, n)``."""
    m = _RE_PROJECT_URL.match(url.strip())
    if not m:
        raise ConfigError(
            f"Invalid project URL {url!r}; expected https://github.com/orgs/<org>/projects/<number>"
        )
    return m.group(1), int(m.group(2))


def resolve_project_id(client: GitHubClient, organization: str, number: int) -> str:
    data = client.graphql(PROJECT_LOOKUP_QUERY, {"organization": organization, "number": number})
    org = data.get("organization") or {}
    project = org.get("projectV2") if isinstance(org, Mapping) else None
    if not isinstance(project, Mapping) or not isinstance(project.get("id"), str):
        raise ConfigError(
            f"Project {organization}/{number} not found or not accessible with provided token"
        )
    return str(project["id"])


def viewer_login(client: GitHubClient) -> str | None:
    data = client.graphql(VIEWER_QUERY)
    viewer = data.get("viewer") or {}
    login = viewer.get("login") if isinstance(viewer, Mapping) else None
    return str(login) if login else None


def _parse_date(value: str) -> date:
    return datetime.strptime(value[:10], "%Y-%m-%d").date()


def current_iteration(iterations: Iterable[Mapping[str, Any]], today: date) -> Sprint | None:
    """Return the iteration whose ``[start, start + duration)`` window holds ``today``."""
    for it in iterations:
        start_raw = it.get("startDate")
        duration = it.get("duration")
        if not isinstance(start_raw, str) or not isinstance(duration, int):
            continue
        start = _parse_date(start_raw)
        if start <= today < start + timedelta(days=duration):
            return Sprint(
                id=str(it["id"]),
                title=str(it.get("title", "")),
                start_date=start_raw,
                duration=duration,
            )
    return None


def _sprint_from_value(value: Any) -> Sprint | None:
    if not isinstance(value, Mapping) or not value.get("iterationId"):
        return None
    return Sprint(
        id=str(value["iterationId"]),
        title=str(value.get("title", "")),
        start_date=value.get("startDate"),
        duration=value.get("duration"),
    )


def _users_from_value(value: Any) -> frozenset[str]:
    if not isinstance(value, Mapping):
        return frozenset()
    nodes = (value.get("users") or {}).get("nodes") or []
    return frozenset(str(n["login"]) for n in nodes if isinstance(n, Mapping) and n.get("login"))


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


class ProjectBoard:
    """GitHub-backed :class:`BoardAccessor` bound to one project."""

    def __init__(
        self,
        client: GitHubClient,
        *,
        project_id: str,
        today: Callable[[], date] = _today_utc,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.client = client
        self.project_id = project_id
        self._today = today
        self._logger = logger or get_logger()
        self.cache = BoardCache()

    # ---- discovery ----------------------------------------------------
    def search_recent_items(
        self,
        organization: str | None,
        repositories: Iterable[str],
        monitored_user: str | None,
        since: datetime,
    ) -> list[Item]:
        """Items updated since ``since`` in monitored repos or authored by the user."""
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        queries: list[str] = []
        repo_terms = [
            f"repo:{repo if '/' in repo or not organization else f'{organization}/{repo}'}"
            for repo in repositories
        ]
        if repo_terms:
            queries.append(" ".join([*repo_terms, f"updated:>{stamp}"]))
        if monitored_user:
            queries.append(f"author:{monitored_user} updated:>{stamp}")
        seen: set[str] = set()
        items: list[Item] = []
        for search in queries:
            data = self.client.graphql(SEARCH_QUERY, {"searchQuery": search, "first": SEARCH_LIMIT})
            nodes = (data.get("search") or {}).get("nodes") or []
            for node in nodes:
                if not isinstance(node, Mapping) or not node.get("id"):
                    continue
                if node.get("__typename") not in {k.value for k in ItemKind}:
                    continue
                if node["id"] in seen:
                    continue
                seen.add(str(node["id"]))
                items.append(Item.from_payload(node))
        self._logger.debug(f"Found {len(items)} recent items", count=len(items))
        return items

    def get_item(self, node_id: str) -> Item:
        data = self.client.graphql(CONTENT_QUERY, {"id": node_id})
        node = data.get("node")
        if not isinstance(node, Mapping) or not node.get("id"):
            raise BoardSyncError(f"Content {node_id} not found")
        return Item.from_payload(node)

    # ---- membership ---------------------------------------------------
    def _load_project_items(self) -> dict[str, str]:
        if self.cache.project_items is not None:
            return self.cache.project_items
        items: dict[str, str] = {}
        cursor: str | None = None
        fetched = 0
        while fetched < PROJECT_ITEMS_LIMIT:
            data = self.client.graphql(
                PROJECT_ITEMS_QUERY,
                {"projectId": self.project_id, "cursor": cursor, "first": PAGE_SIZE},
            )
            page = ((data.get("node") or {}).get("items")) or {}
            nodes = page.get("nodes") or []
            fetched += len(nodes)
            for node in nodes:
                content = node.get("content") if isinstance(node, Mapping) else None
                if isinstance(content, Mapping) and content.get("id"):
                    items[str(content["id"])] = str(node["id"])
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage") or not nodes:
                break
            cursor = info.get("endCursor")
        self.cache.project_items = items
        return items

    def _content_membership(self, node_id: str) -> Membership:
        data = self.client.graphql(CONTENT_PROJECT_ITEMS_QUERY, {"id": node_id})
        nodes = (((data.get("node") or {}).get("projectItems")) or {}).get("nodes") or []
        for node in nodes:
            project = node.get("project") if isinstance(node, Mapping) else None
            if isinstance(project, Mapping) and project.get("id") == self.project_id:
                if self.cache.project_items is not None:
                    self.cache.project_items[node_id] = str(node["id"])
                return Membership(True, str(node["id"]))
        return Membership(False)

    def is_in_project(self, node_id: str, *, fresh: bool = False) -> Membership:
        """Board membership of ``node_id``.

        ``fresh`` skips the cached item list and asks GitHub directly; state
        verification after an add relies on it.
        """
        if not fresh:
            items = self._load_project_items()
            if node_id in items:
                return Membership(True, items[node_id])
        # The cached list is capped; ask the content node directly.
        return self._content_membership(node_id)

    def add_to_project(self, node_id: str) -> str:
        data = self.client.graphql(
            ADD_ITEM_MUTATION, {"projectId": self.project_id, "contentId": node_id}
        )
        payload = data.get("addProjectV2ItemById") or {}
        item = payload.get("item") if isinstance(payload, Mapping) else None
        item_id = item.get("id") if isinstance(item, Mapping) else None
        if not isinstance(item_id, str):
            raise GitHubAPIError("Failed to add item to project - missing item ID in response")
        return item_id

    # ---- fields -------------------------------------------------------
    def _get_field(self, field_name: str) -> Mapping[str, Any]:
        key = field_name.casefold()
        if key not in self.cache.fields:
            data = self.client.graphql(
                FIELD_QUERY, {"projectId": self.project_id, "fieldName": field_name}
            )
            payload = (data.get("node") or {}).get("field")
            if not isinstance(payload, Mapping) or not payload.get("id"):
                raise BoardSyncError(f"Project field '{field_name}' not found")
            self.cache.fields[key] = payload
        return self.cache.fields[key]

    def get_field_id(self, field_name: str) -> str:
        return str(self._get_field(field_name)["id"])

    def _column_options(self) -> dict[str, tuple[str, str]]:
        if self.cache.column_options is None:
            options: dict[str, tuple[str, str]] = {}
            for opt in self._get_field(STATUS_FIELD).get("options") or []:
                if isinstance(opt, Mapping) and opt.get("id") and opt.get("name"):
                    name = str(opt["name"])
                    options.setdefault(name.casefold(), (name, str(opt["id"])))
            self.cache.column_options = options
        return self.cache.column_options

    def get_column_option_id(self, column: str) -> str:
        options = self._column_options()
        match = options.get(column.casefold())
        if match is None:
            raise ColumnNotFoundError(column, [name for name, _ in options.values()])
        return match[1]

    # ---- item field values --------------------------------------------
    def get_project_item(self, project_item_id: str) -> ProjectItem:
        data = self.client.graphql(ITEM_VALUES_QUERY, {"itemId": project_item_id})
        node = data.get("node")
        if not isinstance(node, Mapping):
            raise BoardSyncError(f"Project item {project_item_id} not found")
        status = node.get("status")
        column = status.get("name") if isinstance(status, Mapping) else None
        return ProjectItem(
            project_item_id=project_item_id,
            column=str(column) if column else None,
            sprint=_sprint_from_value(node.get("sprint")),
            assignees=_users_from_value(node.get("assignees")),
        )

    def get_column(self, project_item_id: str) -> str | None:
        return self.get_project_item(project_item_id).column

    def set_column(self, project_item_id: str, option_id: str) -> None:
        self.client.graphql(
            UPDATE_SINGLE_SELECT_MUTATION,
            {
                "projectId": self.project_id,
                "itemId": project_item_id,
                "fieldId": self.get_field_id(STATUS_FIELD),
                "optionId": option_id,
            },
        )

    def get_sprint(self, project_item_id: str) -> Sprint | None:
        return self.get_project_item(project_item_id).sprint

    def get_current_sprint(self) -> Sprint:
        if self.cache.current_sprint is None:
            config = self._get_field(SPRINT_FIELD).get("configuration") or {}
            iterations = config.get("iterations") or []
            sprint = current_iteration(iterations, self._today())
            if sprint is None:
                raise BoardSyncError("No active sprint found")
            self.cache.current_sprint = sprint
        return self.cache.current_sprint

    def set_sprint(self, project_item_id: str, iteration_id: str) -> None:
        self.client.graphql(
            UPDATE_ITERATION_MUTATION,
            {
                "projectId": self.project_id,
                "itemId": project_item_id,
                "fieldId": self.get_field_id(SPRINT_FIELD),
                "iterationId": iteration_id,
            },
        )

    def get_assignees(self, project_item_id: str) -> frozenset[str]:
        return self.get_project_item(project_item_id).assignees

    def _item_content(self, project_item_id: str) -> tuple[str, int]:
        cached = self.cache.item_contents.get(project_item_id)
        if cached is not None:
            return cached
        data = self.client.graphql(ITEM_CONTENT_QUERY, {"itemId": project_item_id})
        content = (data.get("node") or {}).get("content")
        if not isinstance(content, Mapping) or not content.get("number"):
            raise BoardSyncError(f"Project item {project_item_id} has no issue or PR content")
        repo = (content.get("repository") or {}).get("nameWithOwner")
        result = (str(repo), int(content["number"]))
        self.cache.item_contents[project_item_id] = result
        return result

    def set_assignees(self, project_item_id: str, usernames: Iterable[str]) -> None:
        repository, number = self._item_content(project_item_id)
        self.client.update_assignees(repository, number, list(usernames))


__all__ = [
    "ASSIGNEES_FIELD",
    "BoardAccessor",
    "BoardCache",
    "ProjectBoard",
    "STATUS_FIELD",
    "SPRINT_FIELD",
    "current_iteration",
    "parse_project_url",
    "resolve_project_id",
    "viewer_login",
]
