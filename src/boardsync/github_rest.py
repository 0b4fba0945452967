from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import AuthenticationError, GitHubAPIError, TransientRemoteError
from .retry import RetryPolicy, is_transient, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "boardsync/0.1.0"
HTTP_UNAUTHORIZED = 401
HTTP_ERROR_STATUS = 400
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})
REQUEST_TIMEOUT = 30


def _raise_for_response(method: str, url: str, response: requests.Response) -> None:
    status = response.status_code
    text = response.text or ""
    if status == HTTP_UNAUTHORIZED or "bad credentials" in text.lower():
        raise AuthenticationError(
            "GitHub rejected the token (Bad credentials); check GITHUB_TOKEN"
        )
    if status in TRANSIENT_STATUSES or (status == 403 and is_transient(text)):  # noqa: PLR2004
        raise TransientRemoteError(
            f"GitHub API {method} {url} failed with {status}",
            status=status,
            response_text=text,
        )
    raise GitHubAPIError(
        f"GitHub API {method} {url} failed with {status}",
        status=status,
        response_text=text,
    )


def _raise_for_graphql_errors(errors: Any) -> None:
    if not errors:
        return
    if not isinstance(errors, list):
        errors = [errors]
    message = "; ".join(
        str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
    )
    types = {str(e.get("type", "")).upper() for e in errors if isinstance(e, dict)}
    if "bad credentials" in message.lower():
        raise AuthenticationError(f"GraphQL query rejected: {message}")
    if "RATE_LIMITED" in types or is_transient(message):
        raise TransientRemoteError(f"GraphQL query failed: {message}")
    raise GitHubAPIError(f"GraphQL query failed: {message}")


@dataclass
class GitHubClient:
    """Lightweight REST/GraphQL client for GitHub operations."""

    token: str
    base_url: str = DEFAULT_API_URL
    graphql_url: str = DEFAULT_GRAPHQL_URL
    session: requests.Session | None = None
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Callable[[float], Any] = time.sleep
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- transport ----------------------------------------------------
    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        """Issue one HTTP call and decode its body; no retries."""
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=REQUEST_TIMEOUT,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientRemoteError(f"GitHub API {method} {url} failed: {exc}") from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            _raise_for_response(method, url, response)
        if response.text:
            return response.json()
        return None

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = self._url(path)
        return run_with_retries(
            lambda _attempt: self._send(method, url, params=params, json_body=json_body),
            policy=self.policy,
            sleep=self.sleep,
            describe=f"{method} {url}",
            reraise=True,
        )

    # ---- GraphQL ------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` payload.

        Rate limits reported inside a 200 body are retried like HTTP ones.
        """
        payload = {"query": query, "variables": variables or {}}

        def _run(_attempt: int) -> dict[str, Any]:
            data = self._send("POST", self.graphql_url, json_body=payload)
            if not isinstance(data, dict):
                raise GitHubAPIError("GraphQL response was not a JSON object")
            _raise_for_graphql_errors(data.get("errors"))
            result = data.get("data")
            return result if isinstance(result, dict) else {}

        return run_with_retries(
            _run,
            policy=self.policy,
            sleep=self.sleep,
            describe=f"POST {self.graphql_url}",
            reraise=True,
        )

    # ---- REST helpers -------------------------------------------------
    def update_assignees(self, repository: str, number: int, assignees: list[str]) -> None:
        """Replace the assignees of an issue or pull request.

        Pull requests share the issues endpoint for assignees.
        """
        self.request(
            "PATCH",
            f"/repos/{repository}/issues/{number}",
            json_body={"assignees": sorted(assignees)},
        )


__all__ = ["GitHubClient", "HTTP_UNAUTHORIZED", "DEFAULT_GRAPHQL_URL"]
