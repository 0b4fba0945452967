import json
from dataclasses import dataclass
from typing import Any

import pytest
import requests

from boardsync.errors import AuthenticationError, GitHubAPIError, TransientRemoteError
from boardsync.github_rest import GitHubClient
from boardsync.retry import RetryPolicy


@dataclass
class _DummyResponse:
    status_code: int
    payload: Any

    def json(self) -> Any:
        return self.payload

    @property
    def text(self) -> str:
        if self.payload is None:
            return ""
        if isinstance(self.payload, (dict, list)):
            return json.dumps(self.payload)
        return str(self.payload)


class _DummySession:
    def __init__(self, responses: list[Any]):
        self._responses = responses
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self.headers: dict[str, str] = {}

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        timeout: float | None = None,
    ) -> _DummyResponse:
        self.request_log.append((method, url, {"json": json, "params": params, "timeout": timeout}))
        if not self._responses:
            raise AssertionError("No response queued for request")
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def _client(responses: list[Any], sleeps: list[float] | None = None) -> tuple[GitHubClient, _DummySession]:
    session = _DummySession(responses)
    client = GitHubClient(
        token="tkn",
        session=session,  # type: ignore[arg-type]
        policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=5.0),
        sleep=(sleeps.append if sleeps is not None else (lambda _s: None)),
    )
    return client, session


def test_session_headers_are_set():
    _client_obj, session = _client([])
    assert session.headers["Authorization"] == "Bearer tkn"
    assert session.headers["Accept"] == "application/vnd.github+json"


def test_graphql_returns_data():
    client, session = _client([_DummyResponse(200, {"data": {"viewer": {"login": "octocat"}}})])
    data = client.graphql("query { viewer { login } }", {"a": 1})
    assert data == {"viewer": {"login": "octocat"}}
    method, url, kw = session.request_log[0]
    assert (method, url) == ("POST", "https://api.github.com/graphql")
    assert kw["json"]["variables"] == {"a": 1}
    assert kw["timeout"] == 30


def test_graphql_errors_raise_api_error():
    client, _ = _client([_DummyResponse(200, {"errors": [{"message": "Field 'x' doesn't exist"}]})])
    with pytest.raises(GitHubAPIError, match="doesn't exist"):
        client.graphql("query { x }")


def test_graphql_bad_credentials_is_authentication_error():
    client, _ = _client([_DummyResponse(200, {"errors": [{"message": "Bad credentials"}]})])
    with pytest.raises(AuthenticationError):
        client.graphql("query { viewer { login } }")


def test_unauthorized_is_not_retried():
    client, session = _client([_DummyResponse(401, {"message": "Bad credentials"})])
    with pytest.raises(AuthenticationError):
        client.request("GET", "/user")
    assert len(session.request_log) == 1


def test_gateway_errors_are_retried():
    sleeps: list[float] = []
    client, session = _client(
        [_DummyResponse(502, "Bad Gateway"), _DummyResponse(200, {"ok": True})], sleeps
    )
    assert client.request("GET", "/rate_limit") == {"ok": True}
    assert len(session.request_log) == 2
    assert sleeps == [1.0]


def test_connection_errors_become_transient_and_exhaust():
    client, session = _client([requests.ConnectionError("reset")] * 3)
    with pytest.raises(TransientRemoteError):
        client.request("GET", "/user")
    assert len(session.request_log) == 3


def test_secondary_rate_limit_403_is_transient():
    client, _ = _client(
        [
            _DummyResponse(403, {"message": "You have exceeded a secondary rate limit"}),
            _DummyResponse(200, {"data": {}}),
        ]
    )
    assert client.graphql("query { viewer { login } }") == {}


def test_other_client_errors_propagate():
    client, session = _client([_DummyResponse(422, {"message": "Validation Failed"})])
    with pytest.raises(GitHubAPIError) as excinfo:
        client.request("PATCH", "/repos/acme/widgets/issues/1", json_body={})
    assert excinfo.value.status == 422
    assert len(session.request_log) == 1


def test_update_assignees_patches_issue():
    client, session = _client([_DummyResponse(200, {"number": 5})])
    client.update_assignees("acme/widgets", 5, ["bob", "alice"])
    method, url, kw = session.request_log[0]
    assert method == "PATCH"
    assert url == "https://api.github.com/repos/acme/widgets/issues/5"
    assert kw["json"] == {"assignees": ["alice", "bob"]}


def test_empty_body_returns_none():
    client, _ = _client([_DummyResponse(204, None)])
    assert client.request("DELETE", "/something") is None


def test_graphql_rate_limit_in_body_is_retried():
    sleeps: list[float] = []
    client, session = _client(
        [
            _DummyResponse(
                200,
                {"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded for user"}]},
            ),
            _DummyResponse(200, {"data": {"viewer": {"login": "octocat"}}}),
        ],
        sleeps,
    )
    assert client.graphql("query { viewer { login } }") == {"viewer": {"login": "octocat"}}
    assert len(session.request_log) == 2
    assert sleeps == [1.0]


def test_graphql_rate_limit_exhaustion_reraises_transient_error():
    limited = {"errors": [{"type": "RATE_LIMITED", "message": "limit reached"}]}
    client, session = _client([_DummyResponse(200, limited) for _ in range(3)])
    with pytest.raises(TransientRemoteError, match="limit reached"):
        client.graphql("query { viewer { login } }")
    assert len(session.request_log) == 3


def test_graphql_field_errors_are_not_retried():
    client, session = _client(
        [_DummyResponse(200, {"errors": [{"message": "Field 'x' doesn't exist"}]})]
    )
    with pytest.raises(GitHubAPIError):
        client.graphql("query { x }")
    assert len(session.request_log) == 1
