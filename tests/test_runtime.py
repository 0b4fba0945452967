from __future__ import annotations

from argparse import Namespace
from pathlib import Path
from typing import Any

import pytest
from fake_board import sample_rules

from boardsync import board as board_mod
from boardsync.config import BoardConfig
from boardsync.env_auth import EnvSettings
from boardsync.errors import AuthenticationError, ConfigError
from boardsync.logging import get_logger
from boardsync.runtime import (
    build_runner,
    execute_command,
    prepare_config,
    resolve_project,
    validate_token,
)


class _LookupClient:
    def __init__(self, login: str = "octocat") -> None:
        self.login = login
        self.lookups: list[dict[str, Any]] = []

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        if query == board_mod.VIEWER_QUERY:
            return {"viewer": {"login": self.login}}
        assert query == board_mod.PROJECT_LOOKUP_QUERY
        self.lookups.append(dict(variables or {}))
        return {"organization": {"projectV2": {"id": f"PVT_{variables['number']}"}}}


def _settings(**kw: Any) -> EnvSettings:
    return EnvSettings(token="tkn", author="octocat", **kw)


def _config(**kw: Any) -> BoardConfig:
    values: dict[str, Any] = {
        "source_file": Path("rules.yml"),
        "project_id": None,
        "project_url": None,
        "project_number": None,
        "organization": "example-org",
        "repositories": ["api"],
        "monitored_user": "octocat",
        "rule_set": sample_rules(),
    }
    values.update(kw)
    return BoardConfig(**values)


def test_env_project_id_wins():
    client = _LookupClient()
    cfg = _config(project_url="https://github.com/orgs/example-org/projects/3")
    assert resolve_project(_settings(project_id="PVT_env"), cfg, client) == "PVT_env"  # type: ignore[arg-type]
    assert client.lookups == []


def test_env_url_beats_config_url():
    client = _LookupClient()
    cfg = _config(project_url="https://github.com/orgs/example-org/projects/3")
    settings = _settings(project_url="https://github.com/orgs/other-org/projects/8")
    assert resolve_project(settings, cfg, client) == "PVT_8"  # type: ignore[arg-type]
    assert client.lookups == [{"organization": "other-org", "number": 8}]


def test_config_number_requires_organization():
    client = _LookupClient()
    assert resolve_project(_settings(), _config(project_number=5), client) == "PVT_5"  # type: ignore[arg-type]
    with pytest.raises(ConfigError, match="organization"):
        resolve_project(_settings(), _config(project_number=5, organization=None), client)  # type: ignore[arg-type]


def test_config_id_and_missing_project():
    client = _LookupClient()
    assert resolve_project(_settings(), _config(project_id="PVT_cfg"), client) == "PVT_cfg"  # type: ignore[arg-type]
    with pytest.raises(ConfigError, match="No project configured"):
        resolve_project(_settings(), _config(), client)  # type: ignore[arg-type]


def test_validate_token_warns_on_other_user():
    assert validate_token(_LookupClient("hubot"), "octocat") == "hubot"  # type: ignore[arg-type]
    assert any("Token belongs to 'hubot'" in w for w in get_logger().warnings)


def test_build_runner_wires_scope_and_dry_run():
    cfg = _config(project_id="PVT_cfg", repositories=["api", "web"])
    runner = build_runner(cfg, _settings(), dry_run=True, client=_LookupClient())  # type: ignore[arg-type]
    assert runner.board.project_id == "PVT_cfg"
    assert runner.reconciler.dry_run is True
    assert runner.scope.repositories == frozenset({"example-org/api", "example-org/web"})
    assert runner.scope.monitored_user == "octocat"


def test_prepare_config_uses_author(sample_config_path):
    seen: dict[str, Any] = {}

    def loader(path: str, *, monitored_user: str | None = None) -> str:
        seen.update(path=path, user=monitored_user)
        return "cfg"

    assert prepare_config(Namespace(config=str(sample_config_path)), _settings(), loader=loader) == "cfg"  # type: ignore[arg-type]
    assert seen["user"] == "octocat"
    with pytest.raises(AttributeError):
        prepare_config(Namespace(), _settings(), loader=loader)  # type: ignore[arg-type]


def test_execute_command_maps_errors_to_exit_codes():
    def auth_fail() -> int:
        raise AuthenticationError("Bad credentials")

    def config_fail() -> int:
        raise ConfigError("broken")

    assert execute_command(lambda: 0, "sync") == 0
    assert execute_command(lambda: None, "sync") == 0
    assert execute_command(auth_fail, "sync") == 1
    assert execute_command(config_fail, "validate") == 1
    assert any("authentication failed" in e for e in get_logger().errors)
