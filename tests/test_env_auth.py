import os

import pytest

from boardsync.env_auth import EnvSettings, load_env_files
from boardsync.errors import ConfigError


def test_settings_from_mapping():
    settings = EnvSettings.from_env(
        {
            "GITHUB_TOKEN": "tkn",
            "GITHUB_AUTHOR": "octocat",
            "PROJECT_URL": "https://github.com/orgs/example-org/projects/1",
            "VERBOSE": "true",
            "STRICT_MODE": "TRUE",
        }
    )
    assert settings.token == "tkn"
    assert settings.author == "octocat"
    assert settings.project_id is None
    assert settings.project_url.endswith("/projects/1")
    assert settings.verbose is True
    assert settings.strict_mode is True


def test_alternative_token_names():
    settings = EnvSettings.from_env({"GH_TOKEN": "alt_token_456", "GITHUB_AUTHOR": "octocat"})
    assert settings.token == "alt_token_456"


def test_flags_require_literal_true():
    settings = EnvSettings.from_env(
        {"GITHUB_TOKEN": "t", "GITHUB_AUTHOR": "a", "VERBOSE": "1", "STRICT_MODE": "yes"}
    )
    assert settings.verbose is False
    assert settings.strict_mode is False


def test_missing_variables_are_listed():
    with pytest.raises(ConfigError) as excinfo:
        EnvSettings.from_env({})
    assert str(excinfo.value) == (
        "Missing required environment variables: GITHUB_TOKEN, GITHUB_AUTHOR"
    )


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "test_token_123")
    monkeypatch.setenv("GITHUB_AUTHOR", "octocat")
    monkeypatch.setenv("PROJECT_ID", "PVT_1")
    settings = EnvSettings.from_env()
    assert settings.token == "test_token_123"
    assert settings.project_id == "PVT_1"


def test_load_env_file_does_not_override(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("BOARDSYNC_TEST_A=from-file\nBOARDSYNC_TEST_B=from-file\n")
    monkeypatch.setenv("BOARDSYNC_TEST_A", "from-shell")
    monkeypatch.delenv("BOARDSYNC_TEST_B", raising=False)

    assert load_env_files(str(env_file)) == env_file

    assert os.environ["BOARDSYNC_TEST_A"] == "from-shell"
    assert os.environ["BOARDSYNC_TEST_B"] == "from-file"
    os.environ.pop("BOARDSYNC_TEST_B", None)


def test_load_env_files_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_env_files() is None
