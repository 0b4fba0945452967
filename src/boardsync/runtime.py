"""Runtime helpers wiring configuration, credentials and the sync engine."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

from .board import ProjectBoard, parse_project_url, resolve_project_id, viewer_login
from .config import BoardConfig, load_config
from .env_auth import EnvSettings
from .errors import AuthenticationError, BoardSyncError, ConfigError, classify_error
from .github_rest import GitHubClient
from .logging import get_logger
from .models import MonitoredScope
from .orchestrator import SyncRunner
from .reconcile import Reconciler
from .retry import RetryPolicy
from .verification import StateVerifier


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any,
    settings: EnvSettings | None,
    *,
    loader: Callable[..., BoardConfig] = load_config,
) -> BoardConfig:
    """Load the rule file named by the argparse namespace."""
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    return loader(args.config, monitored_user=settings.author if settings else None)


def resolve_project(settings: EnvSettings, cfg: BoardConfig, client: GitHubClient) -> str:
    """Pick the project id: env id, env URL, config URL, config number, config id."""
    if settings.project_id:
        return settings.project_id
    url = settings.project_url or cfg.project_url
    if url:
        organization, number = parse_project_url(url)
        return resolve_project_id(client, organization, number)
    if cfg.project_number is not None:
        if not cfg.organization:
            raise ConfigError("project.number requires project.organization")
        return resolve_project_id(client, cfg.organization, cfg.project_number)
    if cfg.project_id:
        return cfg.project_id
    raise ConfigError("No project configured; set PROJECT_ID, PROJECT_URL or project.{id|url|number}")


def validate_token(client: GitHubClient, author: str) -> str | None:
    """Confirm the token works; warn when it belongs to someone else."""
    login = viewer_login(client)
    if login and login.casefold() != author.casefold():
        get_logger().warning(
            f"Token belongs to '{login}' but GITHUB_AUTHOR is '{author}'",
        )
    return login


def build_runner(
    cfg: BoardConfig,
    settings: EnvSettings,
    *,
    dry_run: bool = False,
    client: GitHubClient | None = None,
    sleep: Callable[[float], Any] = time.sleep,
    check_token: bool = True,
) -> SyncRunner:
    policy = RetryPolicy(max_attempts=cfg.max_retries)
    client = client or GitHubClient(token=settings.token, policy=policy, sleep=sleep)
    if check_token:
        validate_token(client, settings.author)
    project_id = resolve_project(settings, cfg, client)
    board = ProjectBoard(client, project_id=project_id)
    verifier = StateVerifier(board, policy=policy, sleep=sleep)
    reconciler = Reconciler(
        board,
        verifier=verifier,
        settle_delay=cfg.settle_delay_seconds,
        sleep=sleep,
        dry_run=dry_run,
    )
    scope = MonitoredScope.build(cfg.monitored_user, cfg.organization, cfg.repositories)
    return SyncRunner(
        board,
        cfg.rule_set,
        scope,
        reconciler=reconciler,
        update_window_hours=cfg.update_window_hours,
    )


def execute_command(handler: _HandlerCallable, command: str) -> int:
    """Run a command handler, logging its duration; fatal errors map to exit 1."""
    logger = get_logger()
    start = time.monotonic()
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
    except AuthenticationError as exc:
        logger.log_error(f"{command}: authentication failed", error=str(exc))
        exit_code = 1
    except BoardSyncError as exc:
        info = classify_error(exc)
        logger.log_error(f"{command} failed", error=info.message, category=info.category)
        exit_code = 1
    duration = max(0.0, time.monotonic() - start)
    logger.log_performance(f"command_{command}", duration * 1000, exit_code=exit_code)
    return exit_code


__all__ = [
    "build_runner",
    "execute_command",
    "prepare_config",
    "resolve_project",
    "validate_token",
]
