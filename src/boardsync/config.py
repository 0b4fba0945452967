from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from jsonschema import Draft7Validator

from .conditions import Predicate, parse_condition
from .errors import ConfigError
from .logging import StructuredLogger, get_logger
from .models import ActionKind, Rule, RuleGroup, RuleSet, RuleTarget
from .schemas import RULE_GROUP_NAMES, get_schemas

CONFIG_DEFAULT = "config/rules.yml"
DEFAULT_UPDATE_WINDOW_HOURS = 24.0
DEFAULT_SETTLE_DELAY_SECONDS = 2.0
DEFAULT_MAX_RETRIES = 3

_ACTION_ALIASES = {"add_assignee": ActionKind.SET_ASSIGNEE}


@dataclass
class BoardConfig:
    source_file: Path
    project_id: str | None
    project_url: str | None
    project_number: int | None
    organization: str | None
    repositories: list[str]
    monitored_user: str | None
    rule_set: RuleSet
    update_window_hours: float = DEFAULT_UPDATE_WINDOW_HOURS
    settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    dropped_rules: list[str] = field(default_factory=list)


def _format_errors(validator: Draft7Validator, instance: Any) -> list[str]:
    out: list[str] = []
    for err in sorted(validator.iter_errors(instance), key=lambda e: list(e.path)):
        location = "/".join(str(p) for p in err.path) or "<root>"
        out.append(f"{location}: {err.message}")
    return out


def _static_monitored_user(raw: Any, logger: StructuredLogger) -> str | None:
    if not raw:
        return None
    block = cast(dict[str, Any], raw)
    kind = str(block.get("type", "")).lower()
    if kind != "static":
        logger.warning(
            f"monitored_user type '{kind or '<missing>'}' is not supported; only 'static' is",
        )
        return None
    name = block.get("name")
    if not isinstance(name, str) or not name.strip():
        logger.warning("monitored_user of type 'static' requires a 'name'")
        return None
    return name.strip()


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _action_kind(name: str) -> ActionKind:
    if name in _ACTION_ALIASES:
        return _ACTION_ALIASES[name]
    try:
        return ActionKind(name)
    except ValueError as exc:
        raise ConfigError(f"Unknown action: {name!r}") from exc


def build_rule(group: RuleGroup, raw: Mapping[str, Any]) -> Rule:
    """Build one typed rule from a validated rule-file entry."""
    trigger = cast(dict[str, Any], raw.get("trigger") or {})
    targets = frozenset(RuleTarget(t) for t in _as_list(trigger.get("type")))
    if not targets:
        raise ConfigError(f"Rule '{raw.get('name')}' has no trigger type")
    actions = tuple(_action_kind(a) for a in _as_list(raw.get("action")))
    skip_raw = raw.get("skip_if")
    skip_if: Predicate | None = parse_condition(skip_raw) if skip_raw is not None else None
    value = raw.get("value")
    return Rule(
        name=str(raw["name"]),
        group=group,
        targets=targets,
        trigger=parse_condition(trigger.get("condition")),
        actions=actions,
        skip_if=skip_if,
        value=str(value) if value is not None else None,
        description=str(raw.get("description", "")),
    )


def _collect_rules(
    sections: list[Mapping[str, Any]],
    logger: StructuredLogger,
    dropped: list[str],
) -> RuleSet:
    validator = Draft7Validator(get_schemas()["rule"])
    grouped: dict[RuleGroup, list[Rule]] = {g: [] for g in RuleGroup}
    for section in sections:
        for group_name in RULE_GROUP_NAMES:
            group = RuleGroup(group_name)
            for index, raw in enumerate(section.get(group_name) or []):
                label = f"{group_name}[{index}]"
                if isinstance(raw, Mapping) and raw.get("name"):
                    label = f"{group_name}/{raw['name']}"
                problems = _format_errors(validator, raw)
                if problems:
                    logger.warning(f"Skipping invalid rule {label}: {'; '.join(problems)}")
                    dropped.append(label)
                    continue
                try:
                    grouped[group].append(build_rule(group, raw))
                except ConfigError as exc:
                    logger.warning(f"Skipping rule {label}: {exc}")
                    dropped.append(label)
    return RuleSet({g: tuple(rules) for g, rules in grouped.items() if rules})


def load_config(
    path: str | Path,
    *,
    monitored_user: str | None = None,
    logger: StructuredLogger | None = None,
) -> BoardConfig:
    """Load and validate a rule file.

    ``monitored_user`` (normally ``GITHUB_AUTHOR``) takes precedence over a
    static ``monitored_user`` block in the file. User-scope rules of the
    ``automation`` layout are only kept when a monitored user is known.
    """
    log = logger or get_logger()
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        raw = cast(dict[str, Any], yaml.safe_load(p.read_text(encoding="utf-8")) or {})
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root in {p} must be a mapping")

    problems = _format_errors(Draft7Validator(get_schemas()["rules"]), raw)
    if problems:
        raise ConfigError(f"Invalid configuration {p}: " + "; ".join(problems))

    project = cast(dict[str, Any], raw.get("project", {}) or {})
    automation = cast(dict[str, Any], raw.get("automation", {}) or {})
    user_scope = cast(dict[str, Any], automation.get("user_scope", {}) or {})
    repo_scope = cast(dict[str, Any], automation.get("repository_scope", {}) or {})
    technical = cast(dict[str, Any], raw.get("technical", {}) or {})

    configured_user = _static_monitored_user(
        raw.get("monitored_user") or user_scope.get("monitored_user"), log
    )
    effective_user = monitored_user or configured_user

    sections: list[Mapping[str, Any]] = []
    if raw.get("rules"):
        sections.append(cast(dict[str, Any], raw["rules"]))
    user_rules = cast(dict[str, Any], user_scope.get("rules", {}) or {})
    if user_rules:
        if effective_user:
            sections.append(user_rules)
        else:
            log.warning("No monitored user configured; skipping user-scope rules")
    if repo_scope.get("rules"):
        sections.append(cast(dict[str, Any], repo_scope["rules"]))

    dropped: list[str] = []
    rule_set = _collect_rules(sections, log, dropped)
    if not len(rule_set):
        raise ConfigError(f"No usable rules defined in {p}")
    if not rule_set.for_group(RuleGroup.BOARD_ITEMS):
        log.warning("No board_items rules defined; items will never be added to the board")

    repositories = _as_list(project.get("repositories") or repo_scope.get("repositories"))
    number = project.get("number")
    return BoardConfig(
        source_file=p,
        project_id=project.get("id"),
        project_url=project.get("url"),
        project_number=int(number) if number is not None else None,
        organization=project.get("organization") or repo_scope.get("organization"),
        repositories=repositories,
        monitored_user=effective_user,
        rule_set=rule_set,
        update_window_hours=float(
            technical.get("update_window_hours", DEFAULT_UPDATE_WINDOW_HOURS)
        ),
        settle_delay_seconds=float(
            technical.get("settle_delay_seconds", DEFAULT_SETTLE_DELAY_SECONDS)
        ),
        max_retries=int(technical.get("max_retries", DEFAULT_MAX_RETRIES)),
        dropped_rules=dropped,
    )


__all__ = ["BoardConfig", "CONFIG_DEFAULT", "ConfigError", "build_rule", "load_config"]
