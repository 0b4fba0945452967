"""Rule engine: turns a snapshot plus one rule group into pending actions."""

from __future__ import annotations

from .conditions import evaluate
from .errors import BoardSyncError
from .logging import StructuredLogger, get_logger
from .models import Action, ItemSnapshot, MonitoredScope, Rule, RuleGroup, RuleSet


def _rule_actions(rule: Rule) -> list[Action]:
    return [Action(kind=kind, value=rule.value, rule=rule.name) for kind in rule.actions]


def evaluate_rule(rule: Rule, snapshot: ItemSnapshot, scope: MonitoredScope) -> list[Action]:
    """Evaluate a single rule; skip is checked before the trigger."""
    if snapshot.target not in rule.targets:
        return []
    if rule.skip_if is not None and evaluate(rule.skip_if, snapshot, scope):
        return []
    if not evaluate(rule.trigger, snapshot, scope):
        return []
    return _rule_actions(rule)


def evaluate_rules(
    snapshot: ItemSnapshot,
    group: RuleGroup,
    rule_set: RuleSet,
    scope: MonitoredScope,
    *,
    logger: StructuredLogger | None = None,
) -> list[Action]:
    """Return every action contributed by ``group`` for ``snapshot``.

    All matching rules contribute, in declaration order; duplicates are kept
    for the reconciler to collapse. Only ``board_items`` may act on an item
    that is not yet on the board.
    """
    if group is not RuleGroup.BOARD_ITEMS and not snapshot.in_project:
        return []
    log = logger or get_logger()
    actions: list[Action] = []
    for rule in rule_set.for_group(group):
        try:
            matched = evaluate_rule(rule, snapshot, scope)
        except BoardSyncError as exc:
            log.warning(
                f"Rule '{rule.name}' skipped: {exc}",
                rule=rule.name,
                group=group.value,
            )
            continue
        if matched:
            log.debug(
                f"Rule '{rule.name}' matched {snapshot.item.label}",
                rule=rule.name,
                group=group.value,
            )
        actions.extend(matched)
    return actions


__all__ = ["evaluate_rule", "evaluate_rules"]
