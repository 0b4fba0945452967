"""JSON Schemas for the rule file and the run summary.

The rule-file schema checks structure only; predicate names are resolved by
:mod:`boardsync.conditions`. Individual rules are validated one by one against
``rule`` so a single malformed rule can be dropped without failing the run.
"""

from __future__ import annotations

from typing import Any

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
SUMMARY_SCHEMA_VERSION = 1

RULE_GROUP_NAMES = ("board_items", "columns", "sprints", "assignees", "linked_issues")
TRIGGER_TYPES = ["PullRequest", "Issue", "LinkedIssue"]
ACTION_NAMES = [
    "add_to_board",
    "set_column",
    "set_sprint",
    "set_assignee",
    "add_assignee",
    "inherit_column",
    "inherit_assignees",
]

_CONDITION: dict[str, Any] = {"type": ["string", "object", "boolean"]}


def _rule_schema() -> dict[str, Any]:
    return {
        SCHEMA_KEY: SCHEMA_URL,
        "title": "BoardRule",
        "type": "object",
        "required": ["name", "trigger", "action"],
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "trigger": {
                "type": "object",
                "required": ["type", "condition"],
                "properties": {
                    "type": {
                        "oneOf": [
                            {"type": "string", "enum": TRIGGER_TYPES},
                            {
                                "type": "array",
                                "items": {"type": "string", "enum": TRIGGER_TYPES},
                                "minItems": 1,
                            },
                        ]
                    },
                    "condition": _CONDITION,
                },
            },
            "action": {
                "oneOf": [
                    {"type": "string", "enum": ACTION_NAMES},
                    {
                        "type": "array",
                        "items": {"type": "string", "enum": ACTION_NAMES},
                        "minItems": 1,
                    },
                ]
            },
            "value": {"type": ["string", "null"]},
            "skip_if": _CONDITION,
            "validTransitions": {"type": "array"},
        },
    }


def _rule_groups_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            name: {"type": ["array", "null"], "items": {"type": "object"}}
            for name in RULE_GROUP_NAMES
        },
    }


def _rules_file_schema() -> dict[str, Any]:
    monitored_user = {
        "type": "object",
        "required": ["type"],
        "properties": {"type": {"type": "string"}, "name": {"type": "string"}},
    }
    return {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": "boardsync rule file",
        "title": "BoardSyncRules",
        "type": "object",
        "properties": {
            "version": {"type": ["string", "number"]},
            "project": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "url": {"type": "string"},
                    "number": {"type": "integer", "minimum": 1},
                    "organization": {"type": "string"},
                    "repositories": {"type": "array", "items": {"type": "string"}},
                },
            },
            "monitored_user": monitored_user,
            "rules": _rule_groups_schema(),
            "automation": {
                "type": "object",
                "properties": {
                    "user_scope": {
                        "type": "object",
                        "properties": {
                            "monitored_user": monitored_user,
                            "rules": _rule_groups_schema(),
                        },
                    },
                    "repository_scope": {
                        "type": "object",
                        "properties": {
                            "organization": {"type": "string"},
                            "repositories": {"type": "array", "items": {"type": "string"}},
                            "rules": _rule_groups_schema(),
                        },
                    },
                },
            },
            "technical": {
                "type": "object",
                "properties": {
                    "update_window_hours": {"type": "number", "exclusiveMinimum": 0},
                    "settle_delay_seconds": {"type": "number", "minimum": 0},
                    "max_retries": {"type": "integer", "minimum": 1},
                },
            },
        },
        "anyOf": [{"required": ["rules"]}, {"required": ["automation"]}],
    }


def _summary_schema() -> dict[str, Any]:
    counter = {"type": "integer", "minimum": 0}
    return {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"boardsync summary schema v{SUMMARY_SCHEMA_VERSION}",
        "title": "BoardSyncSummary",
        "type": "object",
        "required": ["schemaVersion", "generated_at", "dry_run", "totals", "items"],
        "properties": {
            "schemaVersion": {"type": "integer"},
            "generated_at": {"type": "string"},
            "dry_run": {"type": "boolean"},
            "project_id": {"type": "string"},
            "totals": {
                "type": "object",
                "required": ["items", "added", "updated", "skipped", "errors", "warnings"],
                "properties": {
                    "items": counter,
                    "added": counter,
                    "updated": counter,
                    "skipped": counter,
                    "errors": counter,
                    "warnings": counter,
                },
            },
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["item", "status"],
                    "properties": {
                        "item": {"type": "string"},
                        "status": {"enum": ["added", "updated", "skipped", "error"]},
                        "changes": {"type": "array", "items": {"type": "string"}},
                        "error": {"type": ["string", "null"]},
                    },
                },
            },
            "verification": {"type": "array"},
        },
    }


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        rules:   Schema for the rule file (structure only).
        rule:    Schema for a single rule entry.
        summary: Schema for the JSON run summary.
    """
    return {
        "rules": _rules_file_schema(),
        "rule": _rule_schema(),
        "summary": _summary_schema(),
    }


__all__ = ["ACTION_NAMES", "RULE_GROUP_NAMES", "TRIGGER_TYPES", "get_schemas"]
