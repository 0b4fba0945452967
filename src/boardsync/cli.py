"""boardsync CLI.

Subcommands:
  sync      -> add, place and update recent issues/PRs on the project board
  validate  -> load the rule file and report usable / dropped rules
  schema    -> write JSON Schemas for the rule file and the run summary
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from boardsync.config import CONFIG_DEFAULT, load_config
from boardsync.env_auth import EnvSettings, load_env_files
from boardsync.logging import configure_logging, get_logger
from boardsync.models import GROUP_ORDER
from boardsync.observability import configure_telemetry
from boardsync.orchestrator import RunSummary
from boardsync.runtime import build_runner, execute_command, prepare_config
from boardsync.schemas import get_schemas

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="boardsync", description="Sync GitHub issues and pull requests to a Projects board"
    )
    p.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit one JSON object per log line (env: BOARDSYNC_LOG_JSON=1)",
    )
    p.add_argument("--env-file", help="Load environment variables from this .env file")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    ps = sub.add_parser("sync", help="Apply the rule file to recently updated items")
    ps.add_argument("--config", default=CONFIG_DEFAULT)
    ps.add_argument("--dry-run", action="store_true", help="Decide but do not mutate")
    ps.add_argument("--summary-json", help="Write the run summary to this path")
    ps.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when any item fails (env: STRICT_MODE=true)",
    )

    pv = sub.add_parser("validate", help="Validate the rule file")
    pv.add_argument("--config", default=CONFIG_DEFAULT)

    psc = sub.add_parser("schema", help="Write JSON Schemas")
    psc.add_argument("--output", default=".", help="Directory to write schema files into")
    psc.add_argument("--stdout", action="store_true", help="Print schemas instead of writing")
    return p


def _print_summary(summary: RunSummary) -> None:
    logger = get_logger()
    totals = summary.totals()
    print("[sync] totals", json.dumps(totals))
    for warning in logger.warnings:
        print(f"  warning: {warning}")
    for error in logger.errors:
        print(f"  error: {error}", file=sys.stderr)


def _cmd_sync(args: argparse.Namespace) -> int:
    settings = EnvSettings.from_env()
    cfg = prepare_config(args, settings)
    runner = build_runner(cfg, settings, dry_run=args.dry_run)
    summary = runner.run()
    if args.summary_json:
        summary.write(args.summary_json)
    _print_summary(summary)
    strict = args.strict or settings.strict_mode
    return 1 if strict and summary.errors else 0


def _cmd_validate(args: argparse.Namespace) -> int:
    cfg = load_config(args.config, monitored_user=os.environ.get("GITHUB_AUTHOR") or None)
    for group in GROUP_ORDER:
        print(f"[validate] {group.value}: {len(cfg.rule_set.for_group(group))} rule(s)")
    if cfg.dropped_rules:
        print(f"[validate] dropped: {', '.join(cfg.dropped_rules)}", file=sys.stderr)
        return 1
    print("[validate] ok")
    return 0


def _cmd_schema(args: argparse.Namespace) -> int:
    schemas = get_schemas()
    if args.stdout:
        print(json.dumps(schemas, indent=2))
        return 0
    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name in ("rules", "summary"):
        target = out_dir / f"boardsync_{name}.schema.json"
        target.write_text(json.dumps(schemas[name], indent=2) + "\n", encoding="utf-8")
        written.append(str(target))
    print(f"[schema] wrote {', '.join(written)}")
    return 0


def _build_handlers(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "sync": lambda: _cmd_sync(args),
        "validate": lambda: _cmd_validate(args),
        "schema": lambda: _cmd_schema(args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    load_env_files(args.env_file)
    verbose = os.environ.get("VERBOSE", "").lower() == "true"
    configure_logging(
        json_logging=args.json_logs or os.environ.get("BOARDSYNC_LOG_JSON") == "1",
        level="DEBUG" if verbose else "INFO",
    )
    exporter = os.environ.get("BOARDSYNC_OTEL_EXPORTER")
    if exporter:
        configure_telemetry(
            service_name=os.environ.get("BOARDSYNC_SERVICE_NAME", "boardsync"),
            exporter="otlp" if exporter.lower() == "otlp" else "console",
            endpoint=os.environ.get("BOARDSYNC_OTEL_ENDPOINT"),
        )
    handler = _build_handlers(args).get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    return execute_command(handler, args.cmd)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
