"""Structured logging for boardsync.

Text output by default, one JSON object per line when ``json_logging`` is
enabled (``BOARDSYNC_LOG_JSON=1``). The logger also remembers the warnings and
errors it emitted during a run so the CLI can print them again in the final
summary, and fields bound with :meth:`StructuredLogger.bound` (project id,
dry-run flag) are attached to every record emitted inside that block.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from .errors import redact

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and key not in payload
        )
        if record.exc_info:
            payload["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, default=str)


class StructuredLogger:
    """Thin wrapper over :mod:`logging` with run-scoped counters and context."""

    def __init__(
        self, name: str = "boardsync", json_logging: bool = False, level: str = "INFO"
    ) -> None:
        self.name = name
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.handlers.clear()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter() if json_logging else logging.Formatter(TEXT_FORMAT))
        self._logger.addHandler(handler)
        self._logger.propagate = False
        self._context: dict[str, Any] = {}
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def _emit(self, level: int, message: str, fields: dict[str, Any]) -> None:
        self._logger.log(level, message, extra={**self._context, **fields})

    @contextmanager
    def bound(self, **context: Any) -> Iterator[StructuredLogger]:
        """Attach ``context`` to every record emitted inside the block."""
        previous = dict(self._context)
        self._context.update(context)
        try:
            yield self
        finally:
            self._context = previous

    # ---- run events ---------------------------------------------------
    def log_operation(self, operation: str, **kw: Any) -> None:
        self._emit(logging.INFO, f"Operation: {operation}", {"operation": operation, **kw})

    def log_item_action(
        self,
        action: str,
        item: str,
        detail: str,
        dry_run: bool = False,
        **kw: Any,
    ) -> None:
        """Log one reconciler decision for ``item`` (e.g. ``org/repo#12``)."""
        suffix = " [DRY]" if dry_run else ""
        self._emit(
            logging.INFO,
            f"{item} {action}: {detail}{suffix}",
            {"operation": f"item_{action}", "item": item, "dry_run": dry_run, **kw},
        )

    def log_performance(self, operation: str, duration_ms: float, **kw: Any) -> None:
        self._emit(
            logging.INFO,
            f"Performance: {operation} completed in {duration_ms:.2f}ms",
            {"operation": operation, "duration_ms": round(duration_ms, 2), **kw},
        )

    def log_error(self, message: str, error: str | None = None, **kw: Any) -> None:
        fields = dict(kw)
        if error:
            fields["error"] = redact(error)
            self.errors.append(f"{message}: {fields['error']}")
        else:
            self.errors.append(message)
        self._emit(logging.ERROR, message, fields)

    # ---- plain levels -------------------------------------------------
    def debug(self, message: str, **kw: Any) -> None:
        self._emit(logging.DEBUG, message, kw)

    def info(self, message: str, **kw: Any) -> None:
        self._emit(logging.INFO, message, kw)

    def warning(self, message: str, **kw: Any) -> None:
        self.warnings.append(message)
        self._emit(logging.WARNING, message, kw)

    def error(self, message: str, **kw: Any) -> None:
        self.errors.append(message)
        self._emit(logging.ERROR, message, kw)

    def reset_counters(self) -> None:
        self.warnings.clear()
        self.errors.clear()

    @contextmanager
    def timed_operation(self, operation: str, **kw: Any) -> Iterator[None]:
        """Log start and duration of ``operation``; failures are logged and re-raised."""
        started = time.monotonic()
        self.log_operation(f"{operation}_start", **kw)
        try:
            yield
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **kw)
            raise
        self.log_performance(operation, (time.monotonic() - started) * 1000, **kw)


_ACTIVE: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    """Return the process-wide logger, creating a text logger on first use."""
    global _ACTIVE  # noqa: PLW0603
    if _ACTIVE is None:
        _ACTIVE = StructuredLogger()
    return _ACTIVE


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    """Replace the process-wide logger (called once by the CLI)."""
    global _ACTIVE  # noqa: PLW0603
    _ACTIVE = StructuredLogger(json_logging=json_logging, level=level)
    return _ACTIVE


__all__ = ["JSONFormatter", "StructuredLogger", "TEXT_FORMAT", "configure_logging", "get_logger"]
