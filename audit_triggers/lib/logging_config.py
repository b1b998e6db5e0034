"""Logging setup for the audit trigger tooling.

JSON lines by default so deployment pipelines can parse per-table outcomes;
LOG_FORMAT=simple gives a terminal-friendly layout.

Usage:
    # In a CLI entry point (once, at startup):
    from audit_triggers.lib.logging_config import configure_logging
    configure_logging()

    # In any module:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Something happened", extra={"table": "orders"})

The audit context (user_id, url) is automatically injected into every log
record via a logging Filter that reads from contextvars.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from audit_triggers.lib.context import get_current_url, get_current_user_id


class ContextFilter(logging.Filter):
    """Inject the audit context into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "user_id", None) is None:
            record.user_id = get_current_user_id()  # type: ignore[attr-defined]
        if getattr(record, "url", None) is None:
            record.url = get_current_url()  # type: ignore[attr-defined]
        return True


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, audit context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "user_id": getattr(record, "user_id", None),
            "url": getattr(record, "url", None),
        }
        for key, value in _extra_fields(record).items():
            entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable format for terminals."""

    context_fields = ("table", "outcome", "user_id")

    def format(self, record: logging.LogRecord) -> str:
        context = ", ".join(
            f"{name}={getattr(record, name)}"
            for name in self.context_fields
            if getattr(record, name, None)
        )
        line = "{time} {level:<8} {name} - {message}{context}".format(
            time=_timestamp(record).strftime("%Y-%m-%d %H:%M:%S"),
            level=record.levelname,
            name=record.name,
            message=record.getMessage(),
            context=f" [{context}]" if context else "",
        )
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level_name: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install a single stderr handler on the root logger.

    Arguments default to the LOG_LEVEL and LOG_FORMAT environment variables;
    the format is ``json`` unless ``simple`` is asked for.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_format = (log_format or os.getenv("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(SimpleFormatter() if log_format == "simple" else JsonFormatter())
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Statement echo would drown the per-table report.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.INFO)
