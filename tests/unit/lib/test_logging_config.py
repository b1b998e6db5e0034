"""Unit tests for the logging formatters and context filter."""

import json
import logging

from audit_triggers.lib.context import set_current_url, set_current_user_id
from audit_triggers.lib.logging_config import ContextFilter, JsonFormatter, SimpleFormatter


def _record(message="Created triggers for orders", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="audit_triggers.lib.triggers.lifecycle",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_filter_injects_audit_context():
    set_current_user_id("7")
    set_current_url("/orders")
    record = _record()

    assert ContextFilter().filter(record) is True
    assert record.user_id == "7"
    assert record.url == "/orders"


def test_json_formatter_includes_extra_fields():
    record = _record(table="orders", outcome="created")
    ContextFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Created triggers for orders"
    assert payload["level"] == "INFO"
    assert payload["table"] == "orders"
    assert payload["outcome"] == "created"
    assert payload["user_id"] is None


def test_simple_formatter_shows_table():
    line = SimpleFormatter().format(_record(table="orders"))
    assert "Created triggers for orders [table=orders]" in line
