"""
Tests: logging setup — formatter selection, request-id stamping.
"""

import json
import logging

from flask import g

from casetrack.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestIdFilter,
    configure_logging,
)


def _record(msg="Scenario status CREATED → BLOCKED", **extra):
    record = logging.LogRecord("casetrack.services", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_request_fields():
    out = json.loads(JSONFormatter().format(_record(request_id="abc123", status=200, duration_ms=4.2)))

    assert out["msg"] == "Scenario status CREATED → BLOCKED"
    assert out["level"] == "INFO"
    assert out["request_id"] == "abc123"
    assert out["status"] == 200
    assert "method" not in out


def test_readable_formatter_shows_request_id_and_duration():
    line = ReadableFormatter().format(_record(request_id="abc123", duration_ms=12))
    assert "[abc123]" in line
    assert "(12ms)" in line


def test_filter_stamps_request_id_from_app_context(app):
    record = _record()
    with app.test_request_context():
        g.request_id = "req-9"
        RequestIdFilter().filter(record)
    assert record.request_id == "req-9"


def test_filter_keeps_explicit_request_id(app):
    record = _record(request_id="given")
    with app.test_request_context():
        g.request_id = "other"
        RequestIdFilter().filter(record)
    assert record.request_id == "given"


def test_testing_app_logs_at_warning(app, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert configure_logging(app) == "WARNING"
    assert isinstance(logging.getLogger().handlers[0].formatter, ReadableFormatter)
