"""
Logging setup for CaseTrack.

One stderr handler on the root logger. Records emitted while a request is
being served carry its ``request_id`` (set by the timing middleware), so a
step update can be followed from the HTTP line down to the scenario and
package status writes it caused.

Formats:
    production          one JSON object per line
    development/testing short colored line, request id in brackets

LOG_LEVEL overrides the per-environment default level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

# Attributes copied from ``extra=`` into JSON output when present.
_EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_LEVEL_BY_ENV = {"production": "INFO", "testing": "WARNING", "development": "DEBUG"}

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic", "urllib3")


class RequestIdFilter(logging.Filter):
    """Stamp ``request_id`` onto records that did not pass one explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id") if has_app_context() else None
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    _COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        rid = getattr(record, "request_id", None)
        line = (
            f"{color}{clock} {record.levelname:<8}{self._RESET}"
            f"{f' [{rid}]' if rid else ''} {record.name}: {record.getMessage()}"
        )
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _environment(app) -> str:
    if app.config.get("TESTING"):
        return "testing"
    return "development" if app.config.get("DEBUG") else "production"


def configure_logging(app):
    """Install the CaseTrack handler on the root logger; returns the level name used."""
    env = _environment(app)
    level_name = os.getenv("LOG_LEVEL", _LEVEL_BY_ENV[env]).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if env == "production" else ReadableFormatter())
    handler.addFilter(RequestIdFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app may run several times per process (tests)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    app.logger.debug("Logging configured env=%s level=%s", env, level_name)
    return level_name
