"""
Logging setup for the approval service.

Every record passes through ``RequestContextFilter`` so that log lines
emitted inside a request carry the request id and the authenticated user
without each call site repeating them.

- Production: one JSON object per line
- Development / testing: short single-line text with the approval context
  appended as ``key=value`` pairs
- LOG_LEVEL overrides the level in every environment
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Keys callers pass through ``extra={...}``
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "project_id",
    "approval_id",
    "step_id",
    "overall_status",
    "stage",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

# Shown inline by the text formatter, in this order
_INLINE_FIELDS = ("project_id", "approval_id", "step_id", "overall_status", "stage")


class RequestContextFilter(logging.Filter):
    """Fill request_id / user_id from ``flask.g`` when the caller did not."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                record.user_id = getattr(g, "jwt_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<7} {record.name}: {record.getMessage()}"
        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _INLINE_FIELDS
            if getattr(record, key, None) is not None
        )
        if context:
            line += f" [{context}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    Safe to call repeatedly (tests build the app more than once).
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else TextFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if production else "text")
