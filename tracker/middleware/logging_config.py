"""
Logging setup for the workflow engine.

Every record passes through RequestContextFilter, which stamps the request
id, organization and user from ``flask.g`` when a request is active.
Engine code adds its own fields through ``extra=``:

    item_id, operation, reason        per-item transition outcome
    batch_status, succeeded, failed   batch summary
    event_type                        integrity events

Production writes one JSON object per line; development and testing write
a single readable line with the engine fields appended as ``key=value``.
LOG_LEVEL (env) overrides the default level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

_CONTEXT_KEYS = ("request_id", "organization_id", "user_id")
_HTTP_KEYS = ("method", "path", "status", "duration_ms")
_ENGINE_KEYS = ("item_id", "operation", "reason", "batch_status", "succeeded", "failed", "event_type")


class RequestContextFilter(logging.Filter):
    """Copy request identity from ``g`` onto records that lack it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            defaults = {
                "request_id": getattr(g, "request_id", None),
                "organization_id": getattr(g, "jwt_organization_id", None),
                "user_id": getattr(g, "jwt_user_id", None),
            }
            for key, value in defaults.items():
                if getattr(record, key, None) is None:
                    setattr(record, key, value)
        return True


def _fields(record: logging.LogRecord, keys) -> dict:
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_fields(record, _CONTEXT_KEYS + _HTTP_KEYS + _ENGINE_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [rid] key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        request_id = getattr(record, "request_id", None)
        if request_id:
            line += f" [{request_id}]"
        engine = _fields(record, _ENGINE_KEYS)
        if engine:
            line += " " + " ".join(f"{k}={v}" for k, v in engine.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # test runs build several apps; replace rather than stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)
