"""
Logging for QA Hub.

Pieces wired together by ``configure_logging``:

  RequestContextFilter  copies request id, tenant, project and user from
                        ``flask.g`` onto every record emitted during a
                        request, so services never pass them by hand
  JSONFormatter         one object per line (``LOG_FORMAT=json``)
  ReadableFormatter     one compact line (``LOG_FORMAT=text``)
  alert()               the ``qahub.alerts`` channel for operational
                        events; each carries an ``event_type`` and a
                        ``security_code`` such as TENANT-001 or AUDIT-001

``LOG_LEVEL`` overrides the level. ``ALERT_LOG_FILE``, when set, also
appends every alert to that file as JSON for the paging pipeline.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

ALERT_LOGGER = "qahub.alerts"

# record attribute -> flask.g attribute
_CONTEXT_FIELDS = (
    ("request_id", "request_id"),
    ("tenant_id", "tenant_id"),
    ("project_id", "project_id"),
    ("user_id", "jwt_user_id"),
)
_EVENT_FIELDS = ("event_type", "security_code")
_HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

EXTRA_FIELDS = tuple(f for f, _ in _CONTEXT_FIELDS) + _EVENT_FIELDS + _HTTP_FIELDS

_alerts = logging.getLogger(ALERT_LOGGER)


def alert(event_type, security_code, message, *args, level=logging.WARNING, **fields):
    """Emit an operational alert on ``qahub.alerts``.

    ``fields`` become record attributes (``tenant_id``, ``path``, ...).
    """
    _alerts.log(
        level, message, *args,
        extra={**fields, "event_type": event_type, "security_code": security_code},
    )


class RequestContextFilter(logging.Filter):
    """Fill missing context fields from the current request."""

    def filter(self, record):
        if has_request_context():
            for field, attr in _CONTEXT_FIELDS:
                if getattr(record, field, None) is None:
                    value = getattr(g, attr, None)
                    if value is not None:
                        setattr(record, field, value)
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 WARNING  qahub.alerts: msg [TENANT-001] tenant=ACME [3ms]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"]
        code = getattr(record, "security_code", None)
        if code:
            parts.append(f"[{code}]")
        for field in ("tenant_id", "user_id"):
            value = getattr(record, field, None)
            if value:
                parts.append(f"{field[:-3]}={value}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _handler(stream_or_path, formatter):
    if isinstance(stream_or_path, str):
        handler = logging.FileHandler(stream_or_path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(stream_or_path)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())
    return handler


def configure_logging(app):
    """Install the root handler and the alert channel for ``app``."""
    level_name = os.getenv("LOG_LEVEL", app.config.get("LOG_LEVEL", "INFO"))
    level = getattr(logging, level_name.upper(), logging.INFO)
    use_json = app.config.get("LOG_FORMAT", "json") == "json"

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_handler(sys.stderr, JSONFormatter() if use_json else ReadableFormatter()))
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    # Alerts pass at WARNING even when LOG_LEVEL is stricter
    _alerts.setLevel(logging.WARNING)
    for handler in list(_alerts.handlers):
        _alerts.removeHandler(handler)
        handler.close()
    alert_file = app.config.get("ALERT_LOG_FILE")
    if alert_file:
        _alerts.addHandler(_handler(alert_file, JSONFormatter()))

    app.logger.setLevel(level)
