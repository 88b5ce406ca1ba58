"""
Logging utilities for receipty.

- RequestIdFilter attaches request_id and path (when in a Flask request context)
- JsonFormatter emits structured logs when RECEIPTY_JSON_LOGS=true
- configure_logging() initializes root logging with journald or console and
  routes Flask's logger through it
"""

from __future__ import annotations

import logging
import os

# Attributes passed via `extra=` that the JSON formatter forwards when present.
_EXTRA_FIELDS = ("job_id", "attempt", "command", "bytes")


class RequestIdFilter(logging.Filter):
    """
    Attach request-scoped metadata (request_id, path) to log records.
    Safely degrades outside of a Flask request context (e.g. the print worker thread).
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            from flask import g, has_request_context, request  # lazy import

            record.request_id = g.request_id if has_request_context() and hasattr(g, "request_id") else "-"
            record.path = request.path if has_request_context() else "-"
        except Exception:
            record.request_id = "-"
            record.path = "-"
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter with timestamp, level, logger, message, request_id and path.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        path = getattr(record, "path", None)
        if path is not None:
            base["path"] = path
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                base[key] = getattr(record, key)
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False, default=str)


def configure_logging() -> logging.Logger:
    """
    Configure root logging for the application.

    Behavior:
    - Sets root level from RECEIPTY_LOG_LEVEL (default INFO)
    - Clears existing handlers to avoid duplicates on repeated factory calls
    - Chooses JSON or plain formatter based on RECEIPTY_JSON_LOGS
    - Prefers systemd's JournalHandler, falls back to StreamHandler
    - Adds RequestIdFilter so formatters can reference %(request_id)s
    - Makes Flask's app logger propagate to root

    Returns the configured root logger.
    """
    root = logging.getLogger()
    level = os.environ.get("RECEIPTY_LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))

    root.handlers = []

    json_logs = os.environ.get("RECEIPTY_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(request_id)s %(name)s: %(message)s")

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER="receipty")
    except Exception:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "RequestIdFilter", "configure_logging"]
