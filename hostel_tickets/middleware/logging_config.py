"""
Structured logging for the ticketing service.

Two output shapes, picked by ``LOG_FORMAT`` (``json`` | ``text``); the
default is JSON in production and text elsewhere.  ``LOG_LEVEL`` sets the
threshold.

Services attach ticket context with ``extra={...}``.  ``ActorFilter``
stamps every record emitted during a request with the acting user's id.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Ticket-domain fields copied from ``extra`` into the output.
CONTEXT_FIELDS = (
    "actor_id",
    "event_type",
    "ticket_id",
    "staff_id",
    "escalation_id",
    "level",
    "from_status",
    "to_status",
    "category",
    "hostel_block",
    "job_name",
)

# Shown inline by the text formatter.
_TEXT_FIELDS = ("actor_id", "ticket_id", "staff_id", "level")


class ActorFilter(logging.Filter):
    """Adds ``actor_id`` from ``g`` unless the caller already supplied one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "actor_id", None) is None and has_request_context():
            record.actor_id = getattr(g, "actor_id", None)
        return True


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Colored single-line output for a developer terminal."""

    _COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self._COLOURS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _TEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        line = (f"{colour}{clock} {record.levelname:<8}{self._RESET} "
                f"{record.name}: {record.getMessage()}")
        if ctx:
            line += f" [{ctx}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for *app*."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    fmt = os.getenv("LOG_FORMAT", "json" if production else "text").lower()
    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    handler.addFilter(ActorFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session and again in scripts
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(chatty).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
