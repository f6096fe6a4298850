"""Structured Logging — JSON formatter and setup for Cako processes.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (entity, stage, url, verb, port, error_code) surfaced when present
    - setup_logging is idempotent: calling it again replaces Cako's handler

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - Called by Cako.start() / Cako.sync(), never at import time
"""

import logging
import json
from datetime import datetime, timezone

_EXTRA_KEYS = (
    "entity", "relation", "stage", "url", "verb", "host", "port",
    "error_code", "path", "entity_count", "route_count",
    "middleware_count", "controller_count", "table_count", "edge_count",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


class _CakoHandler(logging.StreamHandler):
    pass


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure logging for the application."""
    handler = _CakoHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    for existing in list(logging.root.handlers):
        if isinstance(existing, _CakoHandler):
            logging.root.removeHandler(existing)
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
