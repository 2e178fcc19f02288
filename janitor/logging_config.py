"""Structured logging setup for the janitor controller.

Two output formats, selected by settings.log_format:

- json: one JSON object per line, for log aggregation
- text: human readable, for local runs
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from janitor.config import settings

# Attributes present on every LogRecord; anything else came from `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_handler: logging.Handler | None = None


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JanitorJSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def __init__(self, controller_id: str = ""):
        super().__init__()
        self.controller_id = controller_id

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "janitor",
            "controller_id": self.controller_id,
        }
        extra = _extra_fields(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class JanitorTextFormatter(logging.Formatter):
    """Human-readable formatter prefixed with the controller id."""

    def __init__(self, controller_id: str = ""):
        super().__init__(
            fmt=f"%(asctime)s [{controller_id}] %(levelname)s %(name)s: %(message)s"
        )
        self.controller_id = controller_id


def setup_logging(controller_id: str | None = None) -> None:
    """Configure the root logger from settings."""
    controller_id = controller_id if controller_id is not None else settings.controller_id
    if settings.log_format.lower() == "text":
        formatter: logging.Formatter = JanitorTextFormatter(controller_id)
    else:
        formatter = JanitorJSONFormatter(controller_id)

    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(formatter)
    root.addHandler(_handler)
    root.setLevel(settings.log_level.upper())

    # Third-party clients are chatty at INFO
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)
