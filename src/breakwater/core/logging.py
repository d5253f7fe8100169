"""
Logging setup for Breakwater.

All library loggers are children of the `breakwater` logger. Log calls made
on behalf of a resilient call pass its context with `extra=call_context(...)`
so that JSON output carries `correlation_id`, `endpoint` and `attempt` as
fields rather than only inside the message text.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Default Logger Name
LOGGER_NAME = "breakwater"

# Per-call fields attached to records through `extra=`
CONTEXT_FIELDS = ("correlation_id", "endpoint", "attempt")

TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field_name in CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                payload[field_name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def call_context(
    correlation_id: str,
    endpoint: str | None = None,
    attempt: int | None = None,
) -> dict[str, Any]:
    """Build the `extra=` mapping for a log call tied to one resilient call."""
    return {"correlation_id": correlation_id, "endpoint": endpoint, "attempt": attempt}


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Configure the Breakwater logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Whether to emit JSON logs (good for log shippers)

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Re-configuring replaces handlers instead of stacking them
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of breakwater."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
