"""Structured JSON logging with correlation ID support."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id


class JsonFormatter(logging.Formatter):
    """One JSON object per line, correlation ID included when bound."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str)


ROOT_LOGGER = "wabridge"


def _resolve_level(name: str) -> int:
    name = (name or "INFO").upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def set_log_level(name: str) -> None:
    """Apply a level name (e.g. ``DEBUG``) to every ``wabridge`` logger."""
    logging.getLogger(ROOT_LOGGER).setLevel(_resolve_level(name))


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output on stdout.

    The level lives on the ``wabridge`` parent logger: LOG_LEVEL until
    ``set_log_level`` applies the loaded settings.
    """
    logger = logging.getLogger(name)

    # Only configure once per logger
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    root = logging.getLogger(ROOT_LOGGER)
    if root.level == logging.NOTSET:
        root.setLevel(_resolve_level(os.environ.get("LOG_LEVEL", "INFO")))

    return logger
