"""Logging setup for the FlexHunt backend.

Standard library logging with a human-readable console formatter by
default and a JSON formatter for log shippers.

Usage:
    from flexhunt.logging_config import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    logger = get_logger("flexhunt.checkout")
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure root logging for the API process."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                },
            },
            "root": {"level": level.upper(), "handlers": ["default"]},
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Return a module logger (e.g. ``flexhunt.checkout``)."""
    return logging.getLogger(name)
