"""Logging utilities for refreshstore.

Every module obtains its logger through :func:`get_logger`. Applications that
embed the store may call :func:`configure_logging` once at start-up; libraries
that configure logging themselves can ignore it entirely.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Structured fields copied from ``extra=`` into JSON documents.
CONTEXT_FIELDS = ("key", "resolver", "attempt", "event", "duration", "error")


class JsonFormatter(logging.Formatter):
    """Format log records as JSON documents.

    The payload is kept small: timestamp, severity, logger name and message,
    plus whichever of :data:`CONTEXT_FIELDS` were attached to the record.
    """

    default_time_format = "%Y-%m-%dT%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                self.default_time_format
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for key in CONTEXT_FIELDS:
            if key in record.__dict__:
                payload[key] = record.__dict__[key]
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    rich: Optional[bool] = None,
) -> None:
    """Route refreshstore logs to the console and, optionally, a JSON file.

    Only the ``refreshstore`` logger hierarchy is configured; the host
    application's root logger is left alone. Console output goes through Rich
    unless ``rich=False`` or ``REFRESHSTORE_RICH=0``, in which case JSON lines
    are written to stderr. A rotating JSON file is added when ``log_dir`` or
    ``$REFRESHSTORE_LOG_DIR`` names a directory.
    """

    if rich is None:
        rich = os.environ.get("REFRESHSTORE_RICH", "1") != "0"
    if log_dir is None and os.environ.get("REFRESHSTORE_LOG_DIR"):
        log_dir = Path(os.environ["REFRESHSTORE_LOG_DIR"])

    handlers: Dict[str, Dict[str, Any]] = {}
    if rich:
        handlers["console"] = {
            "class": "rich.logging.RichHandler",
            "rich_tracebacks": True,
            "show_path": False,
        }
    else:
        handlers["console"] = {"class": "logging.StreamHandler", "formatter": "json"}
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": str(log_dir / "refreshstore.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "refreshstore.utils.logging.JsonFormatter"}},
            "handlers": handlers,
            "loggers": {
                "refreshstore": {
                    "level": level,
                    "handlers": list(handlers),
                    "propagate": False,
                }
            },
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name``."""

    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter", "CONTEXT_FIELDS"]
