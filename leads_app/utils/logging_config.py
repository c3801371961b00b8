"""
Logging setup for the leads application.

``setup_logging`` is safe to call repeatedly (tests re-run it after updating
config); handlers installed by a previous call are replaced.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import Flask

_HANDLER_MARKER = "_leads_app_handler"

# LogRecord attributes that are not caller-supplied ``extra`` fields.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if (log_format or "").lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(value) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(app: Flask) -> None:
    """Configure ``app.logger`` from the LOG_* settings."""
    config = app.config
    level = _resolve_level(config.get("LOG_LEVEL", "INFO"))
    formatter = _build_formatter(config.get("LOG_FORMAT", "text"))

    logger = app.logger
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    if config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.setLevel(level)
        setattr(console, _HANDLER_MARKER, True)
        logger.addHandler(console)

    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "leads_app.log"),
            maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    logger.setLevel(level)
