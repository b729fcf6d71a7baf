"""
Structured JSON logging configuration.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pingchat.core.config import Settings, get_settings

ROOT_LOGGER = "pingchat"

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; extra_data is merged at the top level."""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            log_data.update(extra_data)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human readable formatter for development; appends extra_data as k=v."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict) and extra_data:
            pairs = " ".join(f"{key}={value}" for key, value in extra_data.items())
            line = f"{line} [{pairs}]"
        return line


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Configure and return the application logger."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if settings.log_format.lower() == "json":
        handler.setFormatter(JSONFormatter(settings.app_name))
    else:
        handler.setFormatter(TextFormatter())

    logger.addHandler(handler)
    logger.propagate = False

    if not settings.debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
