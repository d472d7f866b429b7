"""
relaybot/core/logging.py

Purpose: Logging configuration

- JSON lines in production, coloured single lines in development
- Per-update context (user_id, topic_id, state, update_id) attached
  to every record emitted while a LogContext is active
- Quiet third-party HTTP and Mongo loggers
"""

import logging
import sys
import json
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict
from relaybot.core.config import settings

CONTEXT_FIELDS = ("user_id", "topic_id", "state", "update_id")
SHORT_NAMES = {"user_id": "user", "topic_id": "topic", "state": "state", "update_id": "update"}
NOISY_LOGGERS = ("httpx", "httpcore", "motor", "pymongo", "uvicorn.access")


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_context_of(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevelopmentFormatter(logging.Formatter):

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}[{clock}] {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = _context_of(record)
        if context:
            line += " [" + ", ".join(f"{SHORT_NAMES[k]}={v}" for k, v in context.items()) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging():
    """
    Installs a single stdout handler on the root logger.
    Safe to call more than once; existing root handlers are replaced.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if settings.is_production else DevelopmentFormatter())
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("relaybot")
    logger.info(
        f"📝 Logging configured ({settings.ENVIRONMENT}, level {settings.LOG_LEVEL})",
        extra={"debug_mode": settings.DEBUG},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the relaybot namespace (pass __name__)."""
    if name.startswith("relaybot."):
        return logging.getLogger(name)
    return logging.getLogger(f"relaybot.{name}")


_log_context: ContextVar[Dict[str, Any]] = ContextVar("relaybot_log_context", default={})


class ContextFilter(logging.Filter):
    """
    Copies the active LogContext fields onto each record.

    Runs after the record is built, so an explicit `extra=` value wins
    over the surrounding context instead of colliding with it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class LogContext:
    """
    Context manager for adding structured context to logs.

    Context is held in a ContextVar, so concurrent update handlers
    each see only their own fields.

    Usage:
        with LogContext(user_id="123", topic_id="42"):
            logger.info("Relaying message")
    """

    def __init__(self, **kwargs):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self._token = None

    def __enter__(self):
        merged = {**_log_context.get(), **self.context}
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
