"""Logging setup for the outreach engine.

Production writes one JSON object per line; development writes a compact
text line. Fields bound with LogContext live in a ContextVar, so each
asyncio task only ever sees its own lead's fields.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

ROOT_LOGGER_NAME = "outreach_engine"
SERVICE_NAME = "outreach-engine"

# Held at WARNING unless the engine itself logs at DEBUG
NOISY_LOGGERS = (
    "urllib3",
    "httpx",
    "httpcore",
    "openai",
    "sqlalchemy.engine",
    "aiosqlite",
    "slack_sdk",
    "googlemaps",
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "context"}

_log_context: ContextVar[Mapping[str, Any]] = ContextVar("outreach_log_context", default={})


class LogContext:
    """Bind fields to every record logged inside the block.

    Nested blocks add to the enclosing fields and restore them on exit.

    Example:
        >>> with LogContext(dedup_key="google:abc|austin|tx"):
        ...     logger.info("Sending outreach")  # record.context has dedup_key
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set({**_log_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    @staticmethod
    def current() -> Dict[str, Any]:
        return dict(_log_context.get())


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = LogContext.current()
        return True


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        extra = _extra_fields(record)
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``time LEVEL logger: message [key=value ...]`` for a terminal."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {**(getattr(record, "context", None) or {}), **_extra_fields(record)}
        if not fields:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in fields.items())
        head, newline, rest = line.partition("\n")
        return f"{head} [{suffix}]{newline}{rest}"


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = SERVICE_NAME,
) -> logging.Logger:
    """Configure the root logger for the engine process.

    Args:
        level: Log level name. Defaults to LOG_LEVEL or INFO.
        structured: JSON output. Defaults to True unless APP_ENV is dev.
        service_name: Service name stamped on JSON records.

    Returns:
        The outreach_engine package logger.
    """
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    if structured is None:
        structured = os.environ.get("APP_ENV", "dev") not in ("dev", "development")

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(ContextFilter())
    handler.setFormatter(StructuredFormatter(service_name) if structured else TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    third_party_level = logging.WARNING if log_level > logging.DEBUG else log_level
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.info("Logging initialized", extra={"log_level": level_name, "structured": structured})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger inside the outreach_engine namespace."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
