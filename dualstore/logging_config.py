"""
Logging configuration for dualstore.

Features:
- Log level from settings or the DUALSTORE_LOG_LEVEL environment variable
- Colored human-readable console output
- Optional structured JSON file output with size-based rotation
- Context fields attached to every record logged inside ``log_context``;
  the context is held per asyncio task
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB
BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = os.getenv("DUALSTORE_LOG_LEVEL", "INFO")

# Libraries that log every round-trip at DEBUG
QUIET_LOGGERS = ("neo4j", "sqlalchemy.engine")

_current_log_level = DEFAULT_LOG_LEVEL.upper()
_log_context: ContextVar[dict[str, Any]] = ContextVar("dualstore_log_context", default={})


def current_context() -> dict[str, Any]:
    """Context fields active in the current task."""
    return dict(_log_context.get())


@contextmanager
def log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Attach fields to every record logged inside the block.

    Usage:
        with log_context(query=query):
            logger.warning("Cypher query failed")
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield current_context()
    finally:
        _log_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log files."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "context", None):
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """Colored single-line console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        line = f"{timestamp} {color}{record.levelname:8}{self.RESET} {record.name}: {record.getMessage()}"

        context = getattr(record, "context", None)
        if context:
            line += " " + " ".join(f"{key}={value!r}" for key, value in context.items())

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


class DualStoreLogger(logging.Logger):
    """Logger that merges the active ``log_context`` into every record."""

    def makeRecord(self, *args: Any, **kwargs: Any) -> logging.LogRecord:
        record = super().makeRecord(*args, **kwargs)
        active = _log_context.get()
        if active:
            record.context = {**active, **(getattr(record, "context", None) or {})}
        return record

    def _log_with_context(self, level: int, msg: str, context: dict[str, Any] | None, **kwargs: Any) -> None:
        if not self.isEnabledFor(level):
            return
        extra = dict(kwargs.pop("extra", None) or {})
        extra["context"] = dict(context or {})
        self._log(level, msg, (), extra=extra, **kwargs)

    def warning_with_context(self, msg: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self._log_with_context(logging.WARNING, msg, context, **kwargs)

    def error_with_context(self, msg: str, context: dict[str, Any] | None = None, **kwargs: Any) -> None:
        self._log_with_context(logging.ERROR, msg, context, **kwargs)


logging.setLoggerClass(DualStoreLogger)


def setup_logging(
    level: str | None = None,
    log_file: str | Path | None = None,
    enable_console: bool = True,
) -> None:
    """
    Install console and file handlers on the root logger.

    Args:
        level: Log level name; defaults to DUALSTORE_LOG_LEVEL
        log_file: Path of a rotating JSON log file, if any
        enable_console: Log to stdout
    """
    global _current_log_level

    if level:
        _current_log_level = level.upper()

    numeric_level = getattr(logging, _current_log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = []
    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(HumanFormatter())
        handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_FILE_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> DualStoreLogger:
    """Return the named logger as a DualStoreLogger."""
    logger = logging.getLogger(name)
    if not isinstance(logger, DualStoreLogger):
        # Created before this module was imported
        logger.__class__ = DualStoreLogger
    return logger  # type: ignore[return-value]


def set_log_level(level: str) -> None:
    """Change the level of the root logger and its handlers."""
    global _current_log_level
    _current_log_level = level.upper()

    numeric_level = getattr(logging, _current_log_level, logging.INFO)
    logging.getLogger().setLevel(numeric_level)

    for handler in logging.getLogger().handlers:
        handler.setLevel(numeric_level)


def get_log_level() -> str:
    return _current_log_level
