"""Logging configuration for the narrative engine.

Every record carries the id of the turn it was logged from. The id lives in
a ContextVar, so turns running concurrently for different stories on one
event loop keep their own ids.
"""

import logging
import sys
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path

from src.settings._paths import LOGS_DIR

DEFAULT_LOG_FILE = LOGS_DIR / "narrative_engine.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Chatty at DEBUG and never useful for turn diagnostics
_QUIET_LOGGERS = ("httpx", "httpcore", "ollama", "asyncio")


def current_correlation_id() -> str | None:
    """Correlation id of the turn running in the current context, if any."""
    return _correlation_id.get()


class CorrelationFilter(logging.Filter):
    """Stamp records with the current turn's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get() or "-"
        return True


class FlushingRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that flushes after every record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


def _resolve_log_path(log_file: str | None) -> Path | None:
    if log_file == "default":
        return DEFAULT_LOG_FILE
    return Path(log_file) if log_file else None


def setup_logging(level: str = "INFO", log_file: str | None = "default") -> None:
    """Configure the root logger for the engine.

    Replaces any handlers already on the root logger.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        log_file: Log file path. "default" writes logs/narrative_engine.log,
            None logs to stdout only.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    correlation = CorrelationFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path = _resolve_log_path(log_file)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            FlushingRotatingFileHandler(
                log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
            )
        )

    # Filters go on handlers so records from child loggers are stamped too
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(correlation)
        root_logger.addHandler(handler)

    if log_path is not None:
        root_logger.info(
            "Logging to file: %s (rotating at %d MB, %d backups)",
            log_path,
            MAX_LOG_BYTES // (1024 * 1024),
            LOG_BACKUP_COUNT,
        )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def log_context(correlation_id: str | None = None) -> Generator[str]:
    """Tag every record logged inside the block with a correlation id.

    Args:
        correlation_id: Id to use. A short random id is generated if omitted.

    Yields:
        The correlation id in effect.
    """
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex[:8]
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


@contextmanager
def log_performance(logger: logging.Logger, operation: str) -> Generator[None]:
    """Log how long a block took, including when it is interrupted.

    Cancellation passes through here as an exception, so the stop is logged
    at INFO and the exception re-raised.
    """
    start_time = time.perf_counter()
    logger.debug("%s: Starting", operation)
    try:
        yield
    except BaseException as e:
        logger.info(
            "%s: Stopped after %.2fs (%s)",
            operation,
            time.perf_counter() - start_time,
            type(e).__name__,
        )
        raise
    logger.info("%s: Completed in %.2fs", operation, time.perf_counter() - start_time)
