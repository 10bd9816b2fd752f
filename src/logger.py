from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

_CONFIGURED = False
DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_DIR_ENV = "BOT_LOG_DIR"
LOG_LEVEL_ENV = "BOT_LOG_LEVEL"
LOG_FILE_ENV = "BOT_LOG_TO_FILE"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> <dim>{extra}</dim>"
)


def _resolve_log_dir(explicit: str | Path | None) -> Path:
    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env_value = os.getenv(LOG_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return DEFAULT_LOG_DIR


def configure_logger(*, log_dir: str | Path | None = None, level: str | None = None) -> None:
    """Configure the Loguru sinks once per process.

    Console output honours ``BOT_LOG_LEVEL`` (default ``INFO``). A daily rotated
    file sink at ``TRACE`` level is added unless ``BOT_LOG_TO_FILE`` is ``0``,
    so scope-miss traces for ignored cards are kept on disk only.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level = level or os.getenv(LOG_LEVEL_ENV, "INFO")

    _logger.remove()
    _logger.add(
        sys.stdout,
        level=log_level,
        format=LOG_FORMAT,
        colorize=sys.stdout.isatty(),
    )

    if os.getenv(LOG_FILE_ENV, "1") != "0":
        target_dir = _resolve_log_dir(log_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            target_dir / "trigger-bot-{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="14 days",
            level="TRACE",
            format=LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    _CONFIGURED = True


def get_logger(*, log_dir: str | Path | None = None, level: str | None = None):
    """Return the configured logger, configuring it on first access."""

    configure_logger(log_dir=log_dir, level=level)
    return _logger


def log_with_context(logger_instance, **context: str | int | None) -> Any:
    """Bind non-empty context fields (repository, pr_number, delivery_id, ...)."""
    return logger_instance.bind(**{k: v for k, v in context.items() if v is not None})


@contextmanager
def log_timing(logger_instance, operation: str, **context: str | int | None) -> Iterator[Any]:
    """Log how long ``operation`` took; failures are logged and re-raised.

    Usage:
        with log_timing(logger, "fetch_project_column", repository="owner/repo"):
            ...
    """

    start_time = time.monotonic()
    ctx_logger = log_with_context(logger_instance, **context)
    ctx_logger.trace(f"Starting {operation}")
    try:
        yield ctx_logger
    except Exception as exc:
        duration = time.monotonic() - start_time
        ctx_logger.debug(f"Failed {operation} after {duration:.3f}s: {exc}")
        raise
    duration = time.monotonic() - start_time
    ctx_logger.trace(f"Completed {operation} in {duration:.3f}s")


def log_failure(logger_instance, message: str, error: Exception | None = None, **context: str | int | None) -> None:
    """Log a failure message with context and optional error."""
    ctx_logger = log_with_context(logger_instance, **context)
    if error:
        ctx_logger.error(f"{message} | Error: {error}")
    else:
        ctx_logger.error(message)


logger = get_logger()
