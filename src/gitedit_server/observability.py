from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "gitedit"

# Environment variables for configuration
ENV_LOG_DIR = "GITEDIT_LOG_DIR"
ENV_LOG_LEVEL = "GITEDIT_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "GITEDIT_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "GITEDIT_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "GITEDIT_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".gitedit" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

_logger_initialized = False
_session_start: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_log_level() -> int:
    """Get log level from environment, defaulting to INFO."""
    level_name = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled via GITEDIT_LOG_DISABLE_FILE=1.
    """
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR)).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")
    # Session-based filename: gitedit_2024-01-15_143022.log
    return log_dir / f"gitedit_{_session_start}.log"


def _get_logger() -> logging.Logger:
    """Get or initialize the gitedit logger.

    By default, logs to ~/.gitedit/logs/gitedit_<session>.log and mirrors
    warnings and above to stderr.
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        logger.handlers.clear()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        log_file = _get_log_file_path()
        if log_file:
            max_bytes = int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def configure_from(logging_config: Any) -> None:
    """Push a LoggingConfig into the environment before the logger initializes."""
    os.environ.setdefault(ENV_LOG_LEVEL, logging_config.level)
    if logging_config.dir:
        os.environ.setdefault(ENV_LOG_DIR, logging_config.dir)
    os.environ.setdefault(ENV_LOG_MAX_BYTES, str(logging_config.max_bytes))
    os.environ.setdefault(ENV_LOG_BACKUP_COUNT, str(logging_config.backup_count))
    if logging_config.disable_file:
        os.environ.setdefault(ENV_LOG_DISABLE_FILE, "1")


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    repo: Optional[str] = None,
    **fields: Any,
) -> None:
    """Emit a structured JSON log line for an action.

    Args:
        action: Name of the action being logged (e.g. "edition.commit")
        outcome: Result status ("ok", "error", etc.)
        duration_ms: How long the action took in milliseconds
        repo: Repository identity the action ran against
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if repo is not None:
        payload["repo"] = repo
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields (DEBUG level only)."""
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(action: str, *, repo: Optional[str] = None, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises. The yielded dict may be
    updated inside the block; its items are added to the log line.
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(
            action,
            outcome="error",
            duration_ms=duration_ms,
            repo=repo,
            error=type(exc).__name__,
            **fields,
        )
        raise
    duration_ms = (time.perf_counter() - start) * 1000.0
    log_action(
        action,
        outcome=result_info.pop("outcome", "ok"),
        duration_ms=duration_ms,
        repo=repo,
        **{**fields, **result_info},
    )
