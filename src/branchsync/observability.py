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


LOGGER_NAME = "branchsync"

# Environment variables for configuration
ENV_LOG_DIR = "BRANCHSYNC_LOG_DIR"
ENV_LOG_LEVEL = "BRANCHSYNC_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "BRANCHSYNC_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "BRANCHSYNC_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "BRANCHSYNC_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".branchsync" / "logs"
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

    Returns None if file logging is disabled via BRANCHSYNC_LOG_DISABLE_FILE=1.
    """
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")

    log_dir = Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR))
    log_dir.mkdir(parents=True, exist_ok=True)

    # Session-based filename: branchsync_2024-01-15_143022.log
    return log_dir / f"branchsync_{_session_start}.log"


def _get_logger() -> logging.Logger:
    """Get or initialize the branchsync logger.

    By default, logs to ~/.branchsync/logs/branchsync_<session>.log

    Configuration via environment variables:
    - BRANCHSYNC_LOG_DIR: Directory for log files (default: ~/.branchsync/logs/)
    - BRANCHSYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - BRANCHSYNC_LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
    - BRANCHSYNC_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    - BRANCHSYNC_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
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

        # stderr gets warnings and above only; the CLI prints sync events itself
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def apply_logging_config(logging_config: Any) -> None:
    """Seed logger settings from a loaded ``LoggingConfig``.

    Environment variables that are already set win. Has no effect once the
    logger has been initialised.
    """
    if _logger_initialized:
        return
    defaults = {
        ENV_LOG_LEVEL: logging_config.level,
        ENV_LOG_MAX_BYTES: logging_config.max_bytes,
        ENV_LOG_BACKUP_COUNT: logging_config.backup_count,
    }
    if logging_config.dir:
        defaults[ENV_LOG_DIR] = str(Path(logging_config.dir).expanduser())
    if logging_config.disable_file:
        defaults[ENV_LOG_DISABLE_FILE] = "1"
    for key, value in defaults.items():
        os.environ.setdefault(key, str(value))


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} {json.dumps(fields, separators=(',', ':'), sort_keys=True, default=str)}"


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON for safety. Keep schema lightweight.

    Args:
        action: Name of the action being logged (e.g. "sync.branch")
        outcome: Result status ("ok", "error", "cancelled", ...)
        duration_ms: How long the action took in milliseconds
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().isoformat(),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_info(message: str, **fields: Any) -> None:
    _get_logger().info(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(action: str, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises. The yielded dict may be
    updated inside the block; its contents are merged into the log line, and
    an "outcome" key there overrides the default "ok".
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
        duration_ms = (time.perf_counter() - start) * 1000.0
        outcome = result_info.pop("outcome", "ok")
        merged = {**fields, **result_info}
        log_action(action, outcome=outcome, duration_ms=duration_ms, **merged)
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="error", duration_ms=duration_ms, **fields)
        raise
