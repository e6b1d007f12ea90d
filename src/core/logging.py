"""
Structured logging configuration using structlog.

Provides consistent, structured logging across the phase engine with:
- JSON output in production
- Pretty console output in development
- Context binding so every transition log line carries its session_id
- File output to the logs/ directory (one file per process run)
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import Processor

from src.core.config import settings

LOG_FILE_PREFIX = "phase_engine_"


def _cull_old_logs(logs_dir: Path, keep: int) -> None:
    """Delete old run logs, keeping only the N most recent."""
    log_files = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    for old_file in log_files[max(keep, 0):]:
        try:
            os.remove(old_file)
        except OSError:
            pass  # File may be held open by another process


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    log_sessions_to_keep: Optional[int] = None,
    logs_dir: Optional[Path] = None,
) -> None:
    """Configure structlog for the application.

    Call this once at process startup, before any logging. Safe to call
    again (tests, long-running workers): existing root handlers are closed
    and replaced.

    Args:
        log_sessions_to_keep: Number of run logs to retain
            (default: settings.log_sessions_to_keep)
        logs_dir: Directory for run logs (default: settings.logs_dir)

    Outputs:
        - Console (colored in debug, JSON otherwise)
        - File: logs/phase_engine_YYYYMMDD_HHMMSS.log
    """
    keep = (
        log_sessions_to_keep
        if log_sessions_to_keep is not None
        else settings.log_sessions_to_keep
    )
    logs_dir = logs_dir or settings.logs_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    # keep-1 to make room for the file created below
    _cull_old_logs(logs_dir, keep=keep - 1)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"{LOG_FILE_PREFIX}{timestamp}.log"

    level = _resolve_level(settings.log_level)

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if settings.debug:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(file_handler)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from src.core.logging import get_logger

        log = get_logger(__name__)
        log.info("transition_completed", session_id=session.id)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind context variables that will be included in all subsequent logs.

        bind_context(session_id=session.id, phase=session.phase.value)
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables from the logging context."""
    structlog.contextvars.clear_contextvars()
