"""Tests for logging configuration."""

import os
import time

import structlog

from src.core.logging import (
    LOG_FILE_PREFIX,
    _cull_old_logs,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


class TestLoggingConfiguration:
    """Tests for logging setup."""

    def test_configure_logging_creates_run_log(self, tmp_path):
        """configure_logging() creates a run log file in logs_dir."""
        configure_logging(logs_dir=tmp_path)

        log_files = list(tmp_path.glob(f"{LOG_FILE_PREFIX}*.log"))
        assert len(log_files) == 1

    def test_get_logger_returns_logger(self, tmp_path):
        """get_logger() returns a structlog logger with logging methods."""
        configure_logging(logs_dir=tmp_path)
        logger = get_logger("test_module")

        assert callable(logger.info)
        assert callable(logger.error)
        assert callable(logger.debug)

    def test_logger_can_bind_context(self, tmp_path):
        """Logger can bind context variables."""
        configure_logging(logs_dir=tmp_path)
        logger = get_logger("test")
        bound_logger = logger.bind(session_id="test-123", phase="discovery")
        bound_logger.info("test_message")


class TestContextBinding:
    """Tests for contextvar helpers."""

    def test_bind_and_clear_context(self):
        """bind_context adds contextvars, clear_context removes them."""
        bind_context(session_id="session-1")
        assert structlog.contextvars.get_contextvars()["session_id"] == "session-1"

        clear_context()
        assert "session_id" not in structlog.contextvars.get_contextvars()


class TestLogCulling:
    """Tests for run log retention."""

    def test_keeps_most_recent_logs(self, tmp_path):
        """Only the N newest run logs survive."""
        for index in range(4):
            path = tmp_path / f"{LOG_FILE_PREFIX}2026010{index}_000000.log"
            path.write_text("")
            stamp = time.time() - (10 - index) * 60
            os.utime(path, (stamp, stamp))

        _cull_old_logs(tmp_path, keep=2)

        remaining = sorted(p.name for p in tmp_path.glob("*.log"))
        assert remaining == [
            f"{LOG_FILE_PREFIX}20260102_000000.log",
            f"{LOG_FILE_PREFIX}20260103_000000.log",
        ]

    def test_ignores_unrelated_files(self, tmp_path):
        """Files without the run-log prefix are left alone."""
        other = tmp_path / "other.log"
        other.write_text("")

        _cull_old_logs(tmp_path, keep=0)

        assert other.exists()
