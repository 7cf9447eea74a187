"""Tests for logging configuration."""

import asyncio
import logging

import pytest

from src.utils.logging_config import (
    FlushingRotatingFileHandler,
    current_correlation_id,
    log_context,
    log_performance,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers and level back after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    def test_console_only(self, restore_root_logger):
        setup_logging("DEBUG", log_file=None)

        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_file_handler_writes_correlation_id(self, restore_root_logger, tmp_path):
        log_path = tmp_path / "logs" / "engine.log"
        setup_logging("INFO", log_file=str(log_path))

        with log_context("turn-abc"):
            logging.getLogger("src.test").info("hello")

        assert any(isinstance(h, FlushingRotatingFileHandler) for h in restore_root_logger.handlers)
        assert "[turn-abc] src.test: hello" in log_path.read_text(encoding="utf-8")

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging("LOUD", log_file=None)
        assert restore_root_logger.level == logging.INFO


class TestLogContext:
    def test_generates_id_and_restores_previous(self):
        with log_context("outer") as outer:
            with log_context() as inner:
                assert len(inner) == 8
                assert current_correlation_id() == inner
            assert current_correlation_id() == "outer"
        assert outer == "outer"
        assert current_correlation_id() is None

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_ids(self):
        async def turn(turn_id: str) -> str | None:
            with log_context(turn_id):
                await asyncio.sleep(0.01)
                return current_correlation_id()

        assert await asyncio.gather(turn("turn-a"), turn("turn-b")) == ["turn-a", "turn-b"]


class TestLogPerformance:
    def test_logs_completion(self, caplog):
        logger = logging.getLogger("src.test.perf")
        with caplog.at_level(logging.DEBUG, logger="src.test.perf"):
            with log_performance(logger, "Lookup"):
                pass
        assert "Lookup: Starting" in caplog.text
        assert "Lookup: Completed in" in caplog.text

    def test_logs_stop_and_reraises(self, caplog):
        logger = logging.getLogger("src.test.perf")
        with caplog.at_level(logging.INFO, logger="src.test.perf"):
            with pytest.raises(RuntimeError):
                with log_performance(logger, "Lookup"):
                    raise RuntimeError("boom")
        assert "Lookup: Stopped after" in caplog.text
        assert "(RuntimeError)" in caplog.text
