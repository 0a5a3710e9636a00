"""Test logging configuration."""

import logging
from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

from tunnel_keeper.common.logging import (
    connection_context,
    get_logger,
    setup_logging,
)


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Reset logging handlers before each test."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def teardown_method(self) -> None:
        setup_logging(level="INFO")

    def test_setup_logging_default(self) -> None:
        """Test default logging setup."""
        setup_logging()
        root_logger = logging.getLogger()

        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1

    def test_setup_logging_with_level(self) -> None:
        """Test logging setup with custom level."""
        setup_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="unknown log level 'loud'"):
            setup_logging(level="loud")

    def test_paramiko_kept_quiet(self) -> None:
        """paramiko's chatty INFO lines are suppressed."""
        setup_logging(level="DEBUG")
        assert logging.getLogger("paramiko").level == logging.WARNING

        setup_logging(level="ERROR")
        assert logging.getLogger("paramiko").level == logging.ERROR

    def test_setup_logging_json_format(self) -> None:
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("test message", key="value")

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "test message"
        assert cap.entries[0]["key"] == "value"

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Test logging setup with file output."""
        log_file = tmp_path / "test.log"
        setup_logging(log_file=str(log_file))

        python_logger = logging.getLogger("test_file")
        python_logger.info("test message")

        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()
        assert "test message" in log_file.read_text()
        assert len(logging.getLogger().handlers) == 2

    def test_get_logger(self) -> None:
        """Test getting a logger instance."""
        setup_logging()
        logger = get_logger("test_module")
        assert hasattr(logger, "info")
        assert hasattr(logger, "debug")
        assert hasattr(logger, "warning")

    def test_connection_context(self) -> None:
        """Lines logged inside the context carry the connection name."""
        cap = LogCapture()
        structlog.configure(
            processors=[structlog.contextvars.merge_contextvars, cap]
        )
        logger = get_logger("test_context")

        with connection_context("db"):
            logger.info("inside")
        logger.info("outside")

        assert cap.entries[0]["connection"] == "db"
        assert "connection" not in cap.entries[1]
