"""Unit tests for logging module."""

import structlog

from utils.logging import configure_logging, get_logger


def test_configure_logging_json_format() -> None:
    """Test logging configuration with JSON format."""
    logger = configure_logging(log_level="INFO", log_format="json")
    assert logger is not None
    logger.info("Test message", count=0)


def test_configure_logging_console_format() -> None:
    """Test logging configuration with console format."""
    logger = configure_logging(log_level="DEBUG", log_format="console")
    assert logger is not None
    logger.debug("Test message")


def test_configure_logging_binds_correlation_id() -> None:
    """Test the correlation ID is bound to the logging context."""
    configure_logging(log_level="INFO", correlation_id="job-123")
    assert structlog.contextvars.get_contextvars()["correlation_id"] == "job-123"


def test_configure_logging_clears_previous_correlation_id() -> None:
    """Test a new configuration does not inherit an old correlation ID."""
    configure_logging(correlation_id="job-1")
    configure_logging()
    assert "correlation_id" not in structlog.contextvars.get_contextvars()


def test_get_logger() -> None:
    """Test getting logger instance."""
    assert get_logger() is not None


def test_get_logger_with_name() -> None:
    """Test getting named logger instance."""
    assert get_logger("test_module") is not None


def test_configure_logging_binds_run_location() -> None:
    """Test the server and worker of a run are bound alongside the job id."""
    configure_logging(correlation_id="job-9", server_name="web-1", worker_name="cron")
    bound = structlog.contextvars.get_contextvars()
    assert bound == {"correlation_id": "job-9", "server": "web-1", "worker": "cron"}


def test_configure_logging_skips_unset_run_location() -> None:
    """Test missing server and worker names are not bound as empty values."""
    configure_logging(correlation_id="job-9")
    assert structlog.contextvars.get_contextvars() == {"correlation_id": "job-9"}
