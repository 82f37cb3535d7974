"""Tests for error handling and logging modules."""

import json
import logging
from pathlib import Path

import pytest

from clip_qa.errors import (
    AlreadyExistsError,
    ClipQAError,
    ConfigurationError,
    ErrorCategory,
    JobFailedError,
    NotFoundError,
    ProbeError,
    StorageError,
    ToolError,
    ValidationError,
    format_error_for_display,
)
from clip_qa.logging import (
    ROOT_LOGGER_NAME,
    LogConfig,
    LogLevel,
    StructuredFormatter,
    configure_logging,
    diagnostic_tail,
    get_active_log_file,
    get_logger,
    log_operation_complete,
    log_operation_failed,
    log_operation_start,
    log_tool_invocation,
    shutdown_logging,
)


class TestErrorCategory:
    """Tests for ErrorCategory enum."""

    def test_categories(self):
        """Test error category values."""
        assert ErrorCategory.VALIDATION.value == "validation"
        assert ErrorCategory.CONFIGURATION.value == "configuration"
        assert ErrorCategory.RESOURCE.value == "resource"
        assert ErrorCategory.EXTERNAL.value == "external"
        assert ErrorCategory.INTERNAL.value == "internal"


class TestClipQAError:
    """Tests for ClipQAError base class."""

    def test_basic_error(self):
        """Test basic error creation."""
        error = ClipQAError("Test error")

        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.context == {}
        assert error.recoverable is False
        assert error.category == ErrorCategory.INTERNAL

    def test_error_with_context(self):
        """Test error with context."""
        error = ClipQAError("Test error", context={"key": "value"})

        assert "context: {'key': 'value'}" in str(error)


class TestErrorSubclasses:
    """Tests for the specific error types."""

    def test_categories_and_recoverability(self):
        """Test each subclass's category and retry hint."""
        cases = [
            (NotFoundError("x"), ErrorCategory.RESOURCE, False),
            (ValidationError("x"), ErrorCategory.VALIDATION, False),
            (ConfigurationError("x"), ErrorCategory.CONFIGURATION, False),
            (StorageError("x"), ErrorCategory.INTERNAL, False),
            (ProbeError("x"), ErrorCategory.EXTERNAL, True),
            (ToolError("x", exit_code=1), ErrorCategory.EXTERNAL, True),
            (JobFailedError("x", video_id="v"), ErrorCategory.EXTERNAL, True),
        ]
        for error, category, recoverable in cases:
            assert error.category == category
            assert error.recoverable is recoverable

    def test_already_exists_is_storage_error(self):
        """Test the storage hierarchy."""
        assert isinstance(AlreadyExistsError("x"), StorageError)

    def test_tool_error_fields(self):
        """Test ToolError attributes."""
        error = ToolError("failed", exit_code=None, diagnostic_output="not found")

        assert error.exit_code is None
        assert error.diagnostic_output == "not found"


class TestFormatErrorForDisplay:
    """Tests for format_error_for_display."""

    def test_clip_qa_error(self):
        """Test formatting with category and context."""
        error = NotFoundError("Video not found: abc", context={"id": "abc"})

        assert format_error_for_display(error) == "[resource] Video not found: abc (id=abc)"

    def test_without_context(self):
        """Test formatting without context."""
        assert format_error_for_display(ValidationError("bad")) == "[validation] bad"

    def test_generic_error(self):
        """Test formatting a non clip-qa error."""
        assert format_error_for_display(OSError("disk full")) == "[error] OSError: disk full"


def make_record(message="Hello", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="clip_qa.clipper",
        level=level,
        pathname="clipper.py",
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_text_format(self):
        """Test plain text output with context."""
        formatter = StructuredFormatter(include_timestamp=False, color=False)

        output = formatter.format(make_record(video_id="abc"))

        assert "INFO" in output
        assert "Hello" in output
        assert "[video_id=abc]" in output

    def test_json_format(self):
        """Test JSON output."""
        formatter = StructuredFormatter(json_format=True, include_timestamp=False)

        data = json.loads(formatter.format(make_record(video_id="abc", path=Path("/x"))))

        assert data["level"] == "info"
        assert data["message"] == "Hello"
        assert data["logger"] == "clip_qa.clipper"
        assert data["context"]["video_id"] == "abc"
        assert data["context"]["path"] == "/x"


class TestDiagnosticTail:
    """Tests for diagnostic_tail."""

    def test_truncates_to_tail(self):
        """Test that only the last characters are kept."""
        assert diagnostic_tail("a" * 600 + "end", limit=5) == "a" * 2 + "end"

    def test_default_limit(self):
        """Test the default bound."""
        assert len(diagnostic_tail("x" * 2000)) == 500

    def test_empty(self):
        """Test empty input."""
        assert diagnostic_tail(None) == ""


class TestLoggingConfiguration:
    """Tests for logger configuration and the run log file."""

    def teardown_method(self):
        shutdown_logging()

    def test_get_logger_configures(self):
        """Test that get_logger returns a logger in the clip_qa hierarchy."""
        logger = get_logger("clip_qa.test")

        assert logger.name == "clip_qa.test"
        assert logging.getLogger(ROOT_LOGGER_NAME).handlers

    def test_log_dir_creates_run_file(self, tmp_path):
        """Test that a per-run file is created in the log directory."""
        log_file = configure_logging(LogConfig(level=LogLevel.QUIET, log_dir=tmp_path / "logs"))

        logger = logging.getLogger("clip_qa.test")
        logger.debug("debug detail", extra={"video_id": "abc"})
        shutdown_logging()

        assert log_file.parent == tmp_path / "logs"
        assert log_file.name.startswith("app-")
        assert "debug detail" in log_file.read_text(encoding="utf-8")

    def test_explicit_log_file(self, tmp_path):
        """Test that an explicit file wins over the directory."""
        target = tmp_path / "run.log"

        configure_logging(LogConfig(log_dir=tmp_path / "logs", log_file=target))

        assert get_active_log_file() == target
        assert not (tmp_path / "logs").exists()

    def test_reconfigure_replaces_handlers(self):
        """Test that configuring twice does not duplicate handlers."""
        configure_logging(LogConfig())
        configure_logging(LogConfig())

        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1

    def test_shutdown_closes_handlers(self, tmp_path):
        """Test that shutdown removes every handler."""
        configure_logging(LogConfig(log_file=tmp_path / "run.log"))

        shutdown_logging()

        assert logging.getLogger(ROOT_LOGGER_NAME).handlers == []
        assert get_active_log_file() is None


class TestLogHelpers:
    """Tests for the logging helper functions."""

    @pytest.fixture
    def logger(self):
        return logging.getLogger("tests.helpers")

    def test_tool_invocation_success(self, logger, caplog):
        """Test that successful invocations are logged at debug level."""
        with caplog.at_level(logging.DEBUG, logger="tests.helpers"):
            log_tool_invocation(logger, "probe", ["ffprobe", "a.mp4"], 0, "")

        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert record.command == "ffprobe a.mp4"
        assert record.exit_code == 0

    def test_tool_invocation_failure(self, logger, caplog):
        """Test that failed invocations are logged as errors."""
        with caplog.at_level(logging.DEBUG, logger="tests.helpers"):
            log_tool_invocation(logger, "segment", ["ffmpeg"], None, "not found", video_id="v")

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.exit_code is None
        assert record.video_id == "v"

    def test_operation_lifecycle(self, logger, caplog):
        """Test start/complete/failed helpers."""
        with caplog.at_level(logging.INFO, logger="tests.helpers"):
            log_operation_start(logger, "clip generation", video_id="v")
            log_operation_complete(logger, "clip generation", duration=1.234, video_id="v")
            log_operation_failed(logger, "clip generation", ValueError("bad"), video_id="v")

        start, complete, failed = caplog.records[-3:]
        assert start.getMessage() == "Starting: clip generation"
        assert complete.duration_seconds == 1.23
        assert failed.levelno == logging.ERROR
        assert failed.error_type == "ValueError"
