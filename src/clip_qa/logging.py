"""Structured logging for clip-qa.

Provides configurable logging with:
- Multiple verbosity levels
- Structured log output (text or JSON)
- Per-run log files
- Bounded records of external tool invocations
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any

# Characters of tool stderr kept per logged invocation
DIAGNOSTIC_TAIL_CHARS = 500

# LogRecord attributes that are not user supplied context
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


class LogLevel(IntEnum):
    """Log verbosity levels."""

    QUIET = 0  # Only errors
    NORMAL = 1  # Errors + warnings
    VERBOSE = 2  # Errors + warnings + info
    DEBUG = 3  # Everything including debug


@dataclass
class LogConfig:
    """Configuration for logging.

    Attributes:
        level: Console verbosity level
        log_dir: Directory for per-run log files (None disables file logging)
        log_file: Explicit log file path, overrides log_dir
        json_format: Use JSON format for logs
        include_timestamp: Include timestamp in console logs
        color: Use colored output (console only)
    """

    level: LogLevel = LogLevel.NORMAL
    log_dir: Path | None = None
    log_file: Path | None = None
    json_format: bool = False
    include_timestamp: bool = True
    color: bool = True


class Colors:
    """ANSI color codes."""

    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def _extract_context(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the ``extra=`` fields attached to a record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS
    }


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured log records.

    Supports both text and JSON formats with optional coloring.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.RED,
    }

    def __init__(
        self,
        json_format: bool = False,
        include_timestamp: bool = True,
        color: bool = True,
    ):
        super().__init__()
        self.json_format = json_format
        self.include_timestamp = include_timestamp
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record."""
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_json(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if self.include_timestamp:
            data["timestamp"] = datetime.fromtimestamp(record.created).isoformat()

        context = {}
        for key, value in _extract_context(record).items():
            try:
                json.dumps(value)
                context[key] = value
            except (TypeError, ValueError):
                context[key] = str(value)
        if context:
            data["context"] = context

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data)

    def _format_text(self, record: logging.LogRecord) -> str:
        parts = []

        if self.include_timestamp:
            timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
            parts.append(self._paint(timestamp, Colors.GRAY))

        level = record.levelname.upper()[:5].ljust(5)
        parts.append(self._paint(level, self.LEVEL_COLORS.get(record.levelno, Colors.RESET)))

        name = record.name
        if len(name) > 20:
            name = "..." + name[-17:]
        parts.append(self._paint(f"{name:>20}", Colors.CYAN))

        parts.append(record.getMessage())
        result = " | ".join(parts)

        context = _extract_context(record)
        if context:
            context_str = " ".join(f"{k}={v}" for k, v in context.items())
            result += " " + self._paint(f"[{context_str}]", Colors.GRAY)

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result

    def _paint(self, text: str, color: str) -> str:
        if self.color:
            return f"{color}{text}{Colors.RESET}"
        return text


_config: LogConfig = LogConfig()
_initialized: bool = False
_active_log_file: Path | None = None

ROOT_LOGGER_NAME = "clip_qa"


def _resolve_log_file(config: LogConfig) -> Path | None:
    if config.log_file is not None:
        return config.log_file
    if config.log_dir is not None:
        # One file per process run, e.g. app-2024-05-01T10-20-30.log
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        return config.log_dir / f"app-{timestamp}.log"
    return None


def configure_logging(config: LogConfig | None = None) -> Path | None:
    """Configure the clip_qa logger hierarchy.

    Args:
        config: Logging configuration

    Returns:
        Path of the log file in use, if file logging is enabled
    """
    global _config, _initialized, _active_log_file

    if config:
        _config = config

    level_map = {
        LogLevel.QUIET: logging.ERROR,
        LogLevel.NORMAL: logging.WARNING,
        LogLevel.VERBOSE: logging.INFO,
        LogLevel.DEBUG: logging.DEBUG,
    }
    console_level = level_map[_config.level]

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    _close_handlers(root_logger)
    root_logger.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        StructuredFormatter(
            json_format=_config.json_format,
            include_timestamp=_config.include_timestamp,
            color=_config.color and sys.stderr.isatty(),
        )
    )
    root_logger.addHandler(console_handler)

    _active_log_file = _resolve_log_file(_config)
    if _active_log_file is not None:
        _active_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(_active_log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_handler.setFormatter(
            StructuredFormatter(
                json_format=_config.json_format,
                include_timestamp=True,
                color=False,
            )
        )
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(console_level)

    _initialized = True
    return _active_log_file


def _close_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)


def shutdown_logging() -> None:
    """Flush and close all clip_qa log handlers.

    Called once at process exit. A later get_logger() call reconfigures
    with the last used settings.
    """
    global _initialized, _active_log_file

    _close_handlers(logging.getLogger(ROOT_LOGGER_NAME))
    _initialized = False
    _active_log_file = None


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger inside the clip_qa hierarchy
    """
    if not _initialized:
        configure_logging()
    return logging.getLogger(name)


def get_active_log_file() -> Path | None:
    """Return the log file of the current run, if any."""
    return _active_log_file


def diagnostic_tail(text: str | None, limit: int = DIAGNOSTIC_TAIL_CHARS) -> str:
    """Return the last ``limit`` characters of a diagnostic stream."""
    if not text:
        return ""
    return text[-limit:]


def log_tool_invocation(
    logger: logging.Logger,
    operation: str,
    command: list[str],
    exit_code: int | None,
    stderr: str | None,
    **context: Any,
) -> None:
    """Record one external tool invocation.

    Args:
        logger: Logger to use
        operation: Short operation name (e.g. "segment", "probe")
        command: Full argument list including the executable
        exit_code: Process exit status (None when the tool failed to launch)
        stderr: Diagnostic stream, truncated to its tail
        **context: Additional context
    """
    context.update(
        {
            "command": " ".join(command),
            "exit_code": exit_code,
            "stderr_tail": diagnostic_tail(stderr),
        }
    )
    level = logging.DEBUG if exit_code == 0 else logging.ERROR
    logger.log(level, f"Tool invocation: {operation}", extra=context)


def log_operation_start(logger: logging.Logger, operation: str, **context: Any) -> None:
    """Log the start of an operation."""
    logger.info(f"Starting: {operation}", extra=context)


def log_operation_complete(
    logger: logging.Logger,
    operation: str,
    duration: float | None = None,
    **context: Any,
) -> None:
    """Log the completion of an operation.

    Args:
        logger: Logger to use
        operation: Operation name
        duration: Optional duration in seconds
        **context: Additional context
    """
    if duration is not None:
        context["duration_seconds"] = round(duration, 2)
    logger.info(f"Completed: {operation}", extra=context)


def log_operation_failed(
    logger: logging.Logger,
    operation: str,
    error: Exception,
    **context: Any,
) -> None:
    """Log a failed operation."""
    context["error_type"] = type(error).__name__
    context["error_message"] = str(error)
    logger.error(f"Failed: {operation}", extra=context)
