"""Error taxonomy for clip-qa.

Every failure surfaced to a caller is a ClipQAError subclass carrying an
ErrorCategory, so the CLI can render it uniformly and callers can decide
whether a retry makes sense.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for handling decisions."""

    VALIDATION = "validation"  # Bad input - don't retry
    CONFIGURATION = "configuration"  # Bad config - don't retry
    RESOURCE = "resource"  # Missing record/file - don't retry
    EXTERNAL = "external"  # External tool failure - may retry
    INTERNAL = "internal"  # Storage or programming error - don't retry


class ClipQAError(Exception):
    """Base exception for clip-qa errors.

    Attributes:
        message: Human-readable error message
        category: Error category for handling
        context: Additional context information
        recoverable: Whether retrying may succeed
    """

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        context: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (context: {self.context})"
        return self.message


class NotFoundError(ClipQAError):
    """A record or a referenced file does not exist."""

    category = ErrorCategory.RESOURCE

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class ValidationError(ClipQAError):
    """Input rejected before any state was created.

    Examples: unsupported file extension, unknown review status.
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class ConfigurationError(ClipQAError):
    """Invalid or unreadable configuration."""

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class StorageError(ClipQAError):
    """The record store could not be read or written."""

    category = ErrorCategory.INTERNAL


class AlreadyExistsError(StorageError):
    """A record with the same id is already stored."""


class ProbeError(ClipQAError):
    """Metadata extraction failed or found no usable video stream."""

    category = ErrorCategory.EXTERNAL

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=True)


class ToolError(ClipQAError):
    """The transcode tool exited non-zero or could not be launched.

    Attributes:
        exit_code: Process exit status, None if the tool never started
        diagnostic_output: Captured stderr of the tool
    """

    category = ErrorCategory.EXTERNAL

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        diagnostic_output: str = "",
        context: dict | None = None,
    ):
        super().__init__(message, context, recoverable=True)
        self.exit_code = exit_code
        self.diagnostic_output = diagnostic_output


class JobFailedError(ClipQAError):
    """A clip generation attempt failed and was rolled back.

    The record is left FAILED with last_error set to this message.
    """

    category = ErrorCategory.EXTERNAL

    def __init__(self, message: str, video_id: str, context: dict | None = None):
        super().__init__(message, context, recoverable=True)
        self.video_id = video_id


def format_error_for_display(error: Exception) -> str:
    """Format an error message for user display.

    Args:
        error: Error to format

    Returns:
        Human-readable error message
    """
    if isinstance(error, ClipQAError):
        category = error.category.value
        if error.context:
            context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
            return f"[{category}] {error.message} ({context_str})"
        return f"[{category}] {error.message}"

    return f"[error] {type(error).__name__}: {error}"
