"""
Custom Exceptions
=================

Defines the exception classes raised by bakewatch.
All exceptions include error codes for programmatic handling.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error codes for programmatic error handling."""

    # General errors (1000-1099)
    UNKNOWN_ERROR = 1000
    CONFIGURATION_ERROR = 1001

    # Watch errors (1100-1199)
    WATCH_SETUP_FAILED = 1100
    WATCH_PATH_NOT_FOUND = 1101
    WATCH_SOURCE_CLOSED = 1102

    # Rebuild errors (1200-1299)
    REBUILD_FAILED = 1200
    REBUILD_LAUNCH_FAILED = 1201


class BakewatchError(Exception):
    """Base exception for all bakewatch errors.

    Attributes:
        message: Human-readable error message.
        error_code: Programmatic error code.
        details: Additional error context.
        cause: Original exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return a formatted error string."""
        result = f"[{self.error_code.name}] {self.message}"
        if self.details:
            result += f" | Details: {self.details}"
        if self.cause:
            result += f" | Caused by: {type(self.cause).__name__}: {self.cause}"
        return result

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(BakewatchError):
    """Raised when there's a configuration problem.

    Examples:
        - Invalid configuration file format
        - Non-positive poll or debounce interval
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            **kwargs
        )


class WatchSetupError(BakewatchError):
    """Raised when a directory cannot be registered for watching.

    Examples:
        - Path does not exist or is not a directory
        - Permission denied
        - OS watch limit reached (inotify instances/watches)
    """

    def __init__(
        self,
        message: str,
        root: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.WATCH_SETUP_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if root:
            details["root"] = root
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )


class EventSourceClosedError(BakewatchError):
    """Raised when draining an event source that no longer produces events.

    Callers treat this as "this root stopped", never as fatal.
    """

    def __init__(self, message: str, root: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if root:
            details["root"] = root
        super().__init__(
            message,
            error_code=ErrorCode.WATCH_SOURCE_CLOSED,
            details=details,
            **kwargs
        )


class RebuildError(BakewatchError):
    """Raised when the rebuild command fails and the caller asked to check it."""

    def __init__(
        self,
        message: str,
        command: Optional[list] = None,
        returncode: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.REBUILD_FAILED,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if command:
            details["command"] = " ".join(command)
        if returncode is not None:
            details["returncode"] = returncode
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            **kwargs
        )
