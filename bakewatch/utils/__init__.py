"""Utilities module for bakewatch."""

from .logging_config import setup_logging, get_logger, LoggingConfig, Timer
from .exceptions import (
    ErrorCode,
    BakewatchError,
    ConfigurationError,
    WatchSetupError,
    EventSourceClosedError,
    RebuildError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "Timer",
    "ErrorCode",
    "BakewatchError",
    "ConfigurationError",
    "WatchSetupError",
    "EventSourceClosedError",
    "RebuildError",
]
