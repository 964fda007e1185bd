"""
Logging Configuration
=====================

Provides console and JSON logging for the watcher and rebuild loop.
Supports both console and file output with configurable log levels.
"""

import logging
import logging.handlers
import json
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field


LOGGER_NAME = "bakewatch"


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via ``extra=``
        if hasattr(record, 'root'):
            log_data["root"] = str(record.root)
        if hasattr(record, 'operation'):
            log_data["operation"] = record.operation
        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable colored console formatter."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format with colors for console output."""
        color = self.COLORS.get(record.levelname, '') if self.use_colors else ''
        reset = self.RESET if self.use_colors else ''
        timestamp = datetime.now().strftime('%H:%M:%S')

        msg = f"{color}[{timestamp}] {record.levelname:8}{reset} "
        msg += f"[{record.threadName}] "
        msg += f"{record.name}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


@dataclass
class LoggingConfig:
    """Configuration for the logging system."""
    level: str = "INFO"
    log_dir: Optional[Path] = None
    console_output: bool = True
    json_format: bool = False  # Use JSON for console
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    stream: object = field(default=None, repr=False)


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Set up the logging system.

    Args:
        config: Logging configuration. Uses defaults if not provided.

    Returns:
        The configured package logger.
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger(LOGGER_NAME)
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Remove existing handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if config.console_output:
        stream = config.stream or sys.stderr
        console_handler = logging.StreamHandler(stream)
        if config.json_format:
            console_handler.setFormatter(JSONFormatter())
        else:
            is_tty = hasattr(stream, "isatty") and stream.isatty()
            console_handler.setFormatter(ConsoleFormatter(use_colors=is_tty))
        root_logger.addHandler(console_handler)

    # File output is opt-in; the watcher is usually a foreground dev tool
    if config.log_dir is not None:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / "bakewatch.log"

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    root_logger.propagate = False
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Name of the module (typically __name__).

    Returns:
        Logger instance below the ``bakewatch`` logger.
    """
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class Timer:
    """Context manager for timing operations and logging duration."""

    def __init__(self, logger: logging.Logger, operation: str):
        """Initialize timer.

        Args:
            logger: Logger to log the duration to.
            operation: Name of the operation being timed.
        """
        self.logger = logger
        self.operation = operation
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        """Start the timer."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop the timer and log the duration."""
        self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        self.logger.info(
            f"Operation completed: {self.operation} ({self.duration_ms:.0f} ms)",
            extra={"operation": self.operation, "duration_ms": self.duration_ms},
        )
        return False
