"""
Unit tests for logging configuration.
"""

import io
import json
import logging

import pytest

from bakewatch.utils.logging_config import (
    LOGGER_NAME,
    ConsoleFormatter,
    JSONFormatter,
    LoggingConfig,
    Timer,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


def make_record(message, **extra):
    record = logging.LogRecord(
        "bakewatch.test", logging.WARNING, __file__, 1, message, None, None
    )
    record.__dict__.update(extra)
    return record


class TestFormatters:
    """Tests for the log formatters."""

    def test_json_fields(self):
        record = make_record("Watch closed", root="/site", operation="rebuild")

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "bakewatch.test"
        assert data["message"] == "Watch closed"
        assert data["root"] == "/site"
        assert data["operation"] == "rebuild"
        assert "duration_ms" not in data

    def test_console_without_colors(self):
        text = ConsoleFormatter(use_colors=False).format(make_record("hello"))

        assert "\033[" not in text
        assert "WARNING" in text
        assert text.endswith("bakewatch.test: hello")


class TestSetupLogging:
    """Tests for setup_logging and get_logger."""

    def test_console_output(self):
        stream = io.StringIO()
        setup_logging(LoggingConfig(level="DEBUG", stream=stream))

        get_logger("monitoring").debug("polling")

        assert "bakewatch.monitoring: polling" in stream.getvalue()

    def test_json_output(self):
        stream = io.StringIO()
        setup_logging(LoggingConfig(json_format=True, stream=stream))

        get_logger("main").info("started")

        assert json.loads(stream.getvalue())["message"] == "started"

    def test_level_filters(self):
        stream = io.StringIO()
        setup_logging(LoggingConfig(level="WARNING", stream=stream))

        get_logger("main").info("quiet")

        assert stream.getvalue() == ""

    def test_file_output(self, tmp_path):
        setup_logging(LoggingConfig(log_dir=tmp_path, console_output=False))

        get_logger("main").warning("to file")
        for handler in logging.getLogger(LOGGER_NAME).handlers:
            handler.flush()

        line = (tmp_path / "bakewatch.log").read_text().strip()
        assert json.loads(line)["message"] == "to file"

    def test_get_logger_names(self):
        assert get_logger("bakewatch.rebuild").name == "bakewatch.rebuild"
        assert get_logger("custom").name == "bakewatch.custom"


class TestTimer:
    """Tests for the Timer context manager."""

    def test_records_duration(self):
        stream = io.StringIO()
        logger = setup_logging(LoggingConfig(json_format=True, stream=stream))

        with Timer(logger, "rebuild") as timer:
            pass

        data = json.loads(stream.getvalue())
        assert timer.duration_ms >= 0
        assert data["operation"] == "rebuild"
        assert data["duration_ms"] == timer.duration_ms
