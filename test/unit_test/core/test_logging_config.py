"""Unit tests for logging configuration module.

Tests verify that the logging configuration functions work correctly with different
log levels, formats and the optional file handler.
"""

import logging
from pathlib import Path

import pytest

from studio_copilot.core.logging_config import (
    DETAILED_FORMAT,
    JSON_FORMAT,
    MODULE_LOG_LEVELS,
    SIMPLE_FORMAT,
    get_logger,
    setup_logging,
)


def _console_handler() -> logging.Handler:
    root_logger = logging.getLogger()
    handler = next(
        (h for h in root_logger.handlers if type(h) is logging.StreamHandler),
        None,
    )
    assert handler is not None
    return handler


class TestSetupLoggingLogLevels:
    """Test setup_logging with different log levels."""

    @pytest.mark.parametrize(
        "log_level,expected_level",
        [
            ("DEBUG", logging.DEBUG),
            ("INFO", logging.INFO),
            ("WARNING", logging.WARNING),
            ("ERROR", logging.ERROR),
            ("CRITICAL", logging.CRITICAL),
            ("debug", logging.DEBUG),  # Test lowercase
        ],
    )
    def test_setup_logging_with_different_levels(self, log_level, expected_level):
        setup_logging(log_level=log_level, enable_file=False)
        assert _console_handler().level == expected_level

    def test_root_logger_captures_everything(self):
        setup_logging(log_level="ERROR", enable_file=False)
        assert logging.getLogger().level == logging.DEBUG

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging(enable_file=False)
        setup_logging(enable_file=False)
        stream_handlers = [h for h in logging.getLogger().handlers if type(h) is logging.StreamHandler]
        assert len(stream_handlers) == 1


class TestSetupLoggingFormats:
    @pytest.mark.parametrize(
        "fmt,expected",
        [("simple", SIMPLE_FORMAT), ("detailed", DETAILED_FORMAT), ("json", JSON_FORMAT), ("unknown", DETAILED_FORMAT)],
    )
    def test_format_selection(self, fmt, expected):
        setup_logging(log_format=fmt, enable_file=False)
        assert _console_handler().formatter._fmt == expected


class TestFileLogging:
    def test_file_handler_created_in_configured_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        from studio_copilot.server.core.config import settings

        monkeypatch.setattr(settings, "log_file_dir", str(tmp_path / "logs"))
        setup_logging(enable_file=True)
        try:
            file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
            assert len(file_handlers) == 1
            assert Path(file_handlers[0].baseFilename).parent == tmp_path / "logs"
            assert file_handlers[0].level == logging.DEBUG
        finally:
            for handler in file_handlers:
                handler.close()
            setup_logging(enable_file=False)


class TestModuleLevels:
    def test_module_levels_applied(self):
        setup_logging(enable_file=False)
        for module_name, level in MODULE_LOG_LEVELS.items():
            assert logging.getLogger(module_name).level == logging.getLevelName(level)

    def test_get_logger_returns_named_logger(self):
        logger = get_logger("studio_copilot.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "studio_copilot.test"
