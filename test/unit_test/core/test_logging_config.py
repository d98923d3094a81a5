"""Unit tests for logging configuration module.

Tests verify that ``setup_logging`` configures the console handler level, the
line format, optional file logging and the per-module levels.
"""

import logging
from pathlib import Path

import pytest

from agentdesk_ai.core.logging_config import (
    DETAILED_FORMAT,
    JSON_FORMAT,
    LOG_FILE_NAME,
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


class TestSetupLogging:
    @pytest.mark.parametrize(
        "log_level,expected_level",
        [
            ("DEBUG", logging.DEBUG),
            ("INFO", logging.INFO),
            ("WARNING", logging.WARNING),
            ("error", logging.ERROR),
        ],
    )
    def test_console_level(self, log_level, expected_level):
        setup_logging(log_level=log_level)

        assert _console_handler().level == expected_level
        assert logging.getLogger().level == logging.DEBUG

    def test_defaults(self):
        setup_logging()

        handler = _console_handler()
        assert handler.level == logging.INFO
        assert handler.formatter._fmt == DETAILED_FORMAT

    @pytest.mark.parametrize(
        "log_format,expected",
        [("simple", SIMPLE_FORMAT), ("json", JSON_FORMAT), ("detailed", DETAILED_FORMAT)],
    )
    def test_formats(self, log_format, expected):
        setup_logging(log_format=log_format)

        assert _console_handler().formatter._fmt == expected

    def test_file_logging(self, tmp_path: Path):
        log_dir = tmp_path / "logs"
        setup_logging(log_file_dir=log_dir)

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG
        assert (log_dir / LOG_FILE_NAME).exists()
        for h in file_handlers:
            h.close()
            logging.getLogger().removeHandler(h)

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging()
        setup_logging()

        stream_handlers = [h for h in logging.getLogger().handlers if type(h) is logging.StreamHandler]
        assert len(stream_handlers) == 1

    def test_module_levels(self):
        setup_logging()

        for module_name, level in MODULE_LOG_LEVELS.items():
            assert logging.getLogger(module_name).level == logging.getLevelName(level)


def test_get_logger():
    logger = get_logger("agentdesk_ai.test")
    assert logger.name == "agentdesk_ai.test"
