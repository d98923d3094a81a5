"""
Logging Configuration Module.

This module provides centralized logging configuration for the AgentDesk-AI
orchestration core. The host process calls ``setup_logging`` once at start-up;
library modules only ever call ``logging.getLogger(__name__)``.

Features:
- Configurable log levels per module
- Console and optional file logging
- Simple, detailed or JSON-like line formats
"""

import logging
from pathlib import Path
from typing import Optional

# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

LOG_FILE_NAME = "agentdesk_ai.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    # Core modules
    "agentdesk_ai.agent_core": "DEBUG",
    "agentdesk_ai.agent_core.runtime": "DEBUG",
    "agentdesk_ai.agent_core.planning": "DEBUG",
    "agentdesk_ai.memory": "INFO",
    "agentdesk_ai.tools": "DEBUG",
    "agentdesk_ai.sandbox": "DEBUG",
    "agentdesk_ai.mcp": "DEBUG",
    "agentdesk_ai.supervisor": "DEBUG",
    # Host command surface
    "agentdesk_ai.server": "INFO",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "aiosqlite": "WARNING",
    "httpx": "WARNING",
    "mcp": "WARNING",
    "asyncio": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}


def _format_string(log_format: str) -> str:
    if log_format == "json":
        return JSON_FORMAT
    if log_format == "simple":
        return SIMPLE_FORMAT
    return DETAILED_FORMAT


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file_dir: Optional[Path] = None,
) -> None:
    """
    Configure logging for the host process.

    Args:
        log_level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to INFO.
        log_format: Line format (simple, detailed, json). Defaults to detailed.
        log_file_dir: When given, also log DEBUG and above into ``<dir>/agentdesk_ai.log``.
    """
    level = (log_level or "INFO").upper()
    fmt = log_format or "detailed"

    formatter = logging.Formatter(_format_string(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # filter at handler level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file_dir is not None:
        Path(log_file_dir).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(log_file_dir) / LOG_FILE_NAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(
        "Logging configured: level=%s, format=%s, file_logging=%s", level, fmt, log_file_dir is not None
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
