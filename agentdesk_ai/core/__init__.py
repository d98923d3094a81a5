"""
Core utilities and configuration for AgentDesk-AI.

This package provides the settings model, logging configuration and the
error taxonomy shared by every component.
"""

from agentdesk_ai.core.config import AgentDeskSettings, get_settings
from agentdesk_ai.core.errors import AgentDeskError, ErrorKind
from agentdesk_ai.core.logging_config import get_logger, setup_logging

__all__ = [
    "AgentDeskError",
    "AgentDeskSettings",
    "ErrorKind",
    "get_logger",
    "get_settings",
    "setup_logging",
]
