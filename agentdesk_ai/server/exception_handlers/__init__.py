"""
Exception handlers for the AgentDesk-AI command surface.

This package maps domain errors to HTTP responses and logs anything else as
an unhandled server error.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
