"""Shared utilities."""

from .error_handling import ErrorContext, log_and_ignore
from .rich_logging import ContextLogger, OrchestratorLogFormatter, setup_rich_logging

__all__ = [
    "ContextLogger",
    "ErrorContext",
    "OrchestratorLogFormatter",
    "log_and_ignore",
    "setup_rich_logging",
]
