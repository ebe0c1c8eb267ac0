"""Logging helpers for failures that must not stop the scheduler."""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def log_and_ignore(
    error: Exception,
    message: str,
    *,
    logger_instance: Optional[logging.Logger] = None,
    level: int = logging.WARNING,
) -> None:
    """Record a non-fatal error (e.g. a misbehaving event listener) and carry on."""
    (logger_instance or logger).log(level, f"{message}: {error}")


class ErrorContext:
    """
    Wraps a block so its ``Exception`` is logged and optionally suppressed.

    The watchdog tick runs inside one of these with ``raise_on_error=False``
    so a single bad check does not end the periodic task:

        with ErrorContext("watchdog stuck check", raise_on_error=False) as ctx:
            watchdog.check_for_stuck_agents()
        if ctx.error: ...
    """

    def __init__(
        self,
        operation: str,
        *,
        raise_on_error: bool = True,
        default_value: Any = None,
        logger_instance: Optional[logging.Logger] = None,
        log_level: int = logging.ERROR,
    ):
        self.operation = operation
        self.raise_on_error = raise_on_error
        self.default_value = default_value
        self.logger = logger_instance or logger
        self.log_level = log_level
        self.error: Optional[Exception] = None

    def __enter__(self) -> "ErrorContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        # CancelledError and other BaseExceptions always propagate
        if exc_type is None or not issubclass(exc_type, Exception):
            return False

        self.error = exc_val
        self.logger.log(self.log_level, f"Error during {self.operation}: {exc_val}")
        return not self.raise_on_error

    def get_result(self, result: Any = None) -> Any:
        """``result`` if the block succeeded, otherwise ``default_value``."""
        return self.default_value if self.error is not None else result
