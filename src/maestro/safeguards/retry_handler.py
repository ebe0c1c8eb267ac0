"""Retry budget and backoff for task execution attempts."""

from ..errors import ConfigurationError, is_retryable_error


class RetryHandler:
    """
    Decides whether a failed attempt gets another go, and how long to wait.

    Logic:
    - Backoff: initial_backoff_ms * attempt, capped at max_backoff_ms
    - Errors that signal a routing or planning problem are never retried
    - After max_retries attempts the task goes to recovery
    """

    def __init__(
        self,
        initial_backoff_ms: int = 1000,
        max_backoff_ms: int = 30_000,
        max_retries: int = 3,
    ):
        if max_retries < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {max_retries}")
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.max_retries = max_retries

    def calculate_backoff(self, attempt: int) -> float:
        """
        Seconds to wait after the given (1-based) failed attempt.

        Formula: initial_backoff_ms * attempt, capped at max_backoff_ms
        """
        backoff_ms = self.initial_backoff_ms * max(attempt, 1)
        return min(backoff_ms, self.max_backoff_ms) / 1000

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Check if another attempt is allowed after `attempt` failures."""
        if not is_retryable_error(error):
            return False
        return attempt < self.max_retries
