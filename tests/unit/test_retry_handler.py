"""Tests for retry handler: verifies non-retryable error handling and backoff logic."""

import pytest

from maestro.errors import (
    AgentStuckError,
    ConfigurationError,
    DeadlockError,
    ExecutionError,
    HandoffCycleLimitError,
    NoConfidentAgentError,
    TaskTimeoutError,
)
from maestro.safeguards.retry_handler import RetryHandler


class TestShouldRetry:
    def test_generic_error_retried_within_budget(self):
        handler = RetryHandler(max_retries=3)

        assert handler.should_retry(RuntimeError("flaky"), 1) is True
        assert handler.should_retry(RuntimeError("flaky"), 2) is True

    def test_budget_exhausted(self):
        handler = RetryHandler(max_retries=3)

        assert handler.should_retry(RuntimeError("flaky"), 3) is False

    def test_single_attempt_budget_never_retries(self):
        handler = RetryHandler(max_retries=1)

        assert handler.should_retry(RuntimeError("flaky"), 1) is False

    def test_timeouts_and_stuck_agents_are_retried(self):
        handler = RetryHandler(max_retries=3)

        assert handler.should_retry(TaskTimeoutError("t", 100), 1) is True
        assert handler.should_retry(AgentStuckError("a", "implementer", 200, 100), 1) is True
        assert handler.should_retry(ExecutionError("boom", "a", "implementer"), 1) is True

    @pytest.mark.parametrize("error", [
        NoConfidentAgentError("t", [("a", 0.2)], 0.6),
        HandoffCycleLimitError("t", 3, 3, []),
        DeadlockError(["t"]),
    ])
    def test_routing_and_planning_errors_not_retried(self, error):
        handler = RetryHandler(max_retries=5)

        assert handler.should_retry(error, 1) is False


class TestBackoff:
    def test_backoff_grows_linearly(self):
        handler = RetryHandler(initial_backoff_ms=1000)

        assert handler.calculate_backoff(1) == 1.0
        assert handler.calculate_backoff(2) == 2.0
        assert handler.calculate_backoff(3) == 3.0

    def test_backoff_capped(self):
        handler = RetryHandler(initial_backoff_ms=10_000, max_backoff_ms=25_000)

        assert handler.calculate_backoff(5) == 25.0

    def test_zero_backoff(self):
        handler = RetryHandler(initial_backoff_ms=0)

        assert handler.calculate_backoff(3) == 0.0


def test_rejects_empty_budget():
    with pytest.raises(ConfigurationError):
        RetryHandler(max_retries=0)
