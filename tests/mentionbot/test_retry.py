"""Tests for retry_with_backoff and error classification.

Covers the permanent/transient split, the delay schedule, and that the
last error surfaces once attempts are exhausted.
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings as hyp_settings, strategies as st
from structlog.testing import capture_logs

from src.mentionbot.github.client import GitHubAPIError, NotFoundError, RateLimitError
from src.mentionbot.utils.retry import RetryPolicy, is_permanent_error, retry_with_backoff


def run_async(coro):
    return asyncio.run(coro)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=3.0, backoff_factor=2.0)


class TestClassification:
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_permanent(self, status):
        assert is_permanent_error(GitHubAPIError("x", status_code=status)) is True

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_rate_limit_and_server_errors_are_transient(self, status):
        assert is_permanent_error(GitHubAPIError("x", status_code=status)) is False

    def test_missing_status_is_transient(self):
        assert is_permanent_error(RuntimeError("connection reset")) is False
        assert is_permanent_error(GitHubAPIError("graphql errors")) is False

    def test_error_subclasses_carry_their_status(self):
        assert is_permanent_error(RateLimitError("slow down")) is False
        assert is_permanent_error(NotFoundError("gone")) is True

    @given(status=st.integers(min_value=100, max_value=599))
    def test_only_4xx_except_429_is_permanent(self, status):
        expected = 400 <= status < 500 and status != 429
        assert is_permanent_error(GitHubAPIError("x", status_code=status)) is expected


class TestRetryWithBackoff:
    def test_success_on_first_attempt_does_not_sleep(self):
        sleep = RecordingSleep()
        operation = AsyncMock(return_value="ok")

        result = run_async(retry_with_backoff(operation, POLICY, sleep=sleep))

        assert result == "ok"
        assert operation.await_count == 1
        assert sleep.delays == []

    def test_transient_errors_are_retried_until_success(self):
        sleep = RecordingSleep()
        operation = AsyncMock(
            side_effect=[GitHubAPIError("x", status_code=502), RateLimitError("y"), "done"]
        )

        result = run_async(retry_with_backoff(operation, POLICY, sleep=sleep))

        assert result == "done"
        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.parametrize("status", [400, 403, 404, 422])
    def test_permanent_error_raises_without_retry(self, status):
        sleep = RecordingSleep()
        error = GitHubAPIError("nope", status_code=status)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(retry_with_backoff(operation, POLICY, sleep=sleep))

        assert exc_info.value is error
        assert operation.await_count == 1
        assert sleep.delays == []

    def test_exhaustion_raises_last_error(self):
        sleep = RecordingSleep()
        errors = [GitHubAPIError(f"attempt {i}", status_code=503) for i in range(3)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(retry_with_backoff(operation, POLICY, sleep=sleep))

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_delay_is_capped(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=5, initial_delay=2.0, max_delay=5.0, backoff_factor=3.0)
        operation = AsyncMock(side_effect=RuntimeError("flaky"))

        with pytest.raises(RuntimeError):
            run_async(retry_with_backoff(operation, policy, sleep=sleep))

        assert sleep.delays == [2.0, 5.0, 5.0, 5.0]
        assert sleep.delays == policy.delays()

    def test_zero_attempts_is_rejected(self):
        operation = AsyncMock(return_value="ok")

        with pytest.raises(ValueError):
            run_async(retry_with_backoff(operation, RetryPolicy(max_attempts=0)))

        operation.assert_not_awaited()

    def test_log_levels_separate_transient_and_final_failures(self):
        operation = AsyncMock(side_effect=GitHubAPIError("x", status_code=500))

        with capture_logs() as logs:
            with pytest.raises(GitHubAPIError):
                run_async(retry_with_backoff(operation, POLICY, sleep=RecordingSleep()))

        levels = [entry["log_level"] for entry in logs]
        assert levels == ["warning", "warning", "warning", "error"]
        assert [entry.get("attempt") for entry in logs[:3]] == [1, 2, 3]

    def test_permanent_error_logged_at_error(self):
        operation = AsyncMock(side_effect=GitHubAPIError("x", status_code=404))

        with capture_logs() as logs:
            with pytest.raises(GitHubAPIError):
                run_async(retry_with_backoff(operation, POLICY, sleep=RecordingSleep()))

        assert [entry["log_level"] for entry in logs] == ["error"]
        assert logs[0]["status_code"] == 404


class TestRetryPolicyProperties:
    @given(
        attempts=st.integers(min_value=1, max_value=8),
        initial=st.floats(min_value=0, max_value=10),
        cap=st.floats(min_value=0, max_value=30),
        factor=st.floats(min_value=1, max_value=4),
    )
    @hyp_settings(max_examples=50)
    def test_schedule_length_and_cap(self, attempts, initial, cap, factor):
        policy = RetryPolicy(
            max_attempts=attempts, initial_delay=initial, max_delay=cap, backoff_factor=factor
        )

        delays = policy.delays()

        assert len(delays) == attempts - 1
        assert all(d <= max(initial, cap) for d in delays)
        assert all(d <= cap for d in delays[1:])
