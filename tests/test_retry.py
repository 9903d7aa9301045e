"""Tests for model invocation retry utilities."""

from __future__ import annotations

import pytest

from footnoter.config import RetryConfig
from footnoter.exceptions import (
    ModelAPIError,
    ModelConnectionError,
    ModelTimeoutError,
    RetryExhaustedError,
)
from footnoter.models.retry import RetryPolicy, call_with_backoff, is_retryable_error

ZERO_DELAY = RetryPolicy(
    max_attempts=4,
    base_delay_seconds=0.0,
    max_delay_seconds=0.0,
    jitter_min=0.0,
    jitter_max=0.0,
)


class TestIsRetryableError:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert is_retryable_error(ModelAPIError("x", status=status))

    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    def test_client_errors_are_fatal(self, status):
        assert not is_retryable_error(ModelAPIError("x", status=status))

    def test_timeouts_and_connection_errors(self):
        assert is_retryable_error(ModelTimeoutError("slow"))
        assert is_retryable_error(ModelConnectionError("reset"))
        assert is_retryable_error(TimeoutError())

    def test_message_heuristic_for_foreign_errors(self):
        assert is_retryable_error(RuntimeError("request timed out"))
        assert is_retryable_error(RuntimeError("operation was aborted"))
        assert not is_retryable_error(ValueError("bad input"))

    def test_model_error_without_status(self):
        assert not is_retryable_error(ModelAPIError("malformed"))


class TestCallWithBackoff:
    async def test_retries_failures_until_success(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            if calls["count"] < 3:
                raise ModelAPIError("busy", status=503)
            return "ok"

        result = await call_with_backoff(invoke, policy=ZERO_DELAY)

        assert result == "ok"
        assert calls["count"] == 3

    async def test_exhaustion_raises_retry_exhausted(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            raise ModelTimeoutError("slow")

        with pytest.raises(RetryExhaustedError, match="Exceeded max retries") as exc_info:
            await call_with_backoff(invoke, policy=ZERO_DELAY)

        assert calls["count"] == 4
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_error, ModelTimeoutError)
        assert exc_info.value.__cause__ is exc_info.value.last_error

    async def test_non_retryable_propagates_immediately(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            raise ModelAPIError("unauthorized", status=401)

        with pytest.raises(ModelAPIError, match="unauthorized"):
            await call_with_backoff(invoke, policy=ZERO_DELAY)
        assert calls["count"] == 1

    async def test_custom_should_retry(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            raise ValueError("retry me")

        with pytest.raises(RetryExhaustedError):
            await call_with_backoff(invoke, policy=ZERO_DELAY, should_retry=lambda e: True)
        assert calls["count"] == 4

    async def test_backoff_delays_grow_and_cap(self):
        waits: list[float] = []

        async def fake_sleep(delay: float) -> None:
            waits.append(delay)

        async def invoke():
            raise ModelTimeoutError("slow")

        policy = RetryPolicy(
            max_attempts=5,
            base_delay_seconds=1.0,
            backoff_factor=2.0,
            max_delay_seconds=3.0,
            jitter_min=0.0,
            jitter_max=0.0,
        )
        with pytest.raises(RetryExhaustedError):
            await call_with_backoff(invoke, policy=policy, sleep=fake_sleep)
        assert waits == [1.0, 2.0, 3.0, 3.0]

    async def test_jitter_scales_delay(self):
        waits: list[float] = []

        async def fake_sleep(delay: float) -> None:
            waits.append(delay)

        async def invoke():
            raise ModelTimeoutError("slow")

        policy = RetryPolicy(max_attempts=2, base_delay_seconds=10.0, max_delay_seconds=20.0)
        with pytest.raises(RetryExhaustedError):
            await call_with_backoff(invoke, policy=policy, sleep=fake_sleep)
        assert len(waits) == 1
        assert 12.0 <= waits[0] <= 16.0

    async def test_on_failure_callback(self):
        failures = []

        async def invoke():
            if not failures:
                raise ModelConnectionError("reset")
            return "ok"

        result = await call_with_backoff(
            invoke,
            policy=ZERO_DELAY,
            on_failure=lambda attempt, total, err, wait: failures.append((attempt, total, str(err))),
        )
        assert result == "ok"
        assert failures == [(1, 4, "reset")]


class TestRetryPolicy:
    def test_from_retry_config(self):
        policy = RetryPolicy.from_retry_config(RetryConfig())
        assert policy.max_attempts == 6
        assert policy.base_delay_seconds == 1.5
        assert policy.backoff_factor == 1.7
        assert policy.max_delay_seconds == 20.0

    def test_from_retry_config_clamps(self):
        policy = RetryPolicy.from_retry_config(
            RetryConfig(max_attempts=50, base_delay_seconds=5.0, max_delay_seconds=1.0),
        )
        assert policy.max_attempts == 10
        assert policy.max_delay_seconds == 5.0
