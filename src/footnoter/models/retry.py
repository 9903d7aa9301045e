"""Retry primitives for model invocations."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from footnoter.config import RetryConfig
from footnoter.exceptions import (
    ModelConnectionError,
    ModelError,
    ModelTimeoutError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for model invocations."""

    max_attempts: int = 6
    base_delay_seconds: float = 1.5
    backoff_factor: float = 1.7
    max_delay_seconds: float = 20.0
    jitter_min: float = 0.2
    jitter_max: float = 0.6

    @classmethod
    def from_retry_config(cls, retry: RetryConfig) -> RetryPolicy:
        max_attempts = max(1, min(10, int(retry.max_attempts or 6)))
        base_delay = max(0.0, float(retry.base_delay_seconds))
        max_delay = max(base_delay, float(retry.max_delay_seconds))
        return cls(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay,
            backoff_factor=max(1.0, float(retry.backoff_factor)),
            max_delay_seconds=max_delay,
        )


def is_retryable_error(error: BaseException) -> bool:
    """Return True when a model invocation error is likely transient.

    Errors with a status are retried only for the transient status set;
    errors without one are retried when they are timeouts or aborted
    connections.
    """
    status = getattr(error, "status", None)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES
    if isinstance(error, (ModelTimeoutError, ModelConnectionError, TimeoutError)):
        return True
    if isinstance(error, ModelError):
        return False
    text = str(error or "").lower()
    return "timeout" in text or "timed out" in text or "abort" in text


async def call_with_backoff(
    invoke: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] | None = None,
    on_failure: Callable[[int, int, BaseException, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Invoke an async model call with exponential backoff plus jitter.

    Non-retryable errors propagate unchanged. When every attempt fails
    with a retryable error, ``RetryExhaustedError`` is raised with the
    last error chained.
    """
    decider = should_retry or is_retryable_error
    attempts = deque(range(1, policy.max_attempts + 1))
    delay = policy.base_delay_seconds
    last_error: BaseException | None = None

    while attempts:
        attempt = attempts.popleft()
        try:
            return await invoke()
        except Exception as error:
            last_error = error
            if not decider(error):
                raise
            if not attempts:
                break
            jitter = random.uniform(policy.jitter_min, policy.jitter_max)
            wait = delay * (1 + jitter)
            if on_failure is not None:
                on_failure(attempt, policy.max_attempts, error, wait)
            logger.warning(
                "API error (attempt %d/%d): %s -> retry in %.1fs",
                attempt, policy.max_attempts, error, wait,
            )
            if wait > 0:
                await sleep(wait)
            delay = min(delay * policy.backoff_factor, policy.max_delay_seconds)

    if last_error is None:
        raise RuntimeError("model retry queue exhausted without attempts")
    raise RetryExhaustedError(policy.max_attempts, last_error) from last_error
