"""Transport retry for backend calls.

A backend call that fails in transit (connection refused, timeout,
rate limit) is retried with exponential backoff before the failure is
allowed to abort the session. An empty-but-successful reply is not a
transport failure; that is the recovery engine's business.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from kestrel.config import ExecutionConfig
from kestrel.models.base import ModelConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ModelRetryPolicy:
    """Retry policy for backend calls."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    jitter_seconds: float = 0.25

    @classmethod
    def from_execution_config(cls, execution: ExecutionConfig) -> ModelRetryPolicy:
        max_attempts = max(1, min(10, int(execution.model_call_max_attempts or 1)))
        base_delay = max(0.0, float(execution.model_call_retry_base_delay_seconds))
        max_delay = max(base_delay, float(execution.model_call_retry_max_delay_seconds))
        return cls(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay,
            max_delay_seconds=max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        delay = min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))
        if self.jitter_seconds > 0:
            delay += random.uniform(0.0, self.jitter_seconds)
        return delay


def is_retryable_model_error(error: BaseException) -> bool:
    """Return True when a backend error is likely transient."""
    if isinstance(error, ModelConnectionError):
        return True

    text = str(error or "").strip().lower()
    if not text:
        return False

    retry_markers = (
        "connection",
        "connect",
        "timeout",
        "timed out",
        "rate limit",
        "too many requests",
        "temporar",
        "unavailable",
    )
    return any(marker in text for marker in retry_markers)


def log_model_failure(attempt: int, max_attempts: int, error: BaseException, remaining: int) -> None:
    if remaining:
        logger.warning(
            "Backend call failed (attempt %d/%d), retrying: %s",
            attempt, max_attempts, error,
        )
    else:
        logger.error("Backend call failed (attempt %d/%d): %s", attempt, max_attempts, error)


async def call_with_model_retry(
    invoke: Callable[[], Awaitable[T]],
    *,
    policy: ModelRetryPolicy,
    should_retry: Callable[[BaseException], bool] | None = None,
    on_failure: Callable[[int, int, BaseException, int], None] | None = None,
) -> T:
    """Invoke an async backend call with a queued retry policy."""
    decider = should_retry or _retry_all_failures
    attempts = deque(range(1, policy.max_attempts + 1))
    last_error: BaseException | None = None

    while attempts:
        attempt = attempts.popleft()
        try:
            return await invoke()
        except Exception as error:
            last_error = error
            remaining = len(attempts)
            retryable = decider(error)
            if on_failure is not None:
                on_failure(attempt, policy.max_attempts, error, remaining if retryable else 0)
            if not retryable or remaining <= 0:
                raise
            delay = policy.delay_for(attempt)
            if delay > 0:
                await asyncio.sleep(delay)

    if last_error is not None:
        raise last_error
    raise RuntimeError("model retry queue exhausted without attempts")


def _retry_all_failures(error: BaseException) -> bool:
    """Default retry policy: retry any failure except cancellations."""
    return not isinstance(error, (asyncio.CancelledError, KeyboardInterrupt, SystemExit))
