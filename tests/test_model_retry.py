"""Tests for backend transport retry utilities."""

from __future__ import annotations

import pytest

from kestrel.config import ExecutionConfig
from kestrel.models.base import ModelConnectionError
from kestrel.models.retry import (
    ModelRetryPolicy,
    call_with_model_retry,
    is_retryable_model_error,
)

INSTANT = dict(base_delay_seconds=0.0, max_delay_seconds=0.0, jitter_seconds=0.0)


class TestModelRetry:
    @pytest.mark.asyncio
    async def test_retries_failures_until_success(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            if calls["count"] < 3:
                raise RuntimeError("synthetic failure")
            return "ok"

        result = await call_with_model_retry(
            invoke, policy=ModelRetryPolicy(max_attempts=5, **INSTANT),
        )

        assert result == "ok"
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_exhausts_retry_queue_and_raises_last_error(self):
        calls = {"count": 0}

        async def invoke():
            calls["count"] += 1
            raise ValueError("always fails")

        with pytest.raises(ValueError, match="always fails"):
            await call_with_model_retry(
                invoke, policy=ModelRetryPolicy(max_attempts=4, **INSTANT),
            )

        assert calls["count"] == 4

    @pytest.mark.asyncio
    async def test_custom_should_retry_can_stop_immediately(self):
        calls = {"count": 0}
        failures: list[tuple[int, int]] = []

        async def invoke():
            calls["count"] += 1
            raise RuntimeError("do not retry")

        with pytest.raises(RuntimeError, match="do not retry"):
            await call_with_model_retry(
                invoke,
                policy=ModelRetryPolicy(max_attempts=6, **INSTANT),
                should_retry=lambda _error: False,
                on_failure=lambda attempt, total, error, remaining: failures.append(
                    (attempt, remaining),
                ),
            )

        assert calls["count"] == 1
        assert failures == [(1, 0)]

    @pytest.mark.asyncio
    async def test_on_failure_reports_remaining_attempts(self):
        failures: list[int] = []

        async def invoke():
            raise ModelConnectionError("refused")

        with pytest.raises(ModelConnectionError):
            await call_with_model_retry(
                invoke,
                policy=ModelRetryPolicy(max_attempts=3, **INSTANT),
                should_retry=is_retryable_model_error,
                on_failure=lambda attempt, total, error, remaining: failures.append(remaining),
            )

        assert failures == [2, 1, 0]


class TestRetryPolicy:
    def test_from_execution_config_clamps(self):
        policy = ModelRetryPolicy.from_execution_config(ExecutionConfig(
            model_call_max_attempts=50,
            model_call_retry_base_delay_seconds=2.0,
            model_call_retry_max_delay_seconds=1.0,
        ))
        assert policy.max_attempts == 10
        assert policy.max_delay_seconds == 2.0

    def test_delay_grows_and_caps(self):
        policy = ModelRetryPolicy(base_delay_seconds=0.5, max_delay_seconds=3.0, jitter_seconds=0.0)
        assert policy.delay_for(1) == 0.5
        assert policy.delay_for(2) == 1.0
        assert policy.delay_for(5) == 3.0

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (ModelConnectionError("anything"), True),
            (RuntimeError("Connection reset by peer"), True),
            (RuntimeError("429 Too Many Requests"), True),
            (RuntimeError("Service temporarily unavailable"), True),
            (ValueError("invalid schema"), False),
            (ValueError(""), False),
        ],
    )
    def test_is_retryable_model_error(self, error, retryable):
        assert is_retryable_model_error(error) is retryable
