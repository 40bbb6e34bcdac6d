"""Tests for the retry policy and executor."""

from __future__ import annotations

import pytest

from reconcile_scope.retry import (
    DEFAULT_BACKOFF,
    RetryOutcome,
    RetryPolicy,
    retry_on_error,
)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Operation:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or RuntimeError("boom")
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_matches_client_go(self) -> None:
        assert DEFAULT_BACKOFF.steps == 4
        assert DEFAULT_BACKOFF.base_delay_seconds == 0.01
        assert DEFAULT_BACKOFF.factor == 5.0
        assert DEFAULT_BACKOFF.jitter == 0.1

    def test_delays_without_jitter(self) -> None:
        policy = RetryPolicy(base_delay_seconds=1.0, factor=2.0, jitter=0.0, steps=5)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 8.0]

    def test_cap(self) -> None:
        policy = RetryPolicy(
            base_delay_seconds=1.0, factor=3.0, jitter=0.0, steps=5, cap_seconds=5.0
        )
        assert list(policy.delays()) == [1.0, 3.0, 5.0, 5.0]

    def test_jitter_bounds(self) -> None:
        policy = RetryPolicy(base_delay_seconds=1.0, factor=1.0, jitter=0.5, steps=50)
        for delay in policy.delays():
            assert 1.0 <= delay <= 1.5

    def test_single_step_has_no_delays(self) -> None:
        policy = RetryPolicy(base_delay_seconds=1.0, factor=2.0, jitter=0.0, steps=1)
        assert list(policy.delays()) == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"steps": 0},
            {"base_delay_seconds": -1.0},
            {"factor": 0.5},
            {"jitter": -0.1},
        ],
    )
    def test_invalid(self, kwargs: dict[str, float]) -> None:
        values = {"base_delay_seconds": 0.1, "factor": 2.0, "jitter": 0.0, "steps": 3}
        values.update(kwargs)
        with pytest.raises(ValueError):
            RetryPolicy(**values)  # type: ignore[arg-type]


class TestRetryOnError:
    """Tests for retry_on_error."""

    policy = RetryPolicy(base_delay_seconds=0.1, factor=2.0, jitter=0.0, steps=3)

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self) -> None:
        sleep = SleepRecorder()
        operation = Operation(failures=0)

        result = await retry_on_error(self.policy, lambda _: True, operation, sleep=sleep)

        assert result.outcome is RetryOutcome.SUCCEEDED
        assert result.success is True
        assert result.attempts == 1
        assert result.error is None
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self) -> None:
        sleep = SleepRecorder()
        operation = Operation(failures=2)

        result = await retry_on_error(self.policy, lambda _: True, operation, sleep=sleep)

        assert result.outcome is RetryOutcome.SUCCEEDED
        assert result.attempts == 3
        assert sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        sleep = SleepRecorder()
        error = ValueError("still broken")
        operation = Operation(failures=10, error=error)

        result = await retry_on_error(self.policy, lambda _: True, operation, sleep=sleep)

        assert result.outcome is RetryOutcome.EXHAUSTED
        assert result.attempts == 3
        assert result.error is error
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_not_retryable(self) -> None:
        sleep = SleepRecorder()
        operation = Operation(failures=10, error=KeyError("fatal"))

        result = await retry_on_error(
            self.policy,
            lambda e: not isinstance(e, KeyError),
            operation,
            sleep=sleep,
        )

        assert result.outcome is RetryOutcome.NOT_RETRYABLE
        assert result.attempts == 1
        assert sleep.delays == []
