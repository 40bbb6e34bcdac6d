"""Bounded exponential backoff for idempotent store operations.

The policy is a plain value: a base delay, a multiplier, a jitter fraction,
an optional cap and the total number of attempts. ``retry_on_error`` applies
it to a single coroutine factory and reports how the run ended instead of
leaving the caller to interpret a loop of exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff schedule.

    Attributes:
        base_delay_seconds: Delay before the second attempt.
        factor: Multiplier applied to the delay after every attempt.
        jitter: Fraction of the delay added at random (0 disables jitter).
        steps: Total number of attempts, including the first one.
        cap_seconds: Upper bound for the un-jittered delay, None for no bound.
    """

    base_delay_seconds: float
    factor: float
    jitter: float
    steps: int
    cap_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValueError("steps must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds cannot be negative")
        if self.factor < 1.0:
            raise ValueError("factor must be at least 1.0")
        if self.jitter < 0:
            raise ValueError("jitter cannot be negative")

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (``steps - 1`` values)."""
        delay = self.base_delay_seconds
        for _ in range(self.steps - 1):
            current = delay
            if self.cap_seconds is not None:
                current = min(current, self.cap_seconds)
            if self.jitter > 0:
                current += random.uniform(0, current * self.jitter)
            yield current
            delay *= self.factor


# client-go retry.DefaultBackoff
DEFAULT_BACKOFF = RetryPolicy(base_delay_seconds=0.01, factor=5.0, jitter=0.1, steps=4)


class RetryOutcome(str, Enum):
    """How a retried operation ended."""

    SUCCEEDED = "succeeded"
    NOT_RETRYABLE = "not_retryable"
    EXHAUSTED = "exhausted"


@dataclass
class RetryResult:
    """Result of ``retry_on_error``.

    ``error`` is the last error seen and is None only on success.
    """

    outcome: RetryOutcome
    attempts: int
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.outcome is RetryOutcome.SUCCEEDED


async def retry_on_error(
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    operation: Callable[[], Awaitable[None]],
    *,
    sleep: SleepFunc = asyncio.sleep,
    operation_name: str = "operation",
) -> RetryResult:
    """Run ``operation`` until it succeeds or the policy is used up.

    Args:
        policy: Backoff schedule.
        should_retry: Predicate deciding whether an error is worth another attempt.
        operation: Zero-argument coroutine factory, called once per attempt.
        sleep: Awaitable sleep used between attempts.
        operation_name: Name used in log records.

    Returns:
        RetryResult describing the final outcome.
    """
    delays = policy.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            await operation()
        except Exception as e:
            if not should_retry(e):
                return RetryResult(RetryOutcome.NOT_RETRYABLE, attempt, e)

            wait_time = next(delays, None)
            if wait_time is None:
                logger.error(
                    f"{operation_name} failed, retries exhausted",
                    extra={"attempts": attempt, "error": str(e)},
                )
                return RetryResult(RetryOutcome.EXHAUSTED, attempt, e)

            logger.warning(
                f"{operation_name} failed, retrying",
                extra={
                    "attempt": attempt,
                    "max_attempts": policy.steps,
                    "wait_seconds": wait_time,
                    "error": str(e),
                },
            )
            await sleep(wait_time)
        else:
            return RetryResult(RetryOutcome.SUCCEEDED, attempt)
