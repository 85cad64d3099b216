"""Bounded retry with exponential backoff, built on tenacity.

One policy object replaces ad hoc sleep loops around remote calls. The
caller supplies the failure-class predicate; the policy supplies the attempt
limit and the backoff curve.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt limit and backoff curve.

    The n-th retry waits ``initial_delay * backoff_factor ** (n - 1)``
    seconds, capped at ``max_backoff``.
    """

    max_attempts: int = 3
    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    max_backoff: float = 30.0

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number ``retry_number`` (1-based)."""
        delay = self.initial_delay * self.backoff_factor ** (retry_number - 1)
        return min(delay, self.max_backoff)

    def retrying(
        self,
        should_retry: Callable[[BaseException], bool],
        sleep: SleepFn = asyncio.sleep,
        before_sleep: Optional[Callable[[RetryCallState], None]] = None,
    ) -> AsyncRetrying:
        """Build a tenacity controller for this policy."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.backoff_factor,
                max=self.max_backoff,
            ),
            retry=retry_if_exception(should_retry),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )


@dataclass
class RetryOutcome(Generic[T]):
    """What happened across all attempts of one operation."""

    attempts: int
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool],
    sleep: SleepFn = asyncio.sleep,
    logger: Optional[structlog.stdlib.BoundLogger] = None,
) -> RetryOutcome[T]:
    """
    Run ``operation`` under ``policy``.

    Exceptions rejected by ``should_retry`` end the loop at once. The final
    exception is captured in the outcome rather than raised, together with
    the number of attempts actually made.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempt limit and backoff
        should_retry: Predicate selecting retryable failures
        sleep: Awaitable sleep used between attempts
        logger: Logger for retry notices

    Returns:
        RetryOutcome with the value or the last error
    """
    attempts = 0

    def _before_sleep(state: RetryCallState) -> None:
        if logger is None:
            return
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retry_scheduled",
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=state.next_action.sleep if state.next_action else None,
            error=str(exc),
        )

    try:
        async for attempt in policy.retrying(should_retry, sleep, _before_sleep):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                value = await operation()
    except Exception as e:
        return RetryOutcome(attempts=attempts, error=e)

    return RetryOutcome(attempts=attempts, value=value)
