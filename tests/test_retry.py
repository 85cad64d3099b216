"""Tests for the bounded retry policy."""

from __future__ import annotations

import pytest

from stackdeploy.errors import ErrorClass, PermanentInfraError, TransientInfraError, is_transient
from stackdeploy.utils.retry import RetryPolicy, run_with_retry


class Operation:
    def __init__(self, errors: list[Exception], value: str = "done") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_delay_for_is_exponential_and_capped() -> None:
    policy = RetryPolicy(initial_delay=2.0, backoff_factor=2.0, max_backoff=5.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_success_on_first_attempt() -> None:
    operation = Operation([])
    outcome = await run_with_retry(operation, RetryPolicy(), is_transient, sleep=Sleeps())

    assert outcome.succeeded
    assert outcome.value == "done"
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_transient_failures_are_retried_until_success() -> None:
    operation = Operation([TransientInfraError("timeout"), TransientInfraError("timeout")])
    sleeps = Sleeps()

    outcome = await run_with_retry(operation, RetryPolicy(max_attempts=3), is_transient, sleep=sleeps)

    assert outcome.succeeded
    assert outcome.attempts == 3
    assert len(sleeps.delays) == 2


@pytest.mark.asyncio
async def test_transient_failures_exhaust_attempts() -> None:
    operation = Operation([TransientInfraError("timeout")] * 5)

    outcome = await run_with_retry(operation, RetryPolicy(max_attempts=3), is_transient, sleep=Sleeps())

    assert not outcome.succeeded
    assert outcome.attempts == 3
    assert operation.calls == 3
    assert isinstance(outcome.error, TransientInfraError)


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried() -> None:
    operation = Operation([PermanentInfraError(ErrorClass.ACCESS_DENIED, "denied")])
    sleeps = Sleeps()

    outcome = await run_with_retry(operation, RetryPolicy(max_attempts=3), is_transient, sleep=sleeps)

    assert outcome.attempts == 1
    assert sleeps.delays == []
    assert outcome.error.error_class is ErrorClass.ACCESS_DENIED
