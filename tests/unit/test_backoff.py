from __future__ import annotations

import asyncio
import random

import pytest

from callsift_agent.reliability.backoff import (
    CancellationToken,
    backoff_delay,
    cancellable_sleep,
)
from callsift_agent.reliability.policy import RetryPolicy


def test_backoff_delay_doubles_and_caps() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, multiplier=2.0)
    assert [backoff_delay(attempt, policy) for attempt in range(1, 5)] == [
        1.0,
        2.0,
        4.0,
        5.0,
    ]


def test_backoff_jitter_stays_within_bounds() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0.5)
    rng = random.Random(7)
    for attempt in range(1, 4):
        base = 2.0 ** (attempt - 1)
        delay = backoff_delay(attempt, policy, rng)
        assert base <= delay <= base * 1.5


def test_retry_policy_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=0)
    with pytest.raises(ValueError):
        RetryPolicy(jitter=1.5)


@pytest.mark.asyncio
async def test_cancellable_sleep_completes_without_cancellation() -> None:
    assert await cancellable_sleep(0.01, CancellationToken())
    assert await cancellable_sleep(0.0)


@pytest.mark.asyncio
async def test_cancellable_sleep_wakes_on_cancellation() -> None:
    token = CancellationToken()
    sleeper = asyncio.create_task(cancellable_sleep(30.0, token))
    await asyncio.sleep(0)
    token.cancel("pipeline timeout")

    assert await asyncio.wait_for(sleeper, 1.0) is False
    assert token.cancelled
    assert token.reason == "pipeline timeout"


@pytest.mark.asyncio
async def test_cancellable_sleep_returns_immediately_when_already_cancelled() -> None:
    token = CancellationToken()
    token.cancel()
    token.cancel("second reason is ignored")
    assert await cancellable_sleep(30.0, token) is False
    assert token.reason == "cancelled"
