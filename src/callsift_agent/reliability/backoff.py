"""Exponential backoff schedule and waits that wake on run cancellation."""

from __future__ import annotations

import asyncio
import random

from callsift_agent.reliability.policy import RetryPolicy


class CancellationToken:
    """Run-wide cancellation signal shared by every backoff wait in a pipeline run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number `attempt` (1-based), capped at `max_delay`."""
    exponent = max(attempt - 1, 0)
    delay = min(policy.base_delay * (policy.multiplier**exponent), policy.max_delay)
    if policy.jitter:
        generator = rng or random
        delay += delay * policy.jitter * generator.random()
        delay = min(delay, policy.max_delay)
    return delay


async def cancellable_sleep(
    delay: float, token: CancellationToken | None = None
) -> bool:
    """Sleep for `delay` seconds; return False if `token` fired first."""
    if token is None:
        await asyncio.sleep(delay)
        return True
    if token.cancelled:
        return False
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({waiter}, timeout=delay)
    finally:
        waiter.cancel()
    return not done


__all__ = ["CancellationToken", "backoff_delay", "cancellable_sleep"]
