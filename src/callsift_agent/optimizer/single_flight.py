"""Collapse concurrent identical calls into one in-flight execution."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from callsift_agent.errors import PipelineTimeoutError

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Per-key leader/follower coordination on the running event loop.

    The first caller for a key becomes the leader and runs the work; callers
    arriving while it runs await the leader's future. A follower being
    cancelled never cancels the leader. If the leader is cancelled the
    followers are released at once with `PipelineTimeoutError`.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(
        self, key: str, work: Callable[[], Awaitable[T]]
    ) -> tuple[T, bool]:
        """Run `work` once per key; return `(result, joined)`."""
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing), True

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await work()
        except asyncio.CancelledError:
            if not future.done():
                future.set_exception(
                    PipelineTimeoutError("in-flight leader was cancelled")
                )
            raise
        except BaseException as exc:
            if not future.done():
                future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]
            # Followers consume the exception; this marks it retrieved when none joined.
            if future.done() and not future.cancelled():
                future.exception()


__all__ = ["SingleFlight"]
