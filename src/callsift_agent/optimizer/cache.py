"""In-memory TTL + LRU result cache shared across pipeline runs."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace
import threading
import time

from callsift_agent.reliability.policy import CachePolicy
from callsift_agent.schema.outputs import AgentOutput, TokenUsage
from callsift_agent.utilities.logger_manager import LoggerManager, MetricType


@dataclass
class CacheEntry:
    """Stored agent output plus what it cost to produce it."""

    key: str
    agent_name: str
    output: AgentOutput
    created_at: float
    ttl: float
    hit_count: int = 0
    execution_time: float = 0.0
    token_usage: TokenUsage | None = None

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl

    def age(self, now: float) -> float:
        return max(now - self.created_at, 0.0)


class ResultCache:
    """Bounded mapping from canonical keys to `CacheEntry`.

    Expired entries are dropped lazily on lookup or by `sweep()`. Lookup,
    expiry and LRU promotion of one key happen under a single lock, so two
    readers never both act on the same stale entry.
    """

    def __init__(
        self,
        policy: CachePolicy | None = None,
        logger_manager: LoggerManager | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or CachePolicy()
        self.logger_manager = logger_manager or LoggerManager()
        self.logger = self.logger_manager.get_logger()
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> CacheEntry | None:
        """Return a snapshot of the live entry for `key` after counting the hit."""
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(now):
                del self._entries[key]
                expired = True
            else:
                expired = False
                entry.hit_count += 1
                self._entries.move_to_end(key)
                snapshot = replace(entry)
        if expired:
            self.logger_manager.log_metric(
                "cache.expired", 1, MetricType.COUNTER, {"agent": entry.agent_name}
            )
            return None
        return snapshot

    def put(
        self,
        key: str,
        agent_name: str,
        output: AgentOutput,
        *,
        ttl: float | None = None,
        execution_time: float = 0.0,
        token_usage: TokenUsage | None = None,
    ) -> None:
        effective_ttl = self.policy.ttl if ttl is None else ttl
        if effective_ttl <= 0:
            return
        entry = CacheEntry(
            key=key,
            agent_name=agent_name,
            output=output,
            created_at=self.clock(),
            ttl=effective_ttl,
            execution_time=execution_time,
            token_usage=token_usage if token_usage is not None else output.token_usage,
        )
        evicted: list[CacheEntry] = []
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.policy.max_entries:
                _, oldest = self._entries.popitem(last=False)
                evicted.append(oldest)
        for oldest in evicted:
            self.logger.debug(
                f"Evicted least recently used cache entry for {oldest.agent_name}",
                extra={"context": {"agent": oldest.agent_name}},
            )
            self.logger_manager.log_metric(
                "cache.evictions", 1, MetricType.COUNTER, {"agent": oldest.agent_name}
            )

    def entries(self) -> list[CacheEntry]:
        """Snapshot of live entries, least recently used first."""
        now = self.clock()
        with self._lock:
            return [replace(e) for e in self._entries.values() if not e.expired(now)]

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self.clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in stale:
                del self._entries[key]
        if stale:
            self.logger.debug(
                f"Swept {len(stale)} expired cache entries",
                extra={"context": {"removed": len(stale)}},
            )
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self, interval: float | None = None) -> asyncio.Task[None]:
        """Start a background task that calls `sweep()` every `interval` seconds."""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper
        period = interval if interval is not None else self.policy.sweep_interval
        if period <= 0:
            raise ValueError("sweep interval must be positive")
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(period), name="callsift-cache-sweeper"
        )
        return self._sweeper

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = ["CacheEntry", "ResultCache"]
