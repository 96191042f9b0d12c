from __future__ import annotations

import asyncio

import pytest
from tests.utils.fakes import FakeClock, generic_output

from callsift_agent.optimizer.cache import ResultCache
from callsift_agent.reliability.policy import CachePolicy
from callsift_agent.utilities.logger_manager import LoggerManager


@pytest.fixture
def cache(logger_manager: LoggerManager, clock: FakeClock) -> ResultCache:
    return ResultCache(
        CachePolicy(ttl=10.0, max_entries=2), logger_manager, clock=clock
    )


def test_get_counts_hits_and_returns_snapshots(cache: ResultCache) -> None:
    cache.put("k1", "summary", generic_output())
    first = cache.get("k1")
    second = cache.get("k1")

    assert first is not None and second is not None
    assert first.hit_count == 1
    assert second.hit_count == 2
    first.hit_count = 99
    assert cache.entries()[0].hit_count == 2
    assert cache.get("missing") is None


def test_entries_expire_after_ttl(
    cache: ResultCache, clock: FakeClock, logger_manager: LoggerManager
) -> None:
    cache.put("k1", "summary", generic_output())
    clock.advance(9.9)
    assert cache.get("k1") is not None
    clock.advance(0.1)
    assert cache.get("k1") is None
    assert len(cache) == 0
    assert logger_manager.metric_value("cache.expired") == 1


def test_least_recently_used_entry_is_evicted(cache: ResultCache) -> None:
    cache.put("k1", "a", generic_output())
    cache.put("k2", "b", generic_output())
    cache.get("k1")
    cache.put("k3", "c", generic_output())

    assert cache.get("k2") is None
    assert cache.get("k1") is not None
    assert cache.get("k3") is not None


def test_non_positive_ttl_is_not_stored(cache: ResultCache) -> None:
    cache.put("k1", "summary", generic_output(), ttl=0)
    assert len(cache) == 0


def test_sweep_removes_only_expired_entries(
    cache: ResultCache, clock: FakeClock
) -> None:
    cache.put("short", "a", generic_output(), ttl=1.0)
    cache.put("long", "b", generic_output(), ttl=100.0)
    clock.advance(5.0)

    assert cache.sweep() == 1
    assert [entry.key for entry in cache.entries()] == ["long"]
    cache.clear()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_background_sweeper_starts_and_stops(
    cache: ResultCache, clock: FakeClock
) -> None:
    cache.put("k1", "summary", generic_output())
    clock.advance(60.0)

    task = cache.start_sweeper(0.01)
    assert cache.start_sweeper(0.01) is task
    assert cache.sweeper_running
    for _ in range(50):
        if len(cache) == 0:
            break
        await asyncio.sleep(0.01)
    assert len(cache) == 0

    await cache.stop_sweeper()
    assert not cache.sweeper_running
    assert task.cancelled()


def test_sweeper_rejects_non_positive_interval(cache: ResultCache) -> None:
    with pytest.raises(ValueError, match="positive"):
        cache.start_sweeper(0)
