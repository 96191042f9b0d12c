from __future__ import annotations

import pytest
from tests.utils.fakes import FakeClock

from callsift_agent.enums import CircuitState
from callsift_agent.reliability.circuit_breaker import CircuitBreaker
from callsift_agent.reliability.policy import CircuitBreakerPolicy


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    policy = CircuitBreakerPolicy(
        failure_threshold=3, cooldown=10.0, cooldown_multiplier=2.0, max_cooldown=25.0
    )
    return CircuitBreaker("load_extraction", policy, clock=clock)


def test_breaker_opens_at_threshold(breaker: CircuitBreaker) -> None:
    assert breaker.record_failure() is CircuitState.CLOSED
    assert breaker.record_failure() is CircuitState.CLOSED
    assert breaker.allow_request()
    assert breaker.record_failure() is CircuitState.OPEN
    assert not breaker.allow_request()
    assert breaker.retry_after() == pytest.approx(10.0)


def test_success_resets_consecutive_failures(breaker: CircuitBreaker) -> None:
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    assert breaker.consecutive_failures == 0
    breaker.record_failure()
    assert breaker.state is CircuitState.CLOSED


def test_half_open_admits_a_single_probe(
    breaker: CircuitBreaker, clock: FakeClock
) -> None:
    for _ in range(3):
        breaker.record_failure()
    clock.advance(9.9)
    assert not breaker.allow_request()
    clock.advance(0.1)
    assert breaker.allow_request()
    assert breaker.state is CircuitState.HALF_OPEN
    assert not breaker.allow_request()

    breaker.record_success()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.allow_request()
    assert breaker.snapshot().cooldown == 10.0


def test_failed_probe_reopens_with_longer_cooldown(
    breaker: CircuitBreaker, clock: FakeClock
) -> None:
    for _ in range(3):
        breaker.record_failure()
    clock.advance(10.0)
    assert breaker.allow_request()
    assert breaker.record_failure() is CircuitState.OPEN
    assert breaker.snapshot().cooldown == 20.0

    clock.advance(10.0)
    assert not breaker.allow_request()
    clock.advance(10.0)
    assert breaker.allow_request()
    breaker.record_failure()
    assert breaker.snapshot().cooldown == 25.0


def test_release_probe_frees_the_half_open_slot(
    breaker: CircuitBreaker, clock: FakeClock
) -> None:
    for _ in range(3):
        breaker.record_failure()
    clock.advance(10.0)
    assert breaker.allow_request()
    breaker.release_probe()
    assert breaker.allow_request()


def test_snapshot_and_reset(breaker: CircuitBreaker, clock: FakeClock) -> None:
    for _ in range(3):
        breaker.record_failure()
    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.OPEN
    assert snapshot.consecutive_failures == 3
    assert snapshot.opened_at == clock.now
    assert snapshot.retry_at == clock.now + 10.0

    breaker.reset()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.retry_after() is None
