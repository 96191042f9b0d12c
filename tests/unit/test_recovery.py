from __future__ import annotations

import pytest
from tests.utils.fakes import FakeClock, generic_output

from callsift_agent.enums import (
    CircuitState,
    DegradationLevel,
    ErrorClass,
    RecoveryStrategy,
)
from callsift_agent.errors import (
    CircuitOpenError,
    PermanentError,
    PipelineTimeoutError,
    TransientError,
)
from callsift_agent.reliability.policy import (
    DegradationPolicy,
    ReliabilityPolicy,
    RetryPolicy,
)
from callsift_agent.reliability.recovery import ErrorRecoverySystem
from callsift_agent.utilities.logger_manager import LoggerManager


@pytest.fixture
def recovery(logger_manager: LoggerManager, clock: FakeClock) -> ErrorRecoverySystem:
    policy = ReliabilityPolicy(retry=RetryPolicy(base_delay=1.0, max_delay=30.0))
    return ErrorRecoverySystem(policy, logger_manager, clock=clock, wall_clock=clock)


def test_transient_error_is_retried_with_backoff(
    recovery: ErrorRecoverySystem,
) -> None:
    first = recovery.handle_error("load_extraction", TransientError("503"), 1)
    second = recovery.handle_error("load_extraction", TransientError("503"), 2)

    assert first.strategy is RecoveryStrategy.RETRY_WITH_BACKOFF
    assert first.success
    assert first.delay == 1.0
    assert second.delay == 2.0


def test_transient_error_degrades_once_retries_are_exhausted(
    recovery: ErrorRecoverySystem,
) -> None:
    decision = recovery.handle_error("load_extraction", TransientError("503"), 3)
    assert decision.strategy is RecoveryStrategy.DEGRADE
    assert decision.degradation_level is DegradationLevel.SKIPPED
    assert not decision.success


def test_permanent_error_fails_fast(recovery: ErrorRecoverySystem) -> None:
    decision = recovery.handle_error("load_extraction", PermanentError("schema"))
    assert decision.strategy is RecoveryStrategy.FAIL_FAST
    assert decision.error_class is ErrorClass.PERMANENT
    assert decision.degradation_level is DegradationLevel.SKIPPED


def test_degradation_ladder(recovery: ErrorRecoverySystem) -> None:
    error = PermanentError("bad")
    partial = recovery.handle_error("summary", error, has_fallback=True)
    assert partial.degradation_level is DegradationLevel.PARTIAL
    assert partial.success

    critical = recovery.handle_error("classification", error, has_fallback=True)
    assert critical.degradation_level is DegradationLevel.FAILED
    assert not critical.success

    flagged = recovery.handle_error("rates", error, critical=True)
    assert flagged.degradation_level is DegradationLevel.FAILED


def test_partial_disabled_by_policy(
    logger_manager: LoggerManager, clock: FakeClock
) -> None:
    policy = ReliabilityPolicy(degradation=DegradationPolicy(allow_partial=False))
    recovery = ErrorRecoverySystem(policy, logger_manager, clock=clock)
    decision = recovery.handle_error("summary", PermanentError("x"), has_fallback=True)
    assert decision.degradation_level is DegradationLevel.SKIPPED


def test_timeout_is_skipped_without_touching_the_breaker(
    recovery: ErrorRecoverySystem,
) -> None:
    decision = recovery.handle_error("summary", PipelineTimeoutError("deadline"))
    assert decision.strategy is RecoveryStrategy.DEGRADE
    assert decision.degradation_level is DegradationLevel.SKIPPED
    assert decision.error_class is ErrorClass.TIMEOUT
    assert recovery.breaker_for("summary").consecutive_failures == 0


def test_breaker_opens_and_short_circuits(
    recovery: ErrorRecoverySystem, logger_manager: LoggerManager
) -> None:
    for _ in range(5):
        recovery.before_call("rates")
        recovery.handle_error("rates", PermanentError("bad request"))

    assert recovery.breaker_for("rates").state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError) as raised:
        recovery.before_call("rates")
    assert raised.value.retry_after == pytest.approx(60.0)
    assert logger_manager.metric_value("recovery.breaker_opened") == 1
    assert logger_manager.metric_value("recovery.short_circuits") == 1

    # An open breaker suppresses retries even for transient failures.
    decision = recovery.handle_error("rates", TransientError("503"), 1)
    assert decision.strategy is RecoveryStrategy.DEGRADE


def test_circuit_open_error_is_not_counted(recovery: ErrorRecoverySystem) -> None:
    decision = recovery.handle_error("rates", CircuitOpenError("rates", 5.0))
    assert decision.error_class is ErrorClass.CIRCUIT_OPEN
    assert decision.strategy is RecoveryStrategy.DEGRADE
    assert recovery.breaker_for("rates").consecutive_failures == 0


def test_error_counts_use_time_windows(
    recovery: ErrorRecoverySystem, clock: FakeClock
) -> None:
    recovery.handle_error("rates", PermanentError("bad"))
    clock.advance(2 * 3600)
    recovery.handle_error("rates", TransientError("503"), 1)

    count = recovery.error_count("rates")
    assert count.total == 2
    assert count.last_hour == 1
    assert count.last_24h == 2
    assert count.by_class == {"permanent": 1, "transient": 1}


def test_statistics_health_and_reset(recovery: ErrorRecoverySystem) -> None:
    assert recovery.health_check().healthy
    for _ in range(5):
        recovery.handle_error("rates", PermanentError("bad"))

    stats = recovery.get_statistics()
    assert stats.circuit_breakers["rates"].state is CircuitState.OPEN
    assert stats.error_counts["rates"].total == 5

    health = recovery.health_check()
    assert not health.healthy
    assert health.issues == ["Circuit breaker open for rates"]

    recovery.reset()
    assert recovery.get_statistics().circuit_breakers == {}
    assert recovery.health_check().healthy


def test_health_flags_error_bursts(
    logger_manager: LoggerManager, clock: FakeClock
) -> None:
    policy = ReliabilityPolicy(degradation=DegradationPolicy(max_errors_before_alert=2))
    recovery = ErrorRecoverySystem(
        policy, logger_manager, clock=clock, wall_clock=clock
    )
    for _ in range(3):
        recovery.handle_error("summary", PipelineTimeoutError("deadline"))
    health = recovery.health_check()
    assert not health.healthy
    assert "High error count for summary" in health.issues[0]


def test_last_success_is_kept_per_agent(recovery: ErrorRecoverySystem) -> None:
    first, second = generic_output(run=1), generic_output(run=2)
    assert recovery.last_success("summary") is None

    recovery.record_success("summary", first)
    recovery.record_success("summary", second)
    recovery.record_success("classification")

    assert recovery.last_success("summary") == second
    assert recovery.last_success("classification") is None
    assert recovery.get_statistics().fallback_agents == ["summary"]

    recovery.reset()
    assert recovery.last_success("summary") is None


def test_last_success_store_is_bounded(
    recovery: ErrorRecoverySystem, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("callsift_agent.reliability.recovery.LAST_SUCCESS_LIMIT", 2)
    for name in ("a", "b", "c"):
        recovery.record_success(name, generic_output(agent=name))
    assert recovery.get_statistics().fallback_agents == ["b", "c"]


def test_last_success_can_be_disabled(
    logger_manager: LoggerManager, clock: FakeClock
) -> None:
    policy = ReliabilityPolicy(degradation=DegradationPolicy(use_last_success=False))
    recovery = ErrorRecoverySystem(
        policy, logger_manager, clock=clock, wall_clock=clock
    )
    recovery.record_success("summary", generic_output())
    assert recovery.last_success("summary") is None
