"""Error recovery: classify failures, drive breakers, choose retry or degradation."""

from __future__ import annotations

from collections import Counter, OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass
import random
import threading
import time
from typing import Any

from callsift_agent.constants import ERROR_HISTORY_LIMIT, LAST_SUCCESS_LIMIT
from callsift_agent.enums import (
    CircuitState,
    DegradationLevel,
    ErrorClass,
    RecoveryStrategy,
)
from callsift_agent.errors import CircuitOpenError
from callsift_agent.reliability.backoff import backoff_delay
from callsift_agent.reliability.circuit_breaker import CircuitBreaker
from callsift_agent.reliability.failure import classify_error, failure_profile_for
from callsift_agent.reliability.policy import ReliabilityPolicy
from callsift_agent.schema.models import (
    ErrorCount,
    RecoveryDecision,
    RecoveryHealth,
    RecoveryStatistics,
)
from callsift_agent.schema.outputs import AgentOutput
from callsift_agent.utilities.logger_manager import LoggerManager, MetricType

_HOUR = 3600.0
_DAY = 24 * _HOUR


@dataclass(frozen=True)
class _ErrorEvent:
    timestamp: float
    error_class: ErrorClass
    message: str


class ErrorRecoverySystem:
    """Owns one circuit breaker per agent and the per-agent error history.

    It also remembers the last successful output of each agent so a later
    failure can be served from it as a `partial` result.
    """

    def __init__(
        self,
        policy: ReliabilityPolicy | None = None,
        logger_manager: LoggerManager | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or ReliabilityPolicy()
        self.logger_manager = logger_manager or LoggerManager()
        self.logger = self.logger_manager.get_logger()
        self._clock = clock
        self._wall_clock = wall_clock
        self._rng = rng
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._history: dict[str, deque[_ErrorEvent]] = {}
        self._totals: Counter[str] = Counter()
        self._by_class: dict[str, Counter[str]] = {}
        self._last_success: OrderedDict[str, AgentOutput] = OrderedDict()

    def breaker_for(self, agent_name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(agent_name)
            if breaker is None:
                breaker = CircuitBreaker(
                    agent_name, self.policy.circuit_breaker, clock=self._clock
                )
                self._breakers[agent_name] = breaker
            return breaker

    def before_call(self, agent_name: str) -> None:
        """Raise `CircuitOpenError` when the agent's breaker refuses the call."""
        breaker = self.breaker_for(agent_name)
        if not breaker.allow_request():
            retry_after = breaker.retry_after()
            self.logger_manager.log_metric(
                "recovery.short_circuits", 1, MetricType.COUNTER, {"agent": agent_name}
            )
            raise CircuitOpenError(agent_name, retry_after)

    def record_success(
        self, agent_name: str, output: AgentOutput | None = None
    ) -> None:
        breaker = self.breaker_for(agent_name)
        if output is not None and self.policy.degradation.use_last_success:
            with self._lock:
                self._last_success[agent_name] = output
                self._last_success.move_to_end(agent_name)
                while len(self._last_success) > LAST_SUCCESS_LIMIT:
                    self._last_success.popitem(last=False)
        was_half_open = breaker.state is CircuitState.HALF_OPEN
        breaker.record_success()
        if was_half_open:
            self.logger.info(
                f"Circuit breaker closed for {agent_name}",
                extra={"context": {"agent": agent_name}},
            )

    def last_success(self, agent_name: str) -> AgentOutput | None:
        """Most recent successful output of `agent_name`, if one is kept."""
        if not self.policy.degradation.use_last_success:
            return None
        with self._lock:
            return self._last_success.get(agent_name)

    def release_probe(self, agent_name: str) -> None:
        self.breaker_for(agent_name).release_probe()

    def is_critical(self, agent_name: str, critical: bool = False) -> bool:
        return critical or agent_name in self.policy.degradation.critical_agents

    def is_optional(self, agent_name: str, optional: bool = False) -> bool:
        return optional or agent_name in self.policy.degradation.optional_agents

    def degradation_level(
        self, agent_name: str, *, critical: bool = False, has_fallback: bool = False
    ) -> DegradationLevel:
        """Walk the partial -> skipped -> failed ladder for a non-retried failure."""
        if self.is_critical(agent_name, critical):
            return DegradationLevel.FAILED
        if has_fallback and self.policy.degradation.allow_partial:
            return DegradationLevel.PARTIAL
        return DegradationLevel.SKIPPED

    def handle_error(
        self,
        agent_name: str,
        error: BaseException,
        attempt: int = 1,
        context: dict[str, Any] | None = None,
        *,
        optional: bool = False,
        critical: bool = False,
        has_fallback: bool = False,
    ) -> RecoveryDecision:
        """Classify the error of attempt number `attempt` and pick the next step."""
        error_class = classify_error(error)
        profile = failure_profile_for(error_class)
        self._record_error(agent_name, error_class, error)

        breaker = self.breaker_for(agent_name)
        if profile.counts_against_breaker:
            previous = breaker.state
            state = breaker.record_failure()
            if state is CircuitState.OPEN and previous is not CircuitState.OPEN:
                self.logger.warning(
                    f"Circuit breaker opened for {agent_name}",
                    extra={
                        "context": {
                            "agent": agent_name,
                            "consecutive_failures": breaker.consecutive_failures,
                        }
                    },
                )
                self.logger_manager.log_metric(
                    "recovery.breaker_opened",
                    1,
                    MetricType.COUNTER,
                    {"agent": agent_name},
                )
        elif error_class is ErrorClass.TIMEOUT:
            breaker.release_probe()

        if profile.forced_level is not None:
            decision = RecoveryDecision(
                strategy=RecoveryStrategy.DEGRADE,
                success=False,
                degradation_level=profile.forced_level,
                error_class=error_class,
                attempt=attempt,
            )
        elif (
            profile.retryable
            and breaker.state is not CircuitState.OPEN
            and attempt < self.policy.retry.max_retries
        ):
            decision = RecoveryDecision(
                strategy=RecoveryStrategy.RETRY_WITH_BACKOFF,
                success=True,
                degradation_level=DegradationLevel.NONE,
                error_class=error_class,
                delay=backoff_delay(attempt, self.policy.retry, self._rng),
                attempt=attempt,
            )
        else:
            level = self.degradation_level(
                agent_name, critical=critical, has_fallback=has_fallback
            )
            decision = RecoveryDecision(
                strategy=(
                    RecoveryStrategy.FAIL_FAST
                    if error_class is ErrorClass.PERMANENT
                    else RecoveryStrategy.DEGRADE
                ),
                success=level is DegradationLevel.PARTIAL,
                degradation_level=level,
                error_class=error_class,
                attempt=attempt,
            )

        self._log_decision(agent_name, error, decision, context, optional)
        return decision

    def _record_error(
        self, agent_name: str, error_class: ErrorClass, error: BaseException
    ) -> None:
        event = _ErrorEvent(self._wall_clock(), error_class, str(error))
        with self._lock:
            history = self._history.setdefault(
                agent_name, deque(maxlen=ERROR_HISTORY_LIMIT)
            )
            history.append(event)
            self._totals[agent_name] += 1
            self._by_class.setdefault(agent_name, Counter())[error_class.value] += 1
        self.logger_manager.log_metric(
            "recovery.errors",
            1,
            MetricType.COUNTER,
            {"agent": agent_name, "error_class": error_class.value},
        )

    def _log_decision(
        self,
        agent_name: str,
        error: BaseException,
        decision: RecoveryDecision,
        context: dict[str, Any] | None,
        optional: bool,
    ) -> None:
        log_context = {
            **(context or {}),
            "agent": agent_name,
            "attempt": decision.attempt,
            "error_class": decision.error_class.value,
            "strategy": decision.strategy.value,
            "degradation_level": decision.degradation_level.value,
        }
        if decision.strategy is RecoveryStrategy.RETRY_WITH_BACKOFF:
            self.logger.info(
                f"Retrying {agent_name} in {decision.delay:.2f}s after: {error}",
                extra={"context": log_context},
            )
            self.logger_manager.log_metric(
                "recovery.retries", 1, MetricType.COUNTER, {"agent": agent_name}
            )
            return
        if decision.degradation_level is DegradationLevel.FAILED:
            self.logger.error(
                f"Critical agent {agent_name} failed: {error}",
                extra={"context": log_context},
            )
        elif self.is_optional(agent_name, optional):
            self.logger.debug(
                f"Optional agent {agent_name} degraded: {error}",
                extra={"context": log_context},
            )
        else:
            self.logger.warning(
                f"Agent {agent_name} degraded to "
                f"{decision.degradation_level.value}: {error}",
                extra={"context": log_context},
            )
        self.logger_manager.log_metric(
            "recovery.degradations",
            1,
            MetricType.COUNTER,
            {"agent": agent_name, "level": decision.degradation_level.value},
        )

    def error_count(self, agent_name: str) -> ErrorCount:
        now = self._wall_clock()
        with self._lock:
            history = list(self._history.get(agent_name, ()))
            total = self._totals.get(agent_name, 0)
            by_class = dict(self._by_class.get(agent_name, {}))
        return ErrorCount(
            total=total,
            last_hour=sum(1 for e in history if now - e.timestamp <= _HOUR),
            last_24h=sum(1 for e in history if now - e.timestamp <= _DAY),
            by_class=by_class,
        )

    def get_statistics(self) -> RecoveryStatistics:
        with self._lock:
            breakers = dict(self._breakers)
            agents = sorted(self._totals)
            fallback_agents = sorted(self._last_success)
        return RecoveryStatistics(
            circuit_breakers={
                name: breaker.snapshot() for name, breaker in sorted(breakers.items())
            },
            error_counts={name: self.error_count(name) for name in agents},
            fallback_agents=fallback_agents,
        )

    def health_check(self) -> RecoveryHealth:
        stats = self.get_statistics()
        issues: list[str] = []
        for name, snapshot in stats.circuit_breakers.items():
            if snapshot.state is CircuitState.OPEN:
                issues.append(f"Circuit breaker open for {name}")
        threshold = self.policy.degradation.max_errors_before_alert
        for name, count in stats.error_counts.items():
            if count.last_hour > threshold:
                issues.append(
                    f"High error count for {name}: {count.last_hour} in the last hour"
                )
        return RecoveryHealth(healthy=not issues, issues=issues)

    def reset(self) -> None:
        with self._lock:
            self._breakers.clear()
            self._history.clear()
            self._totals.clear()
            self._by_class.clear()
            self._last_success.clear()
        self.logger.debug("Error recovery state reset")


__all__ = ["ErrorRecoverySystem"]
