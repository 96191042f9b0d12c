"""Composed agent execution: cache, single-flight, breaker, monitor and recovery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import threading
from typing import Any
import uuid

from callsift_agent.agents.base import (
    DEFAULT_AGENT_TIMEOUT,
    Agent,
    agent_attribute,
    build_agent_input,
    default_output_for,
)
from callsift_agent.context import AgentContext
from callsift_agent.enums import DegradationLevel, ErrorClass, RecoveryStrategy
from callsift_agent.errors import (
    CircuitOpenError,
    PermanentError,
    PipelineTimeoutError,
    TransientError,
)
from callsift_agent.monitoring.monitor import PerformanceMonitor
from callsift_agent.optimizer.cache import CacheEntry, ResultCache
from callsift_agent.optimizer.canonical import cache_key
from callsift_agent.optimizer.single_flight import SingleFlight
from callsift_agent.reliability.backoff import CancellationToken, cancellable_sleep
from callsift_agent.reliability.policy import ReliabilityPolicy
from callsift_agent.reliability.recovery import ErrorRecoverySystem
from callsift_agent.schema.models import (
    AgentResult,
    CacheHitSummary,
    CacheStatistics,
    ExecutionMetrics,
    OptimizerMetrics,
    RecoveryDecision,
)
from callsift_agent.schema.outputs import AgentOutput
from callsift_agent.utilities.logger_manager import LoggerManager, MetricType

_TOP_HITS = 10


@dataclass
class _Run:
    """Mutable state of one `_run_with_recovery` loop."""

    agent: Agent
    optional: bool
    critical: bool
    attempt: int = 0
    metrics: ExecutionMetrics | None = None
    fallback: AgentOutput | None = None
    from_last_success: bool = False
    fallback_resolved: bool = False

    @property
    def name(self) -> str:
        return self.agent.name


class AgentOptimizer:
    """Single entry point the pipeline uses to run one agent against one context.

    `execute` never lets an agent failure escape: every failure is turned
    into an `AgentResult` with a degradation level. The only exception it
    propagates is `asyncio.CancelledError`, after recording the cancelled
    attempt as a timeout.
    """

    def __init__(
        self,
        recovery: ErrorRecoverySystem,
        monitor: PerformanceMonitor,
        cache: ResultCache,
        policy: ReliabilityPolicy | None = None,
        logger_manager: LoggerManager | None = None,
    ) -> None:
        self.recovery = recovery
        self.monitor = monitor
        self.cache = cache
        self.policy = policy or ReliabilityPolicy()
        self.logger_manager = logger_manager or LoggerManager()
        self.logger = self.logger_manager.get_logger()
        self._flights: SingleFlight[AgentResult] = SingleFlight()
        self._metrics_lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self.reset_metrics()

    async def execute(
        self,
        agent: Agent,
        agent_input: Any,
        context: AgentContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> AgentResult:
        """Run `agent` over `context`, serving identical inputs from the cache.

        `agent_input` is the canonical cache input; pass None to derive it
        with the agent's `build_input(context)`. An input that cannot be
        built or hashed fails the agent as a permanent error.
        """
        name = agent.name
        with self.logger_manager.context(agent=name, call_id=context.metadata.call_id):
            try:
                if agent_input is None:
                    agent_input = build_agent_input(agent, context)
                key = cache_key(name, agent.version, agent_input)
            except Exception as exc:
                result = self._reject_input(agent, exc)
                self._publish(context, result)
                return result

            if self.policy.cache.enabled:
                entry = self.cache.get(key)
                if entry is not None:
                    return self._serve_hit(entry, context)
            self._increment("cache_misses")
            self.logger_manager.log_metric(
                "optimizer.cache_misses", 1, MetricType.COUNTER, {"agent": name}
            )

            try:
                result, joined = await self._flights.do(
                    key, lambda: self._run_with_recovery(agent, context, cancellation)
                )
            except PipelineTimeoutError as exc:
                result = AgentResult(
                    agent_name=name,
                    degradation_level=DegradationLevel.SKIPPED,
                    error_class=ErrorClass.TIMEOUT,
                    error_message=str(exc),
                )
                joined = True
            except asyncio.CancelledError:
                context.record_degradation(name, DegradationLevel.SKIPPED)
                raise

            if joined:
                self._increment("single_flight_joins")
            elif result.succeeded and self.policy.cache.enabled:
                self._store(key, agent, result)
            self._publish(context, result)
            return result

    def _reject_input(self, agent: Agent, exc: Exception) -> AgentResult:
        error = PermanentError(
            f"cannot derive cache input: {type(exc).__name__}: {exc}",
            agent_name=agent.name,
        )
        run = self._new_run(agent)
        decision = self._recover(run, error, {"stage": "cache_input"})
        return self._degraded(run, decision, error)

    def _store(self, key: str, agent: Agent, result: AgentResult) -> None:
        if result.output is None:
            return
        self.cache.put(
            key,
            agent.name,
            result.output,
            ttl=self._ttl_for(agent),
            execution_time=result.metrics.execution_time if result.metrics else 0.0,
        )

    def _ttl_for(self, agent: Agent) -> float:
        if agent_attribute(agent, "volatile", False):
            return self.policy.cache.volatile_ttl
        return self.policy.cache.ttl

    def _serve_hit(self, entry: CacheEntry, context: AgentContext) -> AgentResult:
        history = self.monitor.get_agent_metrics(entry.agent_name)
        cost_per_token = self.monitor.policy.cost_per_token
        if history.total_executions:
            time_saved = history.avg_execution_time
            tokens_saved = history.avg_prompt_tokens
            cost_saved = history.avg_total_tokens * cost_per_token
        else:
            usage = entry.token_usage
            time_saved = entry.execution_time
            tokens_saved = usage.prompt if usage else 0
            cost_saved = usage.total * cost_per_token if usage else 0.0

        with self._metrics_lock:
            self._counters["cache_hits"] += 1
            self._counters["prompt_tokens_saved"] += tokens_saved
            self._counters["execution_time_saved"] += time_saved
            self._counters["cost_saved"] += cost_saved
        self.logger_manager.log_metric(
            "optimizer.cache_hits", 1, MetricType.COUNTER, {"agent": entry.agent_name}
        )
        self.logger.debug(
            f"Cache hit for {entry.agent_name} (hit #{entry.hit_count})",
            extra={"context": {"agent": entry.agent_name, "key": entry.key[:12]}},
        )

        result = AgentResult(
            agent_name=entry.agent_name,
            output=entry.output,
            cache_hit=True,
        )
        self._publish(context, result)
        return result

    @staticmethod
    def _publish(context: AgentContext, result: AgentResult) -> None:
        if result.output is not None:
            context.set_agent_output(result.agent_name, result.output)
        context.record_degradation(result.agent_name, result.degradation_level)

    @staticmethod
    def _new_run(agent: Agent) -> _Run:
        return _Run(
            agent=agent,
            optional=bool(agent_attribute(agent, "optional", False)),
            critical=bool(agent_attribute(agent, "critical", False)),
        )

    def _resolve_fallback(self, run: _Run) -> None:
        """Pick the last good output, else the agent's stub, once per run."""
        if run.fallback_resolved:
            return
        run.fallback_resolved = True
        previous = self.recovery.last_success(run.name)
        if previous is not None:
            run.fallback = previous
            run.from_last_success = True
            return
        try:
            run.fallback = default_output_for(run.agent)
        except Exception as exc:
            self.logger.error(
                f"Fallback output of {run.name} could not be built: {exc}",
                extra={
                    "context": {"agent": run.name, "error_type": type(exc).__name__}
                },
            )
            run.fallback = None

    def _recover(
        self,
        run: _Run,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> RecoveryDecision:
        self._resolve_fallback(run)
        return self.recovery.handle_error(
            run.name,
            error,
            max(run.attempt, 1),
            context,
            optional=run.optional,
            critical=run.critical,
            has_fallback=run.fallback is not None,
        )

    async def _run_with_recovery(
        self,
        agent: Agent,
        context: AgentContext,
        cancellation: CancellationToken | None,
    ) -> AgentResult:
        name = agent.name
        timeout = agent_attribute(agent, "timeout", DEFAULT_AGENT_TIMEOUT)
        run = self._new_run(agent)

        while True:
            run.attempt += 1
            try:
                self.recovery.before_call(name)
            except CircuitOpenError as exc:
                decision = self._recover(run, exc)
                run.attempt -= 1
                return self._degraded(run, decision, exc)

            execution_id = uuid.uuid4().hex
            self.monitor.start_tracking(name, execution_id)
            try:
                raw = await asyncio.wait_for(agent.execute(context), timeout)
                output = self._coerce_output(name, raw)
            except asyncio.CancelledError:
                self.monitor.end_tracking(
                    name, execution_id, False, error="cancelled by pipeline"
                )
                self._recover(
                    run, PipelineTimeoutError("cancelled in flight", agent_name=name)
                )
                raise
            except Exception as exc:
                error: Exception = exc
                if isinstance(exc, TimeoutError):
                    error = TransientError(
                        f"exceeded agent timeout of {timeout}s", agent_name=name
                    )
                run.metrics = self.monitor.end_tracking(
                    name, execution_id, False, error=str(error)
                )
                decision = self._recover(run, error, {"execution_id": execution_id})
                if decision.strategy is not RecoveryStrategy.RETRY_WITH_BACKOFF:
                    return self._degraded(run, decision, error)
                if not await self._backoff(run, decision, cancellation):
                    cancelled = PipelineTimeoutError(
                        "run cancelled during backoff", agent_name=name
                    )
                    return self._degraded(run, self._recover(run, cancelled), cancelled)
            else:
                metrics = self.monitor.end_tracking(
                    name, execution_id, True, output=output
                )
                self.recovery.record_success(name, output)
                return AgentResult(
                    agent_name=name,
                    output=output,
                    metrics=metrics,
                    attempts=run.attempt,
                )

    async def _backoff(
        self,
        run: _Run,
        decision: RecoveryDecision,
        cancellation: CancellationToken | None,
    ) -> bool:
        try:
            return await cancellable_sleep(decision.delay, cancellation)
        except asyncio.CancelledError:
            self._recover(
                run,
                PipelineTimeoutError("cancelled during backoff", agent_name=run.name),
            )
            raise

    @staticmethod
    def _coerce_output(name: str, raw: Any) -> AgentOutput:
        if isinstance(raw, AgentOutput):
            return raw
        if isinstance(raw, dict):
            return AgentOutput.model_validate(raw)
        raise PermanentError(
            f"agent returned {type(raw).__name__}, expected AgentOutput",
            agent_name=name,
        )

    def _degraded(
        self, run: _Run, decision: RecoveryDecision, error: BaseException
    ) -> AgentResult:
        output = None
        level = decision.degradation_level
        if level is DegradationLevel.PARTIAL and run.fallback is not None:
            cap = self.policy.degradation.partial_confidence_cap
            reason = f"{decision.error_class.value} error"
            note = (
                f"served last successful output after {reason}"
                if run.from_last_success
                else f"degraded after {reason}"
            )
            output = run.fallback.model_copy(
                update={
                    "confidence": min(run.fallback.confidence, cap),
                    "notes": [*run.fallback.notes, note],
                }
            )
        return AgentResult(
            agent_name=run.name,
            output=output,
            degradation_level=level,
            metrics=run.metrics,
            attempts=run.attempt,
            error_class=decision.error_class,
            error_message=str(error),
        )

    def _increment(self, counter: str, amount: float = 1) -> None:
        with self._metrics_lock:
            self._counters[counter] += amount

    def get_metrics(self) -> OptimizerMetrics:
        with self._metrics_lock:
            counters = dict(self._counters)
        return OptimizerMetrics(
            cache_hits=int(counters["cache_hits"]),
            cache_misses=int(counters["cache_misses"]),
            single_flight_joins=int(counters["single_flight_joins"]),
            prompt_tokens_saved=int(counters["prompt_tokens_saved"]),
            execution_time_saved=counters["execution_time_saved"],
            cost_saved=counters["cost_saved"],
        )

    def get_cache_statistics(self) -> CacheStatistics:
        metrics = self.get_metrics()
        lookups = metrics.cache_hits + metrics.cache_misses
        now = self.cache.clock()
        entries = sorted(self.cache.entries(), key=lambda e: e.hit_count, reverse=True)
        return CacheStatistics(
            size=len(self.cache),
            hit_rate=metrics.cache_hits / lookups if lookups else 0.0,
            top_hits=[
                CacheHitSummary(agent=e.agent_name, hits=e.hit_count, age=e.age(now))
                for e in entries[:_TOP_HITS]
                if e.hit_count
            ],
        )

    def sweep(self) -> int:
        return self.cache.sweep()

    def start_sweeper(self, interval: float | None = None) -> asyncio.Task[None]:
        return self.cache.start_sweeper(interval)

    async def stop_sweeper(self) -> None:
        await self.cache.stop_sweeper()

    def clear_cache(self) -> None:
        self.cache.clear()
        self.logger.info("Result cache cleared")

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._counters = {
                "cache_hits": 0,
                "cache_misses": 0,
                "single_flight_joins": 0,
                "prompt_tokens_saved": 0,
                "execution_time_saved": 0.0,
                "cost_saved": 0.0,
            }


__all__ = ["AgentOptimizer"]
