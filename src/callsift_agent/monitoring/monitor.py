"""Execution spans, aggregate metrics, health and optimization hints per agent."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
import math
from statistics import mean, pstdev
import threading
import time

from callsift_agent.enums import HealthStatus, IssueSeverity, RecommendationCategory
from callsift_agent.reliability.policy import MonitorPolicy
from callsift_agent.schema.models import (
    AgentMetrics,
    ExecutionMetrics,
    MonitorHealth,
    OptimizationRecommendation,
    SystemMetrics,
)
from callsift_agent.schema.outputs import AgentOutput, TokenUsage
from callsift_agent.utilities.logger_manager import LoggerManager, MetricType

_SEVERITY_ORDER = {
    IssueSeverity.CRITICAL: 0,
    IssueSeverity.WARNING: 1,
    IssueSeverity.INFO: 2,
}


@dataclass(frozen=True)
class _OpenSpan:
    started: float
    started_at: datetime


def _percentile(sorted_values: list[float], fraction: float) -> float:
    if not sorted_values:
        return 0.0
    index = max(math.ceil(fraction * len(sorted_values)) - 1, 0)
    return sorted_values[index]


class PerformanceMonitor:
    """Tracks execution spans in bounded per-agent ring buffers.

    Nothing here raises on caller mistakes: a duplicate `start_tracking` is
    logged and ignored, and ending an unknown span records a zero-duration
    span so the outcome is still counted.
    """

    def __init__(
        self,
        policy: MonitorPolicy | None = None,
        logger_manager: LoggerManager | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or MonitorPolicy()
        self.logger_manager = logger_manager or LoggerManager()
        self.logger = self.logger_manager.get_logger()
        self._clock = clock
        self._lock = threading.Lock()
        self._open: dict[tuple[str, str], _OpenSpan] = {}
        self._spans: dict[str, deque[ExecutionMetrics]] = {}

    def start_tracking(self, agent_name: str, execution_id: str) -> None:
        key = (agent_name, execution_id)
        with self._lock:
            if key in self._open:
                duplicate = True
            else:
                duplicate = False
                self._open[key] = _OpenSpan(self._clock(), datetime.now(UTC))
        if duplicate:
            self.logger.error(
                f"Span {execution_id} for {agent_name} is already open",
                extra={"context": {"agent": agent_name, "execution_id": execution_id}},
            )

    def end_tracking(
        self,
        agent_name: str,
        execution_id: str,
        success: bool,
        output: AgentOutput | None = None,
        token_usage: TokenUsage | None = None,
        error: str | None = None,
    ) -> ExecutionMetrics:
        """Seal the span, append it to the agent's ring buffer and return it."""
        ended = self._clock()
        ended_at = datetime.now(UTC)
        if token_usage is None and output is not None:
            token_usage = output.token_usage
        with self._lock:
            span = self._open.pop((agent_name, execution_id), None)
            if span is None:
                span = _OpenSpan(ended, ended_at)
                unknown = True
            else:
                unknown = False
            metrics = ExecutionMetrics(
                agent_name=agent_name,
                execution_id=execution_id,
                started_at=span.started_at,
                ended_at=ended_at,
                execution_time=max(ended - span.started, 0.0),
                success=success,
                token_usage=token_usage,
                confidence=output.confidence if output is not None else None,
                error=error,
            )
            buffer = self._spans.get(agent_name)
            if buffer is None:
                buffer = deque(maxlen=self.policy.ring_buffer_size)
                self._spans[agent_name] = buffer
            buffer.append(metrics)

        if unknown:
            self.logger.warning(
                f"Ended unknown span {execution_id} for {agent_name}",
                extra={"context": {"agent": agent_name, "execution_id": execution_id}},
            )
        self._record_telemetry(metrics)
        self._check_thresholds(metrics)
        return metrics

    def _record_telemetry(self, metrics: ExecutionMetrics) -> None:
        tags = {"agent": metrics.agent_name, "success": str(metrics.success).lower()}
        self.logger_manager.log_metric("agent.executions", 1, MetricType.COUNTER, tags)
        self.logger_manager.log_metric(
            "agent.execution_time", metrics.execution_time, MetricType.HISTOGRAM, tags
        )
        if metrics.token_usage is not None:
            self.logger_manager.log_metric(
                "agent.tokens", metrics.token_usage.total, MetricType.COUNTER, tags
            )

    def _check_thresholds(self, metrics: ExecutionMetrics) -> None:
        context = {
            "agent": metrics.agent_name,
            "execution_id": metrics.execution_id,
            "execution_time": round(metrics.execution_time, 3),
        }
        if metrics.execution_time > self.policy.latency_critical:
            self.logger.error(
                f"{metrics.agent_name} took {metrics.execution_time:.2f}s "
                f"(critical threshold {self.policy.latency_critical}s)",
                extra={"context": context},
            )
        elif metrics.execution_time > self.policy.latency_warning:
            self.logger.warning(
                f"{metrics.agent_name} took {metrics.execution_time:.2f}s "
                f"(warning threshold {self.policy.latency_warning}s)",
                extra={"context": context},
            )

    def spans(self, agent_name: str) -> list[ExecutionMetrics]:
        with self._lock:
            return list(self._spans.get(agent_name, ()))

    def _all_spans(self) -> tuple[dict[str, list[ExecutionMetrics]], int]:
        with self._lock:
            return (
                {name: list(buffer) for name, buffer in self._spans.items()},
                len(self._open),
            )

    def _aggregate(
        self, agent_name: str, spans: list[ExecutionMetrics]
    ) -> AgentMetrics:
        if not spans:
            return AgentMetrics(agent=agent_name)
        durations = sorted(span.execution_time for span in spans)
        successes = sum(1 for span in spans if span.success)
        confidences = [span.confidence for span in spans if span.confidence is not None]
        usages = [span.token_usage for span in spans if span.token_usage is not None]
        totals = [usage.total for usage in usages]
        total_tokens = sum(totals)
        return AgentMetrics(
            agent=agent_name,
            total_executions=len(spans),
            avg_execution_time=mean(durations),
            p95_execution_time=_percentile(durations, 0.95),
            p99_execution_time=_percentile(durations, 0.99),
            success_rate=successes / len(spans),
            error_rate=(len(spans) - successes) / len(spans),
            avg_confidence=mean(confidences) if confidences else 0.0,
            total_token_usage=total_tokens,
            avg_prompt_tokens=mean(u.prompt for u in usages) if usages else 0.0,
            avg_total_tokens=mean(totals) if totals else 0.0,
            token_usage_stddev=pstdev(totals) if len(totals) > 1 else 0.0,
            cost_estimate=total_tokens * self.policy.cost_per_token,
        )

    def get_agent_metrics(self, agent_name: str) -> AgentMetrics:
        return self._aggregate(agent_name, self.spans(agent_name))

    def get_all_agent_metrics(self) -> dict[str, AgentMetrics]:
        spans_by_agent, _ = self._all_spans()
        return {
            name: self._aggregate(name, spans)
            for name, spans in sorted(spans_by_agent.items())
        }

    def _classify_health(self, error_rate: float, avg_latency: float) -> HealthStatus:
        if (
            error_rate > self.policy.error_rate_critical
            or avg_latency > self.policy.latency_critical
        ):
            return HealthStatus.UNHEALTHY
        if (
            error_rate > self.policy.error_rate_warning
            or avg_latency > self.policy.latency_warning
        ):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def get_system_metrics(self) -> SystemMetrics:
        """Totals across every retained span; error_rate is failures / total exactly."""
        spans_by_agent, in_flight = self._all_spans()
        spans = [span for bucket in spans_by_agent.values() for span in bucket]
        if not spans:
            return SystemMetrics(in_flight=in_flight)
        total_time = sum(span.execution_time for span in spans)
        failures = sum(1 for span in spans if not span.success)
        total_tokens = sum(span.token_usage.total for span in spans if span.token_usage)
        error_rate = failures / len(spans)
        avg_response = total_time / len(spans)
        return SystemMetrics(
            total_execution_time=total_time,
            avg_response_time=avg_response,
            total_token_usage=total_tokens,
            total_cost=total_tokens * self.policy.cost_per_token,
            total_executions=len(spans),
            error_rate=error_rate,
            active_agents=sum(1 for bucket in spans_by_agent.values() if bucket),
            in_flight=in_flight,
            health_status=self._classify_health(error_rate, avg_response),
        )

    def get_optimization_recommendations(self) -> list[OptimizationRecommendation]:
        """Rule-based hints, most severe first."""
        recommendations: list[OptimizationRecommendation] = []
        for name, metrics in self.get_all_agent_metrics().items():
            recommendations.extend(self._recommend_for_agent(name, metrics))

        system = self.get_system_metrics()
        if (
            system.total_executions
            and system.error_rate > self.policy.error_rate_warning
        ):
            recommendations.append(
                OptimizationRecommendation(
                    issue=f"System error rate is {system.error_rate:.1%}",
                    severity=self._severity(
                        system.error_rate,
                        self.policy.error_rate_warning,
                        self.policy.error_rate_critical,
                    ),
                    recommendation=(
                        "Review upstream provider health and breaker thresholds "
                        "across agents"
                    ),
                    category=RecommendationCategory.RELIABILITY,
                    expected_improvement="Fewer degraded pipeline runs",
                )
            )
        return sorted(recommendations, key=lambda rec: _SEVERITY_ORDER[rec.severity])

    def _recommend_for_agent(
        self, name: str, metrics: AgentMetrics
    ) -> Iterable[OptimizationRecommendation]:
        if metrics.total_executions == 0:
            return
        if metrics.avg_execution_time > self.policy.latency_warning:
            yield OptimizationRecommendation(
                issue=(
                    f"{name} averages {metrics.avg_execution_time:.2f}s per execution"
                ),
                severity=self._severity(
                    metrics.avg_execution_time,
                    self.policy.latency_warning,
                    self.policy.latency_critical,
                ),
                recommendation=(
                    f"Cache {name} results and trim its prompt to reduce latency"
                ),
                category=RecommendationCategory.PERFORMANCE,
                agent=name,
                expected_improvement="Near-zero latency on repeated inputs",
            )
        if metrics.error_rate > self.policy.error_rate_warning:
            yield OptimizationRecommendation(
                issue=f"{name} fails {metrics.error_rate:.1%} of executions",
                severity=self._severity(
                    metrics.error_rate,
                    self.policy.error_rate_warning,
                    self.policy.error_rate_critical,
                ),
                recommendation=(
                    f"Tune the circuit breaker threshold and retry policy for {name}"
                ),
                category=RecommendationCategory.RELIABILITY,
                agent=name,
                expected_improvement="Faster failover and fewer wasted retries",
            )
        if (
            metrics.total_executions >= self.policy.min_samples_for_variation
            and metrics.avg_total_tokens > 0
        ):
            variation = metrics.token_usage_stddev / metrics.avg_total_tokens
            if variation > self.policy.token_variation_threshold:
                yield OptimizationRecommendation(
                    issue=(
                        f"{name} token usage varies by {variation:.0%} between runs"
                    ),
                    severity=IssueSeverity.WARNING,
                    recommendation=(
                        f"Normalize transcript input and prompts for {name}"
                    ),
                    category=RecommendationCategory.COST,
                    agent=name,
                    expected_improvement="More predictable cost and better cache reuse",
                )

    @staticmethod
    def _severity(value: float, warning: float, critical: float) -> IssueSeverity:
        if value > critical:
            return IssueSeverity.CRITICAL
        if value > warning:
            return IssueSeverity.WARNING
        return IssueSeverity.INFO

    def health_check(self) -> MonitorHealth:
        system = self.get_system_metrics()
        issues: list[str] = []
        if system.error_rate > self.policy.error_rate_warning:
            issues.append(f"System error rate {system.error_rate:.1%}")
        if system.avg_response_time > self.policy.latency_warning:
            issues.append(f"Average response time {system.avg_response_time:.2f}s")
        for name, metrics in self.get_all_agent_metrics().items():
            if metrics.error_rate > self.policy.error_rate_critical:
                issues.append(f"{name} error rate {metrics.error_rate:.1%}")
            if metrics.avg_execution_time > self.policy.latency_critical:
                issues.append(
                    f"{name} average execution time {metrics.avg_execution_time:.2f}s"
                )
        return MonitorHealth(status=system.health_status, issues=issues)

    def reset(self) -> None:
        with self._lock:
            self._open.clear()
            self._spans.clear()
        self.logger.debug("Performance monitor reset")


__all__ = ["PerformanceMonitor"]
