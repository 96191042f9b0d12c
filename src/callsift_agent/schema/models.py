"""Strict Pydantic schemas for execution metrics, results, and reports."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any

from pydantic import Field

from callsift_agent.enums import (
    CircuitState,
    DegradationLevel,
    ErrorClass,
    HealthStatus,
    IssueSeverity,
    RecommendationCategory,
    RecoveryStrategy,
)
from callsift_agent.schema.base import FrozenModel
from callsift_agent.schema.outputs import AgentOutput, TokenUsage


class AgentDescriptor(FrozenModel):
    """Identity of an agent as seen by the orchestrator."""

    name: Annotated[str, Field(min_length=1)]
    version: Annotated[str, Field(min_length=1)]
    dependencies: tuple[str, ...] = ()


class CallMetadata(FrozenModel):
    call_id: Annotated[str, Field(min_length=1)]
    organization_id: str | None = None
    call_date: datetime | None = None
    timezone: str | None = None


class ExecutionMetrics(FrozenModel):
    """A sealed execution span."""

    agent_name: str
    execution_id: str
    started_at: datetime
    ended_at: datetime
    execution_time: float = Field(..., ge=0.0, description="Seconds")
    success: bool
    token_usage: TokenUsage | None = None
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    error: str | None = None


class AgentMetrics(FrozenModel):
    """Aggregate view over one agent's retained spans."""

    agent: str
    total_executions: int = 0
    avg_execution_time: float = 0.0
    p95_execution_time: float = 0.0
    p99_execution_time: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    avg_confidence: float = 0.0
    total_token_usage: int = 0
    avg_prompt_tokens: float = 0.0
    avg_total_tokens: float = 0.0
    token_usage_stddev: float = 0.0
    cost_estimate: float = 0.0


class SystemMetrics(FrozenModel):
    total_execution_time: float = 0.0
    avg_response_time: float = 0.0
    total_token_usage: int = 0
    total_cost: float = 0.0
    total_executions: int = 0
    error_rate: float = 0.0
    active_agents: int = 0
    in_flight: int = 0
    health_status: HealthStatus = HealthStatus.HEALTHY


class OptimizationRecommendation(FrozenModel):
    issue: str
    severity: IssueSeverity
    recommendation: str
    category: RecommendationCategory
    agent: str | None = None
    expected_improvement: str | None = None


class MonitorHealth(FrozenModel):
    status: HealthStatus
    issues: list[str] = Field(default_factory=list)


class RecoveryDecision(FrozenModel):
    """What error recovery decided for one failed attempt."""

    strategy: RecoveryStrategy
    success: bool
    degradation_level: DegradationLevel
    error_class: ErrorClass
    delay: float = Field(0.0, ge=0.0, description="Seconds to wait before retrying")
    attempt: int = Field(1, ge=1)


class BreakerSnapshot(FrozenModel):
    state: CircuitState
    consecutive_failures: int
    failure_threshold: int
    cooldown: float
    opened_at: float | None = None
    retry_at: float | None = None


class ErrorCount(FrozenModel):
    total: int = 0
    last_hour: int = 0
    last_24h: int = 0
    by_class: dict[str, int] = Field(default_factory=dict)


class RecoveryStatistics(FrozenModel):
    circuit_breakers: dict[str, BreakerSnapshot] = Field(default_factory=dict)
    error_counts: dict[str, ErrorCount] = Field(default_factory=dict)
    fallback_agents: list[str] = Field(default_factory=list)


class RecoveryHealth(FrozenModel):
    healthy: bool
    issues: list[str] = Field(default_factory=list)


class AgentResult(FrozenModel):
    """Composed outcome of one `AgentOptimizer.execute` call."""

    agent_name: str
    output: AgentOutput | None = None
    degradation_level: DegradationLevel = DegradationLevel.NONE
    metrics: ExecutionMetrics | None = None
    cache_hit: bool = False
    attempts: int = 0
    error_class: ErrorClass | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return (
            self.degradation_level is DegradationLevel.NONE and self.output is not None
        )


class OptimizerMetrics(FrozenModel):
    cache_hits: int = 0
    cache_misses: int = 0
    single_flight_joins: int = 0
    prompt_tokens_saved: int = 0
    execution_time_saved: float = 0.0
    cost_saved: float = 0.0


class CacheHitSummary(FrozenModel):
    agent: str
    hits: int
    age: float


class CacheStatistics(FrozenModel):
    size: int = 0
    hit_rate: float = 0.0
    top_hits: list[CacheHitSummary] = Field(default_factory=list)


class ValidationIssue(FrozenModel):
    field: str
    severity: IssueSeverity
    description: str
    suggestion: str | None = None
    affected_agents: tuple[str, ...] = ()


class ConflictRecord(FrozenModel):
    check: str
    field1: str
    field2: str
    value1: Any = None
    value2: Any = None
    resolution: str | None = None


class ValidationStatus(FrozenModel):
    is_valid: bool
    completeness: float = Field(..., ge=0.0, le=1.0)


class DataQuality(FrozenModel):
    missing_fields: list[str] = Field(default_factory=list)
    conflicting_data: list[ConflictRecord] = Field(default_factory=list)
    quality_score: float = Field(..., ge=0.0, le=100.0)


class ValidationReport(FrozenModel):
    validation_status: ValidationStatus
    confidence: float = Field(..., ge=0.0, le=1.0)
    issues: list[ValidationIssue] = Field(default_factory=list)
    cross_agent_checks: dict[str, bool] = Field(default_factory=dict)
    data_quality: DataQuality
    field_confidence: Mapping[str, float] = Field(default_factory=dict)

    @property
    def critical_issues(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.CRITICAL]
