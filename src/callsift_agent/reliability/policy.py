"""Reliability rules parsed from `reliability_policy.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from callsift_agent.constants import DEFAULT_RING_BUFFER_SIZE


@dataclass
class RetryPolicy:
    """Exponential backoff applied to transient failures."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    # Fraction of the computed delay added as random jitter; 0 disables it.
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("retry.max_retries must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("retry.jitter must be within [0, 1]")


@dataclass
class CircuitBreakerPolicy:
    """When a per-agent breaker opens and how long it stays open."""

    failure_threshold: int = 5
    cooldown: float = 60.0
    cooldown_multiplier: float = 2.0
    max_cooldown: float = 600.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("circuit_breaker.failure_threshold must be at least 1")
        if self.cooldown_multiplier < 1.0:
            raise ValueError("circuit_breaker.cooldown_multiplier must be >= 1")


@dataclass
class DegradationPolicy:
    """Which agents may be stubbed, skipped, or must surface failures."""

    allow_partial: bool = True
    # Serve the last successful output of a failed agent before its stub.
    use_last_success: bool = True
    partial_confidence_cap: float = 0.3
    critical_agents: list[str] = field(default_factory=lambda: ["classification"])
    optional_agents: list[str] = field(
        default_factory=lambda: ["temporal_resolution", "summary"]
    )
    max_errors_before_alert: int = 10


@dataclass
class CachePolicy:
    """Result cache sizing and freshness."""

    enabled: bool = True
    ttl: float = 300.0
    volatile_ttl: float = 60.0
    max_entries: int = 1000
    sweep_interval: float = 60.0

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError("cache.max_entries must be at least 1")


@dataclass
class MonitorPolicy:
    """Retention window and health thresholds of the performance monitor."""

    ring_buffer_size: int = DEFAULT_RING_BUFFER_SIZE
    error_rate_warning: float = 0.05
    error_rate_critical: float = 0.2
    latency_warning: float = 5.0
    latency_critical: float = 10.0
    cost_per_token: float = 0.00002
    token_variation_threshold: float = 0.5
    min_samples_for_variation: int = 5


@dataclass
class ValidationPolicy:
    """Tolerances and quality-score weights of the validation engine."""

    rate_tolerance: float = 25.0
    completeness_weight: float = 0.4
    confidence_weight: float = 0.4
    consistency_weight: float = 0.2

    def __post_init__(self) -> None:
        weights = (
            self.completeness_weight,
            self.confidence_weight,
            self.consistency_weight,
        )
        if any(weight < 0 for weight in weights):
            raise ValueError("validation weights must be non-negative")
        if abs(sum(weights) - 1.0) > 1e-6:
            raise ValueError("validation weights must sum to 1")


@dataclass
class ReliabilityPolicy:
    """Aggregates retry/breaker/degradation/cache/monitor/validation rules."""

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    circuit_breaker: CircuitBreakerPolicy = field(default_factory=CircuitBreakerPolicy)
    degradation: DegradationPolicy = field(default_factory=DegradationPolicy)
    cache: CachePolicy = field(default_factory=CachePolicy)
    monitor: MonitorPolicy = field(default_factory=MonitorPolicy)
    validation: ValidationPolicy = field(default_factory=ValidationPolicy)

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> ReliabilityPolicy:
        unknown = set(raw) - _SECTIONS
        if unknown:
            raise ValueError(f"Unknown policy sections: {sorted(unknown)}")
        return cls(
            retry=RetryPolicy(**raw.get("retry", {})),
            circuit_breaker=CircuitBreakerPolicy(**raw.get("circuit_breaker", {})),
            degradation=DegradationPolicy(**raw.get("degradation", {})),
            cache=CachePolicy(**raw.get("cache", {})),
            monitor=MonitorPolicy(**raw.get("monitor", {})),
            validation=ValidationPolicy(**raw.get("validation", {})),
        )

    @classmethod
    def load(cls, path: Path | str) -> ReliabilityPolicy:
        """Load overrides from a YAML policy file if it exists."""
        resolved = Path(path)
        if not resolved.is_file():
            return cls()
        raw = yaml.safe_load(resolved.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Policy file {resolved} must contain a mapping")
        return cls.from_mapping(raw)


_SECTIONS = frozenset(
    {"retry", "circuit_breaker", "degradation", "cache", "monitor", "validation"}
)


__all__ = [
    "CachePolicy",
    "CircuitBreakerPolicy",
    "DegradationPolicy",
    "MonitorPolicy",
    "ReliabilityPolicy",
    "RetryPolicy",
    "ValidationPolicy",
]
