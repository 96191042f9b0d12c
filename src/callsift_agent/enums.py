"""Centralized semantic enums for the reliability layer."""

from __future__ import annotations

from enum import Enum


class AgentName(str, Enum):
    """Well-known extraction agents participating in a call pipeline."""

    CLASSIFICATION = "classification"
    SPEAKER_IDENTIFICATION = "speaker_identification"
    LOAD_EXTRACTION = "load_extraction"
    RATE_NEGOTIATION = "rate_negotiation"
    SIMPLE_RATE_EXTRACTION = "simple_rate_extraction"
    CARRIER_INFORMATION = "carrier_information"
    SHIPPER_INFORMATION = "shipper_information"
    TEMPORAL_RESOLUTION = "temporal_resolution"
    SUMMARY = "summary"


class CallType(str, Enum):
    """Primary call classifications emitted by the classification agent."""

    NEW_BOOKING = "new_booking"
    CARRIER_QUOTE = "carrier_quote"
    CHECK_CALL = "check_call"
    RENEGOTIATION = "renegotiation"
    CALLBACK_ACCEPTANCE = "callback_acceptance"
    WRONG_NUMBER = "wrong_number"
    VOICEMAIL = "voicemail"
    UNKNOWN = "unknown"


class CircuitState(str, Enum):
    """States of a per-agent circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ErrorClass(str, Enum):
    """Classification applied to every failure handed to error recovery."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"


class RecoveryStrategy(str, Enum):
    """What the recovery system tells the executor to do next."""

    RETRY_WITH_BACKOFF = "retry-with-backoff"
    DEGRADE = "degrade"
    FAIL_FAST = "fail-fast"


class DegradationLevel(str, Enum):
    """Severity of a coped-with failure, ordered from mildest to worst."""

    NONE = "none"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _DEGRADATION_ORDER.index(self)


_DEGRADATION_ORDER = (
    DegradationLevel.NONE,
    DegradationLevel.PARTIAL,
    DegradationLevel.SKIPPED,
    DegradationLevel.FAILED,
)


class HealthStatus(str, Enum):
    """Three-level health classification used by dashboards."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class IssueSeverity(str, Enum):
    """Severity of a validation issue or optimization recommendation."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class RecommendationCategory(str, Enum):
    """Area an optimization recommendation targets."""

    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    COST = "cost"


class PipelineStatus(str, Enum):
    """Overall outcome of a pipeline run."""

    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ConfidenceLevel(str, Enum):
    """Buckets that map floating-point confidences to qualitative levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def for_confidence(cls, confidence: float) -> ConfidenceLevel:
        if confidence > 0.8:
            return cls.HIGH
        if confidence > 0.5:
            return cls.MEDIUM
        return cls.LOW
