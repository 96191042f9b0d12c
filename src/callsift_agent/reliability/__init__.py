"""Circuit breaking, retry scheduling and graceful degradation."""

from __future__ import annotations

from .backoff import CancellationToken, backoff_delay, cancellable_sleep
from .circuit_breaker import CircuitBreaker
from .failure import FAILURE_PROFILES, FailureProfile, classify_error
from .policy import ReliabilityPolicy
from .recovery import ErrorRecoverySystem

__all__ = [
    "FAILURE_PROFILES",
    "CancellationToken",
    "CircuitBreaker",
    "ErrorRecoverySystem",
    "FailureProfile",
    "ReliabilityPolicy",
    "backoff_delay",
    "cancellable_sleep",
    "classify_error",
]
