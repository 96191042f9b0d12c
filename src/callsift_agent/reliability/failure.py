"""Failure taxonomy: how each error class is retried, counted and degraded."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import re

from pydantic import ValidationError

from callsift_agent.enums import DegradationLevel, ErrorClass
from callsift_agent.errors import (
    CircuitOpenError,
    PermanentError,
    PipelineTimeoutError,
    TransientError,
)


@dataclass(frozen=True)
class FailureProfile:
    retryable: bool
    counts_against_breaker: bool
    forced_level: DegradationLevel | None = None


FAILURE_PROFILES: dict[ErrorClass, FailureProfile] = {
    ErrorClass.TRANSIENT: FailureProfile(
        retryable=True,
        counts_against_breaker=True,
    ),
    ErrorClass.PERMANENT: FailureProfile(
        retryable=False,
        counts_against_breaker=True,
    ),
    ErrorClass.CIRCUIT_OPEN: FailureProfile(
        retryable=False,
        counts_against_breaker=False,
    ),
    ErrorClass.TIMEOUT: FailureProfile(
        retryable=False,
        counts_against_breaker=False,
        forced_level=DegradationLevel.SKIPPED,
    ),
}

_TRANSIENT_PATTERN = re.compile(
    r"timeout|timed out|network|econnrefused|econnreset|etimedout|"
    r"rate limit|too many requests|\b(429|500|502|503|504)\b|unavailable",
    re.IGNORECASE,
)
_PERMANENT_PATTERN = re.compile(
    r"invalid|malformed|schema|unauthori[sz]ed|forbidden|\b(400|401|403|404|422)\b",
    re.IGNORECASE,
)


def failure_profile_for(error_class: ErrorClass) -> FailureProfile:
    profile = FAILURE_PROFILES.get(error_class)
    if profile is None:
        raise RuntimeError(f"Missing failure profile for {error_class.value}")
    return profile


def classify_error(error: BaseException) -> ErrorClass:
    """Map an exception raised around an agent call to an `ErrorClass`.

    Typed errors win; otherwise the message is matched against known
    transient and permanent markers. Anything unrecognized is permanent so
    it is never retried blindly.
    """
    if isinstance(error, CircuitOpenError):
        return ErrorClass.CIRCUIT_OPEN
    if isinstance(error, (PipelineTimeoutError, asyncio.CancelledError)):
        return ErrorClass.TIMEOUT
    if isinstance(error, TransientError):
        return ErrorClass.TRANSIENT
    if isinstance(error, PermanentError):
        return ErrorClass.PERMANENT
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT
    if isinstance(error, (ValidationError, ValueError, TypeError, KeyError)):
        return ErrorClass.PERMANENT
    message = str(error)
    if _PERMANENT_PATTERN.search(message):
        return ErrorClass.PERMANENT
    if isinstance(error, OSError) or _TRANSIENT_PATTERN.search(message):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


if set(FAILURE_PROFILES.keys()) != set(ErrorClass):
    missing = set(ErrorClass) - set(FAILURE_PROFILES.keys())
    extra = set(FAILURE_PROFILES.keys()) - set(ErrorClass)
    raise RuntimeError(
        "Failure profiles must cover all error classes: "
        f"missing={sorted(cls.value for cls in missing)} "
        f"extra={sorted(cls.value for cls in extra)}"
    )


__all__ = [
    "FAILURE_PROFILES",
    "FailureProfile",
    "classify_error",
    "failure_profile_for",
]
