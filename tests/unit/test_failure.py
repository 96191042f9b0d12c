from __future__ import annotations

import asyncio

import pytest

from callsift_agent.enums import DegradationLevel, ErrorClass
from callsift_agent.errors import (
    CircuitOpenError,
    ManifestError,
    PermanentError,
    PipelineTimeoutError,
    TransientError,
)
from callsift_agent.reliability.failure import (
    FAILURE_PROFILES,
    classify_error,
    failure_profile_for,
)


def test_failure_profiles_cover_all_classes() -> None:
    assert set(FAILURE_PROFILES) == set(ErrorClass)
    for error_class in ErrorClass:
        profile = failure_profile_for(error_class)
        assert isinstance(profile.retryable, bool)
        assert isinstance(profile.counts_against_breaker, bool)


def test_only_transient_failures_are_retryable() -> None:
    retryable = {cls for cls, profile in FAILURE_PROFILES.items() if profile.retryable}
    assert retryable == {ErrorClass.TRANSIENT}


def test_timeouts_are_forced_to_skipped_and_not_counted() -> None:
    profile = failure_profile_for(ErrorClass.TIMEOUT)
    assert profile.forced_level is DegradationLevel.SKIPPED
    assert not profile.counts_against_breaker
    assert not failure_profile_for(ErrorClass.CIRCUIT_OPEN).counts_against_breaker


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (TransientError("upstream busy"), ErrorClass.TRANSIENT),
        (PermanentError("bad input"), ErrorClass.PERMANENT),
        (ManifestError("unknown field"), ErrorClass.PERMANENT),
        (CircuitOpenError("rates", 12.0), ErrorClass.CIRCUIT_OPEN),
        (PipelineTimeoutError("deadline"), ErrorClass.TIMEOUT),
        (asyncio.CancelledError(), ErrorClass.TIMEOUT),
        (TimeoutError(), ErrorClass.TRANSIENT),
        (ConnectionResetError(), ErrorClass.TRANSIENT),
        (ValueError("nope"), ErrorClass.PERMANENT),
        (KeyError("field"), ErrorClass.PERMANENT),
        (RuntimeError("HTTP 503 Service Unavailable"), ErrorClass.TRANSIENT),
        (RuntimeError("rate limit exceeded"), ErrorClass.TRANSIENT),
        (RuntimeError("401 Unauthorized"), ErrorClass.PERMANENT),
        (RuntimeError("malformed JSON in response"), ErrorClass.PERMANENT),
        (RuntimeError("something odd happened"), ErrorClass.PERMANENT),
    ],
)
def test_classify_error(error: BaseException, expected: ErrorClass) -> None:
    assert classify_error(error) is expected


def test_agent_error_string_includes_code_and_agent() -> None:
    error = TransientError("provider returned 502", agent_name="summary")
    assert str(error) == "TRANSIENT [summary]: provider returned 502"
    assert CircuitOpenError("summary", 3.0).retry_after == 3.0
