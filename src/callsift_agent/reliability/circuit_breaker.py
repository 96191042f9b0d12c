"""Per-agent circuit breaker driven by an explicit state transition table."""

from __future__ import annotations

from collections.abc import Callable
import threading
import time

from callsift_agent.enums import CircuitState
from callsift_agent.reliability.policy import CircuitBreakerPolicy
from callsift_agent.schema.models import BreakerSnapshot

_TRANSITIONS: dict[CircuitState, tuple[CircuitState, ...]] = {
    CircuitState.CLOSED: (CircuitState.OPEN,),
    CircuitState.OPEN: (CircuitState.HALF_OPEN,),
    CircuitState.HALF_OPEN: (CircuitState.CLOSED, CircuitState.OPEN),
}


class CircuitBreaker:
    """Consecutive-failure breaker with a single half-open probe.

    The open -> half_open move happens lazily inside `allow_request`; there
    is no timer. Every public method holds the breaker lock, so state
    changes are atomic per agent.
    """

    def __init__(
        self,
        agent_name: str,
        policy: CircuitBreakerPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.agent_name = agent_name
        self.policy = policy or CircuitBreakerPolicy()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._cooldown = self.policy.cooldown
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def _transition_to(self, target: CircuitState) -> None:
        allowed = _TRANSITIONS.get(self._state, ())
        if target not in allowed:
            raise RuntimeError(
                f"Invalid breaker transition {self._state.value} -> {target.value}"
            )
        self._state = target

    def _open(self) -> None:
        self._transition_to(CircuitState.OPEN)
        self._opened_at = self._clock()
        self._probe_in_flight = False

    def allow_request(self) -> bool:
        """Return True when a call may proceed, admitting at most one probe."""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                assert self._opened_at is not None
                if self._clock() < self._opened_at + self._cooldown:
                    return False
                self._transition_to(CircuitState.HALF_OPEN)
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def retry_after(self) -> float | None:
        """Seconds until the breaker will admit a probe; None when not open."""
        with self._lock:
            if self._state is not CircuitState.OPEN or self._opened_at is None:
                return None
            return max(0.0, self._opened_at + self._cooldown - self._clock())

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                self._cooldown = self.policy.cooldown
                self._opened_at = None
                self._probe_in_flight = False
            self._consecutive_failures = 0

    def record_failure(self) -> CircuitState:
        """Count a failure and return the resulting state."""
        with self._lock:
            self._consecutive_failures += 1
            if self._state is CircuitState.HALF_OPEN:
                self._cooldown = min(
                    self._cooldown * self.policy.cooldown_multiplier,
                    self.policy.max_cooldown,
                )
                self._open()
            elif (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.policy.failure_threshold
            ):
                self._open()
            return self._state

    def release_probe(self) -> None:
        """Give the half-open probe slot back when the probe ended without a verdict."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._cooldown = self.policy.cooldown
            self._probe_in_flight = False

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            retry_at = (
                self._opened_at + self._cooldown
                if self._state is CircuitState.OPEN and self._opened_at is not None
                else None
            )
            return BreakerSnapshot(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                failure_threshold=self.policy.failure_threshold,
                cooldown=self._cooldown,
                opened_at=self._opened_at,
                retry_at=retry_at,
            )


__all__ = ["CircuitBreaker"]
