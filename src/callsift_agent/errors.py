"""Exception taxonomy raised by agents and by the reliability layer."""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """Base class for failures an agent (or the layer around it) reports."""

    code = "AGENT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        agent_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.agent_name = agent_name
        self.details = dict(details or {})

    def __str__(self) -> str:
        if self.agent_name:
            return f"{self.code} [{self.agent_name}]: {self.message}"
        return f"{self.code}: {self.message}"


class TransientError(AgentError):
    """Retryable failure: timeout, network fault, upstream rate limit."""

    code = "TRANSIENT"


class PermanentError(AgentError):
    """Non-retryable failure: malformed input, schema violation, auth."""

    code = "PERMANENT"


class CircuitOpenError(AgentError):
    """The agent was short-circuited by its breaker and never attempted."""

    code = "CIRCUIT_OPEN"

    def __init__(self, agent_name: str, retry_after: float | None = None) -> None:
        super().__init__(
            "circuit breaker is open",
            agent_name=agent_name,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class PipelineTimeoutError(AgentError):
    """The pipeline-level deadline expired while the agent was in flight."""

    code = "TIMEOUT"


class ManifestError(PermanentError):
    """Validation configuration is inconsistent with the known output schema."""

    code = "MANIFEST_ERROR"


__all__ = [
    "AgentError",
    "TransientError",
    "PermanentError",
    "CircuitOpenError",
    "PipelineTimeoutError",
    "ManifestError",
]
