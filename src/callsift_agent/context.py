"""Per-run state bag shared by every agent working on one call transcript."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import threading
import time
from typing import Any, TypeVar

from callsift_agent.enums import DegradationLevel
from callsift_agent.schema.models import CallMetadata
from callsift_agent.schema.outputs import AgentOutput

PayloadT = TypeVar("PayloadT")


class AgentContext:
    """Transcript, call metadata and the outputs agents have published so far.

    Every read and write goes through one lock held only for a dict
    operation, so writes to the same agent name are serialized and readers
    always see either the previous or the new output, never a mix.
    """

    def __init__(
        self,
        transcript: str,
        metadata: CallMetadata | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transcript = transcript
        self._metadata = metadata or CallMetadata(call_id="anonymous")
        self._outputs: dict[str, AgentOutput] = {}
        self._degradation: dict[str, DegradationLevel] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = clock()

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def metadata(self) -> CallMetadata:
        return self._metadata

    def set_agent_output(self, agent_name: str, output: AgentOutput) -> None:
        """Publish (or overwrite) the output for `agent_name`."""
        if not isinstance(output, AgentOutput):
            raise TypeError(
                f"Agent output for {agent_name} must be AgentOutput, "
                f"got {type(output).__name__}"
            )
        with self._lock:
            self._outputs[agent_name] = output

    def get_agent_output(self, agent_name: str) -> AgentOutput | None:
        with self._lock:
            return self._outputs.get(agent_name)

    def has_output(self, agent_name: str) -> bool:
        with self._lock:
            return agent_name in self._outputs

    def get_payload(
        self, agent_name: str, payload_type: type[PayloadT]
    ) -> PayloadT | None:
        """Typed payload of `agent_name`; None when absent or of another kind."""
        output = self.get_agent_output(agent_name)
        if output is None or not isinstance(output.payload, payload_type):
            return None
        return output.payload

    def agent_names(self) -> list[str]:
        with self._lock:
            return sorted(self._outputs)

    def snapshot(self) -> dict[str, AgentOutput]:
        """Point-in-time copy of every published output."""
        with self._lock:
            return dict(self._outputs)

    def record_degradation(self, agent_name: str, level: DegradationLevel) -> None:
        with self._lock:
            self._degradation[agent_name] = level

    def degradation_for(self, agent_name: str) -> DegradationLevel | None:
        with self._lock:
            return self._degradation.get(agent_name)

    def degradations(self) -> Mapping[str, DegradationLevel]:
        with self._lock:
            return dict(self._degradation)

    def execution_summary(self) -> dict[str, Any]:
        """Counts per degradation level plus token totals for this run."""
        with self._lock:
            levels = list(self._degradation.values())
            outputs = list(self._outputs.values())
        total_tokens = sum(
            output.token_usage.total for output in outputs if output.token_usage
        )
        return {
            "total_agents": len(levels),
            "completed": levels.count(DegradationLevel.NONE),
            "partial": levels.count(DegradationLevel.PARTIAL),
            "skipped": levels.count(DegradationLevel.SKIPPED),
            "failed": levels.count(DegradationLevel.FAILED),
            "total_tokens": total_tokens,
            "elapsed": self._clock() - self._started_at,
        }


__all__ = ["AgentContext"]
