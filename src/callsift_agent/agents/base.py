"""Agent capability consumed by the reliability layer.

The reliability layer never looks inside an agent: it only needs a name, a
version, the agents it depends on, and an async `execute(context)` that
returns a typed `AgentOutput` or raises an `AgentError` subclass.
`BaseAgent` supplies the scheduling attributes the optimizer and pipeline
runner read (`optional`, `critical`, `volatile`, `timeout`), the canonical
cache input, and an optional degraded stub.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Protocol, runtime_checkable

from callsift_agent.context import AgentContext
from callsift_agent.schema.models import AgentDescriptor
from callsift_agent.schema.outputs import AgentOutput
from callsift_agent.utilities.logger_manager import LoggerManager

DEFAULT_AGENT_TIMEOUT = 30.0


@runtime_checkable
class Agent(Protocol):
    """Structural contract every executable agent satisfies."""

    name: str
    version: str
    dependencies: tuple[str, ...]

    async def execute(self, context: AgentContext) -> AgentOutput: ...


class BaseAgent(ABC):
    """Convenience base class carrying defaults for the scheduling attributes.

    Subclasses set `name` (and usually `version` and `dependencies`) as class
    attributes and implement `execute`.
    """

    name: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    dependencies: ClassVar[tuple[str, ...]] = ()
    # Dependencies whose absence skips this agent; None means all of them.
    required_dependencies: ClassVar[tuple[str, ...] | None] = None
    optional: ClassVar[bool] = False
    critical: ClassVar[bool] = False
    volatile: ClassVar[bool] = False
    timeout: ClassVar[float] = DEFAULT_AGENT_TIMEOUT

    def __init__(self, logger_manager: LoggerManager | None = None) -> None:
        if not self.name:
            raise TypeError(f"{type(self).__name__} must define a non-empty name")
        self.logger_manager = logger_manager
        self.logger = logger_manager.get_logger() if logger_manager else None

    @property
    def descriptor(self) -> AgentDescriptor:
        return AgentDescriptor(
            name=self.name, version=self.version, dependencies=self.dependencies
        )

    @abstractmethod
    async def execute(self, context: AgentContext) -> AgentOutput:
        """Produce this agent's output from the transcript and dependency outputs."""

    def build_input(self, context: AgentContext) -> dict[str, Any]:
        """Return the input the agent consumes, used as the canonical cache input.

        The default is the transcript plus the dumped outputs of every declared
        dependency that is present in the context.
        """
        upstream: dict[str, Any] = {}
        for dependency in self.dependencies:
            output = context.get_agent_output(dependency)
            if output is not None:
                upstream[dependency] = output.model_dump(mode="json")
        return {"transcript": context.transcript, "upstream": upstream}

    def default_output(self) -> AgentOutput | None:
        """Best-effort stub used for `partial` degradation; None when unavailable."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"


def agent_attribute(agent: Agent, attribute: str, default: Any) -> Any:
    """Read an optional scheduling attribute from agents that are not BaseAgents."""
    return getattr(agent, attribute, default)


def build_agent_input(agent: Agent, context: AgentContext) -> Any:
    builder = getattr(agent, "build_input", None)
    if callable(builder):
        return builder(context)
    return {"transcript": context.transcript}


def default_output_for(agent: Agent) -> AgentOutput | None:
    factory = getattr(agent, "default_output", None)
    if callable(factory):
        return factory()
    return None


__all__ = [
    "DEFAULT_AGENT_TIMEOUT",
    "Agent",
    "BaseAgent",
    "agent_attribute",
    "build_agent_input",
    "default_output_for",
]
