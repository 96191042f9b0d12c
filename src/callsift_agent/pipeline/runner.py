"""Dependency-ordered, concurrent execution of a call pipeline with a deadline."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import time

from pydantic import Field

from callsift_agent.agents.base import Agent, agent_attribute
from callsift_agent.context import AgentContext
from callsift_agent.enums import DegradationLevel, ErrorClass, PipelineStatus
from callsift_agent.reliability.backoff import CancellationToken
from callsift_agent.schema.base import FrozenModel
from callsift_agent.schema.models import AgentResult, CallMetadata, ValidationReport
from callsift_agent.services import ReliabilityServices


class PipelineReport(FrozenModel):
    """Outcome of one pipeline run over one transcript."""

    status: PipelineStatus
    results: dict[str, AgentResult] = Field(default_factory=dict)
    validation: ValidationReport | None = None
    timed_out: bool = False
    duration: float = Field(0.0, ge=0.0)
    context: AgentContext = Field(..., exclude=True)

    @property
    def degraded_agents(self) -> list[str]:
        return sorted(
            name
            for name, result in self.results.items()
            if result.degradation_level is not DegradationLevel.NONE
        )


def _topological_order(agents: dict[str, Agent]) -> list[str]:
    """Kahn ordering; raises ValueError on unknown dependencies or cycles."""
    indegree = {name: 0 for name in agents}
    dependents: dict[str, list[str]] = {name: [] for name in agents}
    for name, agent in agents.items():
        for dependency in agent.dependencies:
            if dependency not in agents:
                raise ValueError(f"{name} depends on unknown agent {dependency!r}")
            indegree[name] += 1
            dependents[dependency].append(name)
    ready = [name for name, degree in indegree.items() if degree == 0]
    order: list[str] = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        for dependent in dependents[current]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)
    if len(order) != len(agents):
        cyclic = sorted(set(agents) - set(order))
        raise ValueError(f"Dependency cycle between agents: {cyclic}")
    return order


class PipelineRunner:
    """Runs every agent through the optimizer, then validates the context.

    Agents without a dependency edge between them run concurrently. An agent
    waits for its dependencies to settle and is skipped when a required one
    produced no output. When the pipeline deadline passes, in-flight agents
    are cancelled and recorded as skipped timeouts.
    """

    def __init__(
        self,
        services: ReliabilityServices,
        agents: Iterable[Agent],
        timeout: float | None = None,
        *,
        abort_on_critical_failure: bool = True,
    ) -> None:
        self.services = services
        self.agents: dict[str, Agent] = {}
        for agent in agents:
            if agent.name in self.agents:
                raise ValueError(f"Duplicate agent name {agent.name!r}")
            self.agents[agent.name] = agent
        self.order = _topological_order(self.agents)
        self.timeout = (
            timeout if timeout is not None else services.settings.pipeline_timeout
        )
        self.abort_on_critical_failure = abort_on_critical_failure
        self.logger_manager = services.logger_manager
        self.logger = self.logger_manager.get_logger()

    async def run(
        self, transcript: str, metadata: CallMetadata | None = None
    ) -> PipelineReport:
        context = AgentContext(transcript, metadata)
        token = CancellationToken()
        started = time.monotonic()
        with self.logger_manager.context(call_id=context.metadata.call_id):
            self.logger.info(
                f"Pipeline started with {len(self.agents)} agents",
                extra={"context": {"timeout": self.timeout}},
            )
            tasks: dict[str, asyncio.Task[AgentResult]] = {}
            for name in self.order:
                tasks[name] = asyncio.create_task(
                    self._run_agent(self.agents[name], context, tasks, token),
                    name=f"callsift-agent-{name}",
                )

            timed_out = False
            try:
                async with asyncio.timeout(self.timeout):
                    await asyncio.gather(*tasks.values(), return_exceptions=True)
            except TimeoutError:
                timed_out = True
                token.cancel("pipeline timeout")
                self.logger.warning(
                    f"Pipeline exceeded its {self.timeout}s deadline",
                    extra={"context": {"timeout": self.timeout}},
                )

            results = self._collect(tasks, context)
            validation = self.services.validation.validate(context)
            status = self._status(results, timed_out)
            report = PipelineReport(
                status=status,
                results=results,
                validation=validation,
                timed_out=timed_out,
                duration=time.monotonic() - started,
                context=context,
            )
            self.logger.info(
                f"Pipeline finished: {status.value}",
                extra={
                    "context": {
                        "duration": round(report.duration, 3),
                        "degraded": report.degraded_agents,
                        "quality_score": validation.data_quality.quality_score,
                    }
                },
            )
            return report

    async def _run_agent(
        self,
        agent: Agent,
        context: AgentContext,
        tasks: dict[str, asyncio.Task[AgentResult]],
        token: CancellationToken,
    ) -> AgentResult:
        upstream = [tasks[dependency] for dependency in agent.dependencies]
        if upstream:
            await asyncio.wait(upstream)

        if token.cancelled:
            return self._skip(agent.name, context, f"pipeline aborted: {token.reason}")
        required = agent_attribute(agent, "required_dependencies", None)
        if required is None:
            required = agent.dependencies
        missing = [name for name in required if not context.has_output(name)]
        if missing:
            return self._skip(
                agent.name, context, f"missing dependencies: {', '.join(missing)}"
            )

        result = await self.services.optimizer.execute(
            agent, None, context, cancellation=token
        )
        if (
            result.degradation_level is DegradationLevel.FAILED
            and self.abort_on_critical_failure
        ):
            token.cancel(f"critical agent {agent.name} failed")
        return result

    def _skip(self, name: str, context: AgentContext, reason: str) -> AgentResult:
        self.logger.info(
            f"Skipping {name}: {reason}", extra={"context": {"agent": name}}
        )
        context.record_degradation(name, DegradationLevel.SKIPPED)
        return AgentResult(
            agent_name=name,
            degradation_level=DegradationLevel.SKIPPED,
            error_message=reason,
        )

    def _collect(
        self,
        tasks: dict[str, asyncio.Task[AgentResult]],
        context: AgentContext,
    ) -> dict[str, AgentResult]:
        results: dict[str, AgentResult] = {}
        for name, task in tasks.items():
            if task.cancelled():
                context.record_degradation(name, DegradationLevel.SKIPPED)
                results[name] = AgentResult(
                    agent_name=name,
                    degradation_level=DegradationLevel.SKIPPED,
                    error_class=ErrorClass.TIMEOUT,
                    error_message="cancelled by pipeline timeout",
                )
                continue
            error = task.exception()
            if error is not None:
                self.logger.error(
                    f"Agent task {name} crashed: {error}",
                    extra={"context": {"agent": name}},
                )
                context.record_degradation(name, DegradationLevel.FAILED)
                results[name] = AgentResult(
                    agent_name=name,
                    degradation_level=DegradationLevel.FAILED,
                    error_message=str(error),
                )
                continue
            results[name] = task.result()
        return results

    @staticmethod
    def _status(results: dict[str, AgentResult], timed_out: bool) -> PipelineStatus:
        if timed_out:
            return PipelineStatus.TIMED_OUT
        levels = [result.degradation_level for result in results.values()]
        if DegradationLevel.FAILED in levels:
            return PipelineStatus.FAILED
        if any(level is not DegradationLevel.NONE for level in levels):
            return PipelineStatus.DEGRADED
        return PipelineStatus.COMPLETED


__all__ = ["PipelineReport", "PipelineRunner"]
