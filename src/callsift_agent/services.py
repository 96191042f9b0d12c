"""Explicitly constructed reliability services sharing one policy and logger."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import time
from typing import Any

from callsift_agent.config.settings import ReliabilitySettings
from callsift_agent.monitoring.monitor import PerformanceMonitor
from callsift_agent.optimizer.cache import ResultCache
from callsift_agent.optimizer.optimizer import AgentOptimizer
from callsift_agent.reliability.recovery import ErrorRecoverySystem
from callsift_agent.utilities.logger_manager import LoggerConfig, LoggerManager
from callsift_agent.validation.engine import ValidationEngine
from callsift_agent.validation.manifest import RequiredFieldManifest


@dataclass
class ReliabilityServices:
    """Everything a pipeline run needs, wired together once per process or test."""

    settings: ReliabilitySettings
    logger_manager: LoggerManager
    recovery: ErrorRecoverySystem
    monitor: PerformanceMonitor
    cache: ResultCache
    optimizer: AgentOptimizer
    validation: ValidationEngine

    @classmethod
    def create(
        cls,
        settings: ReliabilitySettings | None = None,
        logger_manager: LoggerManager | None = None,
        *,
        manifest: RequiredFieldManifest | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> ReliabilityServices:
        settings = settings or ReliabilitySettings()
        logger_manager = logger_manager or LoggerManager(
            LoggerConfig(log_level=settings.log_level)
        )
        policy = settings.policy
        recovery = ErrorRecoverySystem(policy, logger_manager, clock=clock)
        monitor = PerformanceMonitor(policy.monitor, logger_manager, clock=clock)
        cache = ResultCache(policy.cache, logger_manager, clock=clock)
        optimizer = AgentOptimizer(recovery, monitor, cache, policy, logger_manager)
        validation = ValidationEngine(
            policy.validation, manifest=manifest, logger_manager=logger_manager
        )
        return cls(
            settings=settings,
            logger_manager=logger_manager,
            recovery=recovery,
            monitor=monitor,
            cache=cache,
            optimizer=optimizer,
            validation=validation,
        )

    def health_check(self) -> dict[str, Any]:
        """Combined monitor and recovery health for dashboards."""
        monitor_health = self.monitor.health_check()
        recovery_health = self.recovery.health_check()
        return {
            "status": monitor_health.status.value,
            "healthy": recovery_health.healthy and not monitor_health.issues,
            "issues": [*monitor_health.issues, *recovery_health.issues],
            "cache": self.optimizer.get_cache_statistics().model_dump(),
        }

    def reset(self) -> None:
        """Drop all accumulated state; handy between tests sharing one container."""
        self.recovery.reset()
        self.monitor.reset()
        self.optimizer.clear_cache()
        self.optimizer.reset_metrics()


__all__ = ["ReliabilityServices"]
