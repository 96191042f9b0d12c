from __future__ import annotations

import pytest
from tests.utils.fakes import FakeClock

from callsift_agent.config.settings import ReliabilitySettings
from callsift_agent.reliability.policy import ReliabilityPolicy, RetryPolicy
from callsift_agent.services import ReliabilityServices
from callsift_agent.utilities.logger_manager import LoggerConfig, LoggerManager


@pytest.fixture
def logger_manager() -> LoggerManager:
    return LoggerManager(LoggerConfig(log_level="DEBUG"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> ReliabilityPolicy:
    # Zero backoff keeps retry tests instantaneous.
    return ReliabilityPolicy(retry=RetryPolicy(base_delay=0.0, max_delay=0.0))


@pytest.fixture
def services(
    policy: ReliabilityPolicy, logger_manager: LoggerManager, clock: FakeClock
) -> ReliabilityServices:
    settings = ReliabilitySettings(policy=policy, pipeline_timeout=5.0)
    return ReliabilityServices.create(settings, logger_manager, clock=clock)
