"""Resolved runtime settings handed to `ReliabilityServices.create`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from callsift_agent.config.defaults import RELIABILITY_DEFAULTS
from callsift_agent.reliability.policy import ReliabilityPolicy


@dataclass
class ReliabilitySettings:
    """Policy plus the few process-level knobs that live outside the YAML file."""

    policy: ReliabilityPolicy = field(default_factory=ReliabilityPolicy)
    pipeline_timeout: float = RELIABILITY_DEFAULTS["pipeline_timeout"]
    log_level: str = RELIABILITY_DEFAULTS["log_level"]
    policy_path: Path | None = None

    def __post_init__(self) -> None:
        if self.pipeline_timeout <= 0:
            raise ValueError("pipeline_timeout must be positive")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_policy_file(cls, path: Path | str) -> ReliabilitySettings:
        resolved = Path(path)
        return cls(policy=ReliabilityPolicy.load(resolved), policy_path=resolved)
