"""Loads `.env` files and applies `CALLSIFT_*` overrides to settings."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace
import os
from pathlib import Path
from typing import Any, TypeVar

from dotenv import load_dotenv

from callsift_agent.config.defaults import ENV_PREFIX, RELIABILITY_DEFAULTS
from callsift_agent.config.settings import ReliabilitySettings
from callsift_agent.reliability.policy import ReliabilityPolicy

T = TypeVar("T")

POLICY_PATH_VAR = f"{ENV_PREFIX}POLICY_PATH"
LOG_LEVEL_VAR = f"{ENV_PREFIX}LOG_LEVEL"
PIPELINE_TIMEOUT_VAR = f"{ENV_PREFIX}PIPELINE_TIMEOUT"
MAX_RETRIES_VAR = f"{ENV_PREFIX}MAX_RETRIES"
FAILURE_THRESHOLD_VAR = f"{ENV_PREFIX}FAILURE_THRESHOLD"
CACHE_TTL_VAR = f"{ENV_PREFIX}CACHE_TTL"


def load_environment(dotenv_path: str | Path | None = None) -> None:
    """Load `.env` files when available to seed `CALLSIFT_*` lookups."""
    path = Path(dotenv_path) if dotenv_path else Path(".env")
    if path.exists():
        load_dotenv(dotenv_path=path)


def _parse(
    environ: Mapping[str, str], name: str, parser: Callable[[str], T]
) -> T | None:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return parser(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


def settings_from_env(environ: Mapping[str, str] | None = None) -> ReliabilitySettings:
    """Build settings from the policy file named in the environment plus overrides."""
    env = os.environ if environ is None else environ
    policy_path = Path(
        env.get(POLICY_PATH_VAR) or str(RELIABILITY_DEFAULTS["policy_path"])
    )
    policy = ReliabilityPolicy.load(policy_path)

    max_retries = _parse(env, MAX_RETRIES_VAR, int)
    if max_retries is not None:
        policy.retry = replace(policy.retry, max_retries=max_retries)
    failure_threshold = _parse(env, FAILURE_THRESHOLD_VAR, int)
    if failure_threshold is not None:
        policy.circuit_breaker = replace(
            policy.circuit_breaker, failure_threshold=failure_threshold
        )
    cache_ttl = _parse(env, CACHE_TTL_VAR, float)
    if cache_ttl is not None:
        policy.cache = replace(policy.cache, ttl=cache_ttl)

    overrides: dict[str, Any] = {"policy": policy, "policy_path": policy_path}
    pipeline_timeout = _parse(env, PIPELINE_TIMEOUT_VAR, float)
    if pipeline_timeout is not None:
        overrides["pipeline_timeout"] = pipeline_timeout
    log_level = env.get(LOG_LEVEL_VAR)
    if log_level:
        overrides["log_level"] = log_level
    return ReliabilitySettings(**overrides)


__all__ = [
    "CACHE_TTL_VAR",
    "FAILURE_THRESHOLD_VAR",
    "LOG_LEVEL_VAR",
    "MAX_RETRIES_VAR",
    "PIPELINE_TIMEOUT_VAR",
    "POLICY_PATH_VAR",
    "load_environment",
    "settings_from_env",
]
