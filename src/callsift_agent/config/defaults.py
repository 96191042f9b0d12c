"""Explicit default settings for the reliability layer."""

from __future__ import annotations

from typing import Any

RELIABILITY_DEFAULTS: dict[str, Any] = {
    "policy_path": "reliability_policy.yaml",
    "log_level": "INFO",
    "pipeline_timeout": 120.0,
}

ENV_PREFIX = "CALLSIFT_"
