"""Configuration defaults, environment overrides and resolved settings."""

from __future__ import annotations

from .defaults import RELIABILITY_DEFAULTS
from .env import load_environment, settings_from_env
from .settings import ReliabilitySettings

__all__ = [
    "RELIABILITY_DEFAULTS",
    "ReliabilitySettings",
    "load_environment",
    "settings_from_env",
]
