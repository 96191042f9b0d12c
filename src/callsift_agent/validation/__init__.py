"""Cross-agent validation, completeness and quality scoring."""

from __future__ import annotations

from .checks import DEFAULT_CHECKS, CheckOutcome, CrossAgentCheck
from .engine import ValidationEngine
from .manifest import DEFAULT_MANIFEST, RequiredField, RequiredFieldManifest

__all__ = [
    "DEFAULT_CHECKS",
    "DEFAULT_MANIFEST",
    "CheckOutcome",
    "CrossAgentCheck",
    "RequiredField",
    "RequiredFieldManifest",
    "ValidationEngine",
]
