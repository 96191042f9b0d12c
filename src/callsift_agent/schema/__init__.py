"""High-assurance schema models for agent outputs and reliability reports."""

from __future__ import annotations

from .models import (
    AgentDescriptor,
    AgentMetrics,
    AgentResult,
    CallMetadata,
    ExecutionMetrics,
    RecoveryDecision,
    SystemMetrics,
    ValidationIssue,
    ValidationReport,
)
from .outputs import AgentOutput, AgentPayload, DegradedPayload, TokenUsage

__all__ = [
    "AgentDescriptor",
    "AgentMetrics",
    "AgentOutput",
    "AgentPayload",
    "AgentResult",
    "CallMetadata",
    "DegradedPayload",
    "ExecutionMetrics",
    "RecoveryDecision",
    "SystemMetrics",
    "TokenUsage",
    "ValidationIssue",
    "ValidationReport",
]
