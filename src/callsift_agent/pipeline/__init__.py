"""Pipeline driver running agents as a dependency graph."""

from __future__ import annotations

from .runner import PipelineReport, PipelineRunner

__all__ = ["PipelineReport", "PipelineRunner"]
