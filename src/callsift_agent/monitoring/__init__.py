"""Execution span tracking and health reporting."""

from __future__ import annotations

from .monitor import PerformanceMonitor

__all__ = ["PerformanceMonitor"]
