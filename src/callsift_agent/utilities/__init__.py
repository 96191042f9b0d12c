"""Utility helpers shared across the reliability layer."""

from __future__ import annotations

from .logger_manager import CustomLogger, LoggerConfig, LoggerManager, MetricType

__all__ = [
    "CustomLogger",
    "LoggerConfig",
    "LoggerManager",
    "MetricType",
]
