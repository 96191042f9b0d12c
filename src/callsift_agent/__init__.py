"""Reliability layer for multi-agent call transcript extraction."""

from __future__ import annotations

from callsift_agent.constants import API_VERSION

__all__ = ["API_VERSION"]
