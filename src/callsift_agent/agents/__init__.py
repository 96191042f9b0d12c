"""Agent capability and the base class extraction agents derive from."""

from __future__ import annotations

from .base import DEFAULT_AGENT_TIMEOUT, Agent, BaseAgent

__all__ = ["DEFAULT_AGENT_TIMEOUT", "Agent", "BaseAgent"]
