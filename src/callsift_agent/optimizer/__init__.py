"""Result caching, call de-duplication and the composed execute path."""

from __future__ import annotations

from .cache import CacheEntry, ResultCache
from .canonical import cache_key, canonical_json, normalize
from .optimizer import AgentOptimizer
from .single_flight import SingleFlight

__all__ = [
    "AgentOptimizer",
    "CacheEntry",
    "ResultCache",
    "SingleFlight",
    "cache_key",
    "canonical_json",
    "normalize",
]
