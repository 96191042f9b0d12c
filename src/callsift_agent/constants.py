"""Global constants shared by the reliability layer."""

from __future__ import annotations

API_VERSION = "1.0"
"""Version of the public `execute`/`run` surface consumed by pipeline drivers."""
CACHE_KEY_VERSION = "1"
"""Bumped whenever input canonicalization changes so stale keys stop matching."""
DEFAULT_RING_BUFFER_SIZE = 200
"""Spans retained per agent by the performance monitor."""
ERROR_HISTORY_LIMIT = 100
"""Errors kept per agent for the time-windowed counts in recovery statistics."""
LAST_SUCCESS_LIMIT = 256
"""Agents whose last successful output the recovery system keeps for fallback."""
