"""Deterministic normalization and hashing of agent inputs for cache keys.

Normalization rules:

- strings are NFC-normalized, runs of whitespace collapse to one space and
  the ends are stripped; letter case is preserved because it can carry
  meaning (company names, MC numbers);
- mapping keys are stringified and sorted;
- sets and frozensets are sorted by their canonical JSON form, while lists
  and tuples keep their order;
- integral floats and Decimals collapse to ints so `2500.0`,
  `Decimal("2500.00")` and `2500` hash alike; other Decimals become their
  exact fixed-point string (`"2500.5"`), non-finite ones their `str`;
- pydantic models are dumped in JSON mode, dates become ISO strings, enums
  their values.

The key hashes the agent name, agent version, `CACHE_KEY_VERSION` and the
canonical JSON of the input, so bumping any of them invalidates old entries.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
import hashlib
import json
import re
from typing import Any
import unicodedata

from pydantic import BaseModel

from callsift_agent.constants import CACHE_KEY_VERSION

_WHITESPACE = re.compile(r"\s+")
_SEPARATOR = "\x1f"


def normalize_text(value: str) -> str:
    normalized = unicodedata.normalize("NFC", value)
    return _WHITESPACE.sub(" ", normalized).strip()


def _normalize_decimal(value: Decimal) -> int | str:
    if not value.is_finite():
        return str(value)
    if value == value.to_integral_value():
        return int(value)
    return format(value.normalize(), "f")


def normalize(value: Any) -> Any:
    """Return a JSON-compatible structure with canonical ordering and text."""
    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, str):
        return normalize_text(value)
    if isinstance(value, bool) or value is None or isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, Decimal):
        return _normalize_decimal(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {
            normalize_text(str(key)): normalize(item)
            for key, item in sorted(value.items(), key=lambda kv: str(kv[0]))
        }
    if isinstance(value, (set, frozenset)):
        return sorted((normalize(item) for item in value), key=canonical_json)
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def canonical_json(value: Any) -> str:
    return json.dumps(
        normalize(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def cache_key(agent_name: str, agent_version: str, agent_input: Any) -> str:
    """Stable sha256 key for `(agent_name, agent_version, normalized input)`."""
    material = _SEPARATOR.join(
        (agent_name, agent_version, CACHE_KEY_VERSION, canonical_json(agent_input))
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


__all__ = ["cache_key", "canonical_json", "normalize", "normalize_text"]
