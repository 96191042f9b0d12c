from __future__ import annotations

from datetime import date
from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st
import pytest

from callsift_agent.enums import CallType
from callsift_agent.optimizer.canonical import (
    cache_key,
    canonical_json,
    normalize,
    normalize_text,
)

_TEXT = st.text(
    alphabet=st.characters(whitelist_categories=("Lu", "Ll", "Nd", "Po", "Zs"))
)


def test_normalize_text_collapses_whitespace_but_keeps_case() -> None:
    assert normalize_text("  Swift\t\tHaulers \n MC 123  ") == "Swift Haulers MC 123"


def test_normalize_sorts_keys_and_sets_and_collapses_floats() -> None:
    value = {
        "b": {3, 1, 2},
        "a": [2500.0, 2500.5],
        "when": date(2024, 5, 1),
        "type": CallType.NEW_BOOKING,
    }
    assert normalize(value) == {
        "a": [2500, 2500.5],
        "b": [1, 2, 3],
        "type": "new_booking",
        "when": "2024-05-01",
    }
    assert list(normalize(value)) == ["a", "b", "type", "when"]


def test_normalize_rejects_unknown_types() -> None:
    with pytest.raises(TypeError, match="Cannot canonicalize"):
        normalize(object())


def test_list_order_is_significant() -> None:
    assert canonical_json([1, 2]) != canonical_json([2, 1])


@given(_TEXT)
def test_cache_key_ignores_whitespace_noise(transcript: str) -> None:
    noisy = "  " + transcript.replace(" ", "   ") + "\n"
    assert cache_key("summary", "1.0.0", {"transcript": transcript}) == cache_key(
        "summary", "1.0.0", {"transcript": noisy}
    )


@given(st.dictionaries(_TEXT, st.integers(), max_size=8))
def test_cache_key_ignores_key_order(payload: dict[str, int]) -> None:
    reordered = dict(reversed(list(payload.items())))
    assert cache_key("summary", "1.0.0", payload) == cache_key(
        "summary", "1.0.0", reordered
    )


def test_cache_key_depends_on_agent_identity() -> None:
    payload = {"transcript": "hello"}
    key = cache_key("summary", "1.0.0", payload)
    assert len(key) == 64
    assert key != cache_key("summary", "1.1.0", payload)
    assert key != cache_key("classification", "1.0.0", payload)
    assert key != cache_key("summary", "1.0.0", {"transcript": "Hello"})


def test_decimals_normalize_exactly() -> None:
    assert normalize(Decimal("2500.00")) == 2500
    assert normalize(Decimal("2500.50")) == "2500.5"
    assert normalize(Decimal("1E+3")) == 1000
    assert normalize(Decimal("0.000001")) == "0.000001"
    assert normalize(Decimal("NaN")) == "NaN"
    assert cache_key("rates", "1.0.0", {"rate": Decimal("2500.0")}) == cache_key(
        "rates", "1.0.0", {"rate": 2500}
    )
