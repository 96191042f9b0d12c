"""Pydantic bases shared by agent payloads and reliability reports."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class TypedBaseModel(BaseModel):
    """Base for every schema; allows non-pydantic types such as AgentContext."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


class FrozenModel(TypedBaseModel):
    """Immutable record that strips strings and rejects unknown fields."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )
