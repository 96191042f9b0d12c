"""Typed agent output envelope and the tagged union of known payloads."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import Field, model_validator

from callsift_agent.enums import CallType, ConfidenceLevel
from callsift_agent.schema.base import FrozenModel


class TokenUsage(FrozenModel):
    """Token accounting reported by an LLM-backed agent call."""

    prompt: int = Field(0, ge=0)
    completion: int = Field(0, ge=0)
    total: int = Field(0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _fill_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("total"):
            prompt = data.get("prompt") or 0
            completion = data.get("completion") or 0
            if prompt or completion:
                data = {**data, "total": prompt + completion}
        return data


class Location(FrozenModel):
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    raw_text: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class LoadDetails(FrozenModel):
    id: Annotated[str, Field(min_length=1)]
    origin: Location | None = None
    destination: Location | None = None
    commodity: str | None = None
    weight: float | None = Field(None, ge=0)
    equipment_type: str | None = None
    pickup_date: date | None = None
    delivery_date: date | None = None
    reference_number: str | None = None


class Negotiation(FrozenModel):
    load_id: str | None = None
    status: Literal["agreed", "pending", "rejected", "callback_requested"] = "pending"
    agreed_rate: float | None = Field(None, ge=0)
    rate_type: Literal["flat", "per_mile", "unknown"] = "unknown"
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class QuotedRate(FrozenModel):
    load_id: str | None = None
    amount: float = Field(..., ge=0)
    rate_type: Literal["flat", "per_mile", "unknown"] = "unknown"


class SpeakerRole(FrozenModel):
    role: Literal["broker", "carrier", "shipper", "driver", "dispatcher", "unknown"]
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    name: str | None = None
    company: str | None = None


class PartyInfo(FrozenModel):
    company_name: str | None = None
    contact_name: str | None = None
    mc_number: str | None = None
    phone: str | None = None


class ResolvedDate(FrozenModel):
    original_text: str
    resolved_date: date | None = None
    type: Literal["pickup", "delivery", "availability", "deadline", "other"] = "other"
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    is_approximate: bool = False


class ClassificationPayload(FrozenModel):
    kind: Literal["classification"] = "classification"
    primary_type: CallType
    indicators: list[str] = Field(default_factory=list)
    multi_load_call: bool = False


class SpeakerPayload(FrozenModel):
    kind: Literal["speaker_identification"] = "speaker_identification"
    speakers: dict[str, SpeakerRole] = Field(default_factory=dict)
    broker_speaker_id: str | None = None


class LoadExtractionPayload(FrozenModel):
    kind: Literal["load_extraction"] = "load_extraction"
    loads: list[LoadDetails] = Field(default_factory=list)
    multi_load_call: bool = False


class RateNegotiationPayload(FrozenModel):
    kind: Literal["rate_negotiation"] = "rate_negotiation"
    negotiations: list[Negotiation] = Field(default_factory=list)
    requires_rate_confirmation: bool = False


class SimpleRatePayload(FrozenModel):
    kind: Literal["simple_rate_extraction"] = "simple_rate_extraction"
    rates: list[QuotedRate] = Field(default_factory=list)


class CarrierInformationPayload(FrozenModel):
    kind: Literal["carrier_information"] = "carrier_information"
    carriers: list[PartyInfo] = Field(default_factory=list)


class ShipperInformationPayload(FrozenModel):
    kind: Literal["shipper_information"] = "shipper_information"
    shippers: list[PartyInfo] = Field(default_factory=list)


class TemporalPayload(FrozenModel):
    kind: Literal["temporal_resolution"] = "temporal_resolution"
    resolved_dates: list[ResolvedDate] = Field(default_factory=list)
    timezone: str = "UTC"


class SummaryPayload(FrozenModel):
    kind: Literal["summary"] = "summary"
    executive_summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class GenericPayload(FrozenModel):
    """Escape hatch for agents whose payload is not cross-validated."""

    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


class DegradedPayload(FrozenModel):
    """Best-effort stub standing in for an agent that could not complete."""

    kind: Literal["degraded"] = "degraded"
    agent: str
    reason: str
    data: dict[str, Any] = Field(default_factory=dict)


AgentPayload: TypeAlias = Annotated[
    ClassificationPayload
    | SpeakerPayload
    | LoadExtractionPayload
    | RateNegotiationPayload
    | SimpleRatePayload
    | CarrierInformationPayload
    | ShipperInformationPayload
    | TemporalPayload
    | SummaryPayload
    | GenericPayload
    | DegradedPayload,
    Field(discriminator="kind"),
]


class AgentOutput(FrozenModel):
    """Schema-validated envelope every agent returns."""

    confidence: float = Field(..., ge=0.0, le=1.0)
    payload: AgentPayload
    token_usage: TokenUsage | None = None
    notes: list[str] = Field(default_factory=list)

    @property
    def kind(self) -> str:
        return self.payload.kind

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.for_confidence(self.confidence)

    @property
    def is_degraded(self) -> bool:
        return isinstance(self.payload, DegradedPayload)


__all__ = [
    "AgentOutput",
    "AgentPayload",
    "CarrierInformationPayload",
    "ClassificationPayload",
    "DegradedPayload",
    "GenericPayload",
    "LoadDetails",
    "LoadExtractionPayload",
    "Location",
    "Negotiation",
    "PartyInfo",
    "QuotedRate",
    "RateNegotiationPayload",
    "ResolvedDate",
    "ShipperInformationPayload",
    "SimpleRatePayload",
    "SpeakerPayload",
    "SpeakerRole",
    "SummaryPayload",
    "TemporalPayload",
    "TokenUsage",
]
