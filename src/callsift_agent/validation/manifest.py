"""Required-field manifest per call type and the field accessor registry."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from callsift_agent.context import AgentContext
from callsift_agent.enums import AgentName, CallType
from callsift_agent.errors import ManifestError
from callsift_agent.schema.outputs import (
    CarrierInformationPayload,
    ClassificationPayload,
    LoadExtractionPayload,
    RateNegotiationPayload,
    ShipperInformationPayload,
    SimpleRatePayload,
    TemporalPayload,
)

Accessor = Callable[[Any], Any]


def _first(items: Sequence[Any]) -> Any:
    return items[0] if items else None


def _first_agreed_rate(payload: RateNegotiationPayload) -> float | None:
    return next(
        (n.agreed_rate for n in payload.negotiations if n.agreed_rate is not None),
        None,
    )


def _load_city(payload: LoadExtractionPayload, attribute: str) -> str | None:
    load = _first(payload.loads)
    location = getattr(load, attribute, None) if load else None
    return location.city if location else None


def _resolved_date(payload: TemporalPayload, date_type: str) -> Any:
    return next(
        (
            d.resolved_date
            for d in payload.resolved_dates
            if d.type == date_type and d.resolved_date is not None
        ),
        None,
    )


# (agent, field) -> accessor reading that field from the agent's payload.
FIELD_ACCESSORS: dict[tuple[str, str], Accessor] = {
    (AgentName.CLASSIFICATION.value, "call_type"): lambda p: p.primary_type,
    (AgentName.LOAD_EXTRACTION.value, "origin"): lambda p: _load_city(p, "origin"),
    (AgentName.LOAD_EXTRACTION.value, "destination"): lambda p: _load_city(
        p, "destination"
    ),
    (AgentName.LOAD_EXTRACTION.value, "commodity"): lambda p: getattr(
        _first(p.loads), "commodity", None
    ),
    (AgentName.LOAD_EXTRACTION.value, "pickup_date"): lambda p: getattr(
        _first(p.loads), "pickup_date", None
    ),
    (AgentName.RATE_NEGOTIATION.value, "rate"): _first_agreed_rate,
    (AgentName.SIMPLE_RATE_EXTRACTION.value, "rate"): lambda p: getattr(
        _first(p.rates), "amount", None
    ),
    (AgentName.CARRIER_INFORMATION.value, "carrier_info"): lambda p: getattr(
        _first(p.carriers), "company_name", None
    ),
    (AgentName.SHIPPER_INFORMATION.value, "shipper_info"): lambda p: getattr(
        _first(p.shippers), "company_name", None
    ),
    (AgentName.TEMPORAL_RESOLUTION.value, "pickup_date"): lambda p: _resolved_date(
        p, "pickup"
    ),
}

# Payload type each source agent is expected to publish.
PAYLOAD_TYPES: dict[str, type[Any]] = {
    AgentName.CLASSIFICATION.value: ClassificationPayload,
    AgentName.LOAD_EXTRACTION.value: LoadExtractionPayload,
    AgentName.RATE_NEGOTIATION.value: RateNegotiationPayload,
    AgentName.SIMPLE_RATE_EXTRACTION.value: SimpleRatePayload,
    AgentName.CARRIER_INFORMATION.value: CarrierInformationPayload,
    AgentName.SHIPPER_INFORMATION.value: ShipperInformationPayload,
    AgentName.TEMPORAL_RESOLUTION.value: TemporalPayload,
}


@dataclass(frozen=True)
class RequiredField:
    name: str
    sources: tuple[str, ...]
    critical: bool = False


@dataclass(frozen=True)
class FieldValue:
    """Resolved value of one logical field across its source agents."""

    name: str
    present: bool
    value: Any = None
    confidence: float = 0.0
    contributing_agents: tuple[str, ...] = ()


_CALL_TYPE = RequiredField("call_type", (AgentName.CLASSIFICATION.value,), True)
_ORIGIN = RequiredField("origin", (AgentName.LOAD_EXTRACTION.value,), True)
_DESTINATION = RequiredField("destination", (AgentName.LOAD_EXTRACTION.value,), True)
_RATE = RequiredField(
    "rate",
    (AgentName.RATE_NEGOTIATION.value, AgentName.SIMPLE_RATE_EXTRACTION.value),
    True,
)
_CARRIER = RequiredField("carrier_info", (AgentName.CARRIER_INFORMATION.value,))
_SHIPPER = RequiredField("shipper_info", (AgentName.SHIPPER_INFORMATION.value,))

DEFAULT_MANIFEST: dict[CallType, tuple[RequiredField, ...]] = {
    call_type: (_CALL_TYPE,) for call_type in CallType
}
DEFAULT_MANIFEST[CallType.CARRIER_QUOTE] = (
    _CALL_TYPE,
    _ORIGIN,
    _DESTINATION,
    _RATE,
    _CARRIER,
)
DEFAULT_MANIFEST[CallType.NEW_BOOKING] = (
    _CALL_TYPE,
    _ORIGIN,
    _DESTINATION,
    _RATE,
    _SHIPPER,
)


class RequiredFieldManifest:
    """Validated mapping from call type to the fields a complete report needs.

    Construction fails with `ManifestError` when a field names an agent with
    no known payload, or a field that agent's payload does not carry.
    """

    def __init__(
        self,
        fields_by_call_type: Mapping[CallType, Sequence[RequiredField]] | None = None,
    ) -> None:
        if fields_by_call_type is None:
            fields_by_call_type = DEFAULT_MANIFEST
        self._fields: dict[CallType, tuple[RequiredField, ...]] = {}
        for call_type, fields in fields_by_call_type.items():
            self._fields[CallType(call_type)] = tuple(fields)
        self._validate()

    def _validate(self) -> None:
        for call_type, fields in self._fields.items():
            seen: set[str] = set()
            for required in fields:
                if required.name in seen:
                    raise ManifestError(
                        f"Field {required.name!r} listed twice for {call_type.value}"
                    )
                seen.add(required.name)
                if not required.sources:
                    raise ManifestError(
                        f"Field {required.name!r} for {call_type.value} has no sources"
                    )
                for agent in required.sources:
                    if agent not in PAYLOAD_TYPES:
                        raise ManifestError(
                            f"Unknown source agent {agent!r} for field "
                            f"{required.name!r} ({call_type.value})"
                        )
                    if (agent, required.name) not in FIELD_ACCESSORS:
                        raise ManifestError(
                            f"Payload of {agent!r} has no field {required.name!r}"
                        )

    def fields_for(self, call_type: CallType) -> tuple[RequiredField, ...]:
        if call_type in self._fields:
            return self._fields[call_type]
        return self._fields.get(CallType.UNKNOWN, (_CALL_TYPE,))

    @property
    def call_types(self) -> list[CallType]:
        return list(self._fields)

    @staticmethod
    def resolve(required: RequiredField, context: AgentContext) -> FieldValue:
        """Read `required` from every source; confidence is the minimum over them."""
        values: list[Any] = []
        confidences: list[float] = []
        contributors: list[str] = []
        for agent in required.sources:
            output = context.get_agent_output(agent)
            if output is None or not isinstance(output.payload, PAYLOAD_TYPES[agent]):
                continue
            value = FIELD_ACCESSORS[(agent, required.name)](output.payload)
            if value is None or value == "":
                continue
            values.append(value)
            confidences.append(output.confidence)
            contributors.append(agent)
        if not values:
            return FieldValue(name=required.name, present=False)
        return FieldValue(
            name=required.name,
            present=True,
            value=values[0],
            confidence=min(confidences),
            contributing_agents=tuple(contributors),
        )


__all__ = [
    "DEFAULT_MANIFEST",
    "FIELD_ACCESSORS",
    "PAYLOAD_TYPES",
    "FieldValue",
    "RequiredField",
    "RequiredFieldManifest",
]
