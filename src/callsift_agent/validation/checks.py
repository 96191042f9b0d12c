"""Cross-agent consistency checks over outputs that should agree."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from callsift_agent.context import AgentContext
from callsift_agent.enums import AgentName, IssueSeverity
from callsift_agent.reliability.policy import ValidationPolicy
from callsift_agent.schema.models import ConflictRecord, ValidationIssue
from callsift_agent.schema.outputs import (
    LoadExtractionPayload,
    RateNegotiationPayload,
    SimpleRatePayload,
    TemporalPayload,
)

_NEGOTIATION = AgentName.RATE_NEGOTIATION.value
_SIMPLE_RATE = AgentName.SIMPLE_RATE_EXTRACTION.value
_LOADS = AgentName.LOAD_EXTRACTION.value
_TEMPORAL = AgentName.TEMPORAL_RESOLUTION.value


@dataclass(frozen=True)
class CheckOutcome:
    """Result of one check; a check that does not apply passes."""

    passed: bool = True
    issues: tuple[ValidationIssue, ...] = ()
    conflicts: tuple[ConflictRecord, ...] = ()


CrossAgentCheck = Callable[[AgentContext, ValidationPolicy], CheckOutcome]


def check_rate_agreement(
    context: AgentContext, policy: ValidationPolicy
) -> CheckOutcome:
    """Negotiated rate and independently extracted rate must agree within tolerance."""
    negotiation = context.get_payload(_NEGOTIATION, RateNegotiationPayload)
    extracted = context.get_payload(_SIMPLE_RATE, SimpleRatePayload)
    if negotiation is None or extracted is None or not extracted.rates:
        return CheckOutcome()

    quoted_by_load = {rate.load_id: rate for rate in extracted.rates}
    issues: list[ValidationIssue] = []
    conflicts: list[ConflictRecord] = []
    for negotiated in negotiation.negotiations:
        if negotiated.agreed_rate is None:
            continue
        quoted = quoted_by_load.get(negotiated.load_id)
        if quoted is None:
            if len(negotiation.negotiations) > 1:
                continue
            quoted = extracted.rates[0]
        difference = abs(negotiated.agreed_rate - quoted.amount)
        if difference <= policy.rate_tolerance:
            continue
        issues.append(
            ValidationIssue(
                field="rate",
                severity=IssueSeverity.CRITICAL,
                description=(
                    f"{_NEGOTIATION}.agreed_rate ({negotiated.agreed_rate:.2f}) "
                    f"differs from {_SIMPLE_RATE}.amount ({quoted.amount:.2f}) "
                    f"by {difference:.2f}, above the {policy.rate_tolerance:.2f} "
                    "tolerance"
                ),
                suggestion="Confirm the final agreed rate against the transcript",
                affected_agents=(_NEGOTIATION, _SIMPLE_RATE),
            )
        )
        conflicts.append(
            ConflictRecord(
                check="rate_agreement",
                field1=f"{_NEGOTIATION}.agreed_rate",
                field2=f"{_SIMPLE_RATE}.amount",
                value1=negotiated.agreed_rate,
                value2=quoted.amount,
                resolution="Prefer the negotiated rate once confirmed",
            )
        )
    return CheckOutcome(not issues, tuple(issues), tuple(conflicts))


def check_rate_load_count(
    context: AgentContext, policy: ValidationPolicy
) -> CheckOutcome:
    """Every extracted load should have at most one agreed rate and vice versa."""
    loads = context.get_payload(_LOADS, LoadExtractionPayload)
    negotiation = context.get_payload(_NEGOTIATION, RateNegotiationPayload)
    if loads is None or negotiation is None or not loads.loads:
        return CheckOutcome()
    agreed = [n for n in negotiation.negotiations if n.agreed_rate is not None]
    if not agreed or len(agreed) <= len(loads.loads):
        return CheckOutcome()
    issue = ValidationIssue(
        field="rate",
        severity=IssueSeverity.WARNING,
        description=(
            f"{len(agreed)} agreed rates for {len(loads.loads)} extracted loads"
        ),
        suggestion="Check whether the call covered more loads than were extracted",
        affected_agents=(_LOADS, _NEGOTIATION),
    )
    conflict = ConflictRecord(
        check="rate_load_count",
        field1=f"{_LOADS}.loads",
        field2=f"{_NEGOTIATION}.negotiations",
        value1=len(loads.loads),
        value2=len(agreed),
    )
    return CheckOutcome(False, (issue,), (conflict,))


def check_rate_load_reference(
    context: AgentContext, policy: ValidationPolicy
) -> CheckOutcome:
    """Negotiations that name a load must name one that was extracted."""
    loads = context.get_payload(_LOADS, LoadExtractionPayload)
    negotiation = context.get_payload(_NEGOTIATION, RateNegotiationPayload)
    if loads is None or negotiation is None:
        return CheckOutcome()
    known = {load.id for load in loads.loads}
    dangling = sorted(
        {
            n.load_id
            for n in negotiation.negotiations
            if n.load_id is not None and n.load_id not in known
        }
    )
    if not dangling:
        return CheckOutcome()
    issue = ValidationIssue(
        field="rate",
        severity=IssueSeverity.WARNING,
        description=f"Rates reference unknown loads: {', '.join(dangling)}",
        suggestion="Re-run load extraction or correct the load references",
        affected_agents=(_NEGOTIATION, _LOADS),
    )
    conflict = ConflictRecord(
        check="rate_load_reference",
        field1=f"{_NEGOTIATION}.load_id",
        field2=f"{_LOADS}.id",
        value1=dangling,
        value2=sorted(known),
    )
    return CheckOutcome(False, (issue,), (conflict,))


def _earliest(dates: list[date]) -> date | None:
    return min(dates) if dates else None


def check_pickup_before_delivery(
    context: AgentContext, policy: ValidationPolicy
) -> CheckOutcome:
    """Pickup dates must not fall after delivery dates in load or temporal output."""
    issues: list[ValidationIssue] = []
    conflicts: list[ConflictRecord] = []

    loads = context.get_payload(_LOADS, LoadExtractionPayload)
    for load in loads.loads if loads else ():
        if load.pickup_date and load.delivery_date:
            if load.pickup_date > load.delivery_date:
                issues.append(
                    ValidationIssue(
                        field="pickup_date",
                        severity=IssueSeverity.WARNING,
                        description=(
                            f"Load {load.id} picks up {load.pickup_date} after "
                            f"delivering {load.delivery_date}"
                        ),
                        suggestion="Verify the pickup and delivery dates",
                        affected_agents=(_LOADS,),
                    )
                )
                conflicts.append(
                    ConflictRecord(
                        check="pickup_before_delivery",
                        field1=f"{_LOADS}.pickup_date",
                        field2=f"{_LOADS}.delivery_date",
                        value1=load.pickup_date.isoformat(),
                        value2=load.delivery_date.isoformat(),
                    )
                )

    temporal = context.get_payload(_TEMPORAL, TemporalPayload)
    if temporal is not None:
        pickups = [
            d.resolved_date
            for d in temporal.resolved_dates
            if d.type == "pickup" and d.resolved_date
        ]
        deliveries = [
            d.resolved_date
            for d in temporal.resolved_dates
            if d.type == "delivery" and d.resolved_date
        ]
        first_pickup = _earliest(pickups)
        first_delivery = _earliest(deliveries)
        if first_pickup and first_delivery and first_pickup > first_delivery:
            issues.append(
                ValidationIssue(
                    field="pickup_date",
                    severity=IssueSeverity.WARNING,
                    description=(
                        f"Resolved pickup {first_pickup} falls after resolved "
                        f"delivery {first_delivery}"
                    ),
                    suggestion="Check relative date phrases against the call date",
                    affected_agents=(_TEMPORAL,),
                )
            )
            conflicts.append(
                ConflictRecord(
                    check="pickup_before_delivery",
                    field1=f"{_TEMPORAL}.pickup",
                    field2=f"{_TEMPORAL}.delivery",
                    value1=first_pickup.isoformat(),
                    value2=first_delivery.isoformat(),
                )
            )
    return CheckOutcome(not issues, tuple(issues), tuple(conflicts))


DEFAULT_CHECKS: dict[str, CrossAgentCheck] = {
    "rate_agreement": check_rate_agreement,
    "rate_load_count": check_rate_load_count,
    "rate_load_reference": check_rate_load_reference,
    "pickup_before_delivery": check_pickup_before_delivery,
}


__all__ = [
    "DEFAULT_CHECKS",
    "CheckOutcome",
    "CrossAgentCheck",
    "check_pickup_before_delivery",
    "check_rate_agreement",
    "check_rate_load_count",
    "check_rate_load_reference",
]
