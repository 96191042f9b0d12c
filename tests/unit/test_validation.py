from __future__ import annotations

from datetime import date

from hypothesis import given
from hypothesis import strategies as st
import pytest
from tests.utils.fakes import (
    carrier_output,
    classification_output,
    load_output,
    negotiation_output,
    simple_rate_output,
)

from callsift_agent.context import AgentContext
from callsift_agent.enums import CallType, DegradationLevel, IssueSeverity
from callsift_agent.errors import ManifestError
from callsift_agent.reliability.policy import ValidationPolicy
from callsift_agent.utilities.logger_manager import LoggerManager
from callsift_agent.validation.engine import ValidationEngine
from callsift_agent.validation.manifest import RequiredField, RequiredFieldManifest


@pytest.fixture
def engine(logger_manager: LoggerManager) -> ValidationEngine:
    return ValidationEngine(ValidationPolicy(), logger_manager=logger_manager)


def _carrier_quote_context(negotiated: float, quoted: float) -> AgentContext:
    context = AgentContext("transcript")
    context.set_agent_output("classification", classification_output())
    context.set_agent_output("load_extraction", load_output())
    context.set_agent_output("rate_negotiation", negotiation_output(negotiated))
    context.set_agent_output("simple_rate_extraction", simple_rate_output(quoted))
    context.set_agent_output("carrier_information", carrier_output())
    return context


def test_complete_consistent_context_is_valid(
    engine: ValidationEngine, logger_manager: LoggerManager
) -> None:
    report = engine.validate(_carrier_quote_context(2500.0, 2510.0))

    assert report.validation_status.is_valid
    assert report.validation_status.completeness == 1.0
    assert report.issues == []
    assert report.cross_agent_checks["rate_agreement"]
    assert report.confidence == pytest.approx(0.9)
    assert report.data_quality.quality_score == pytest.approx(96.0)
    assert logger_manager.metric_value("validation.quality_score") == pytest.approx(
        96.0
    )


def test_rate_conflict_is_critical(engine: ValidationEngine) -> None:
    report = engine.validate(_carrier_quote_context(2850.0, 2500.0))

    assert not report.validation_status.is_valid
    assert not report.cross_agent_checks["rate_agreement"]
    assert len(report.data_quality.conflicting_data) >= 1
    conflict = report.data_quality.conflicting_data[0]
    assert conflict.field1 == "rate_negotiation.agreed_rate"
    assert conflict.field2 == "simple_rate_extraction.amount"
    assert (conflict.value1, conflict.value2) == (2850.0, 2500.0)
    assert [issue.field for issue in report.critical_issues] == ["rate"]


def test_missing_critical_fields_are_reported(engine: ValidationEngine) -> None:
    context = AgentContext("transcript")
    context.set_agent_output("classification", classification_output())
    context.set_agent_output("rate_negotiation", negotiation_output(2500.0))

    report = engine.validate(context)

    assert not report.validation_status.is_valid
    assert report.validation_status.completeness == pytest.approx(0.4)
    assert set(report.data_quality.missing_fields) == {
        "origin",
        "destination",
        "carrier_info",
    }
    severities = {issue.field: issue.severity for issue in report.issues}
    assert severities["origin"] is IssueSeverity.CRITICAL
    assert severities["carrier_info"] is IssueSeverity.WARNING


def test_field_confidence_is_the_minimum_over_sources(
    engine: ValidationEngine,
) -> None:
    context = _carrier_quote_context(2500.0, 2500.0)
    context.set_agent_output(
        "simple_rate_extraction", simple_rate_output(2500.0, confidence=0.4)
    )
    report = engine.validate(context)
    assert report.field_confidence["rate"] == pytest.approx(0.4)


def test_unknown_call_type_only_needs_classification(
    engine: ValidationEngine,
) -> None:
    context = AgentContext("voicemail")
    context.set_agent_output(
        "classification", classification_output(CallType.VOICEMAIL)
    )
    report = engine.validate(context)
    assert report.validation_status.is_valid
    assert report.validation_status.completeness == 1.0

    empty = engine.validate(AgentContext("nothing ran"))
    assert empty.data_quality.missing_fields == ["call_type"]
    assert not empty.validation_status.is_valid


def test_degraded_agents_are_reported_as_info(engine: ValidationEngine) -> None:
    context = _carrier_quote_context(2500.0, 2500.0)
    context.record_degradation("summary", DegradationLevel.PARTIAL)
    context.record_degradation("temporal_resolution", DegradationLevel.SKIPPED)

    report = engine.validate(context)

    info = [issue for issue in report.issues if issue.severity is IssueSeverity.INFO]
    assert [issue.field for issue in info] == ["summary", "temporal_resolution"]
    assert report.validation_status.is_valid


def test_extra_agreed_rates_and_dangling_loads_are_warnings(
    engine: ValidationEngine,
) -> None:
    context = AgentContext("transcript")
    context.set_agent_output("load_extraction", load_output("L1"))
    context.set_agent_output(
        "rate_negotiation", negotiation_output(2500.0, 1800.0, load_ids=["L1", "L9"])
    )

    report = engine.validate(context)

    assert not report.cross_agent_checks["rate_load_count"]
    assert not report.cross_agent_checks["rate_load_reference"]
    warnings = [
        issue.description
        for issue in report.issues
        if issue.severity is IssueSeverity.WARNING
    ]
    assert any("L9" in description for description in warnings)


def test_pickup_after_delivery_is_flagged(engine: ValidationEngine) -> None:
    context = AgentContext("transcript")
    context.set_agent_output(
        "load_extraction",
        load_output(pickup=date(2024, 5, 10), delivery=date(2024, 5, 8)),
    )
    report = engine.validate(context)
    assert not report.cross_agent_checks["pickup_before_delivery"]


_UNIT = st.floats(min_value=0.0, max_value=1.0)


@given(_UNIT, _UNIT, _UNIT, st.integers(min_value=0, max_value=10))
def test_quality_score_is_monotonic(
    completeness_a: float, completeness_b: float, confidence: float, conflicts: int
) -> None:
    engine = ValidationEngine(logger_manager=LoggerManager())
    low, high = sorted((completeness_a, completeness_b))
    assert engine.quality_score(low, confidence, conflicts) <= engine.quality_score(
        high, confidence, conflicts
    )
    assert engine.quality_score(confidence, low, conflicts) <= engine.quality_score(
        confidence, high, conflicts
    )
    assert engine.quality_score(
        low, confidence, conflicts + 1
    ) <= engine.quality_score(low, confidence, conflicts)
    assert 0.0 <= engine.quality_score(low, confidence, conflicts) <= 100.0


def test_manifest_rejects_unknown_source_agent() -> None:
    with pytest.raises(ManifestError, match="Unknown source agent"):
        RequiredFieldManifest(
            {CallType.CHECK_CALL: [RequiredField("rate", ("rate_oracle",))]}
        )


def test_manifest_rejects_field_missing_from_payload() -> None:
    with pytest.raises(ManifestError, match="has no field"):
        RequiredFieldManifest(
            {CallType.CHECK_CALL: [RequiredField("weight", ("classification",))]}
        )


def test_manifest_rejects_duplicates_and_empty_sources() -> None:
    call_type = RequiredField("call_type", ("classification",))
    with pytest.raises(ManifestError, match="listed twice"):
        RequiredFieldManifest({CallType.CHECK_CALL: [call_type, call_type]})
    with pytest.raises(ManifestError, match="no sources"):
        RequiredFieldManifest({CallType.CHECK_CALL: [RequiredField("call_type", ())]})


def test_custom_manifest_drives_completeness(logger_manager: LoggerManager) -> None:
    manifest = RequiredFieldManifest(
        {
            CallType.CARRIER_QUOTE: [
                RequiredField("call_type", ("classification",), critical=True),
                RequiredField("commodity", ("load_extraction",)),
            ]
        }
    )
    engine = ValidationEngine(manifest=manifest, logger_manager=logger_manager)
    context = AgentContext("transcript")
    context.set_agent_output("classification", classification_output())
    context.set_agent_output("load_extraction", load_output())

    report = engine.validate(context)
    assert report.validation_status.completeness == pytest.approx(0.5)
    assert report.data_quality.missing_fields == ["commodity"]
    assert manifest.call_types == [CallType.CARRIER_QUOTE]
