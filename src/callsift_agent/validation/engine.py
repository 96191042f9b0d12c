"""Post-run cross-agent validation and data-quality scoring."""

from __future__ import annotations

from collections.abc import Mapping
from statistics import mean

from callsift_agent.context import AgentContext
from callsift_agent.enums import AgentName, CallType, DegradationLevel, IssueSeverity
from callsift_agent.reliability.policy import ValidationPolicy
from callsift_agent.schema.models import (
    ConflictRecord,
    DataQuality,
    ValidationIssue,
    ValidationReport,
    ValidationStatus,
)
from callsift_agent.schema.outputs import ClassificationPayload
from callsift_agent.utilities.logger_manager import LoggerManager, MetricType
from callsift_agent.validation.checks import DEFAULT_CHECKS, CrossAgentCheck
from callsift_agent.validation.manifest import FieldValue, RequiredFieldManifest


class ValidationEngine:
    """Reads a finished `AgentContext` and produces a `ValidationReport`.

    Field confidence is the minimum over the agents that supplied the field,
    so one low-confidence source is never hidden by a confident peer.
    """

    def __init__(
        self,
        policy: ValidationPolicy | None = None,
        manifest: RequiredFieldManifest | None = None,
        checks: Mapping[str, CrossAgentCheck] | None = None,
        logger_manager: LoggerManager | None = None,
    ) -> None:
        self.policy = policy or ValidationPolicy()
        self.manifest = manifest or RequiredFieldManifest()
        self.checks = dict(DEFAULT_CHECKS if checks is None else checks)
        self.logger_manager = logger_manager or LoggerManager()
        self.logger = self.logger_manager.get_logger()

    def quality_score(
        self, completeness: float, confidence: float, conflicts: int
    ) -> float:
        """Weighted 0-100 score, non-decreasing in completeness and confidence."""
        completeness = min(max(completeness, 0.0), 1.0)
        confidence = min(max(confidence, 0.0), 1.0)
        raw = (
            self.policy.completeness_weight * completeness
            + self.policy.confidence_weight * confidence
            + self.policy.consistency_weight / (1 + max(conflicts, 0))
        )
        return round(min(max(raw * 100, 0.0), 100.0), 2)

    @staticmethod
    def _call_type(context: AgentContext) -> CallType:
        payload = context.get_payload(
            AgentName.CLASSIFICATION.value, ClassificationPayload
        )
        return payload.primary_type if payload else CallType.UNKNOWN

    def _completeness(
        self, context: AgentContext
    ) -> tuple[float, list[FieldValue], list[ValidationIssue]]:
        required = self.manifest.fields_for(self._call_type(context))
        resolved = [self.manifest.resolve(field, context) for field in required]
        issues: list[ValidationIssue] = []
        for field, value in zip(required, resolved, strict=True):
            if value.present:
                continue
            issues.append(
                ValidationIssue(
                    field=field.name,
                    severity=(
                        IssueSeverity.CRITICAL
                        if field.critical
                        else IssueSeverity.WARNING
                    ),
                    description=f"Required field {field.name!r} is missing",
                    suggestion=(
                        "Request the missing information or re-process the transcript"
                    ),
                    affected_agents=field.sources,
                )
            )
        if not required:
            return 1.0, resolved, issues
        present = sum(1 for value in resolved if value.present)
        return present / len(required), resolved, issues

    @staticmethod
    def _degradation_issues(context: AgentContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for agent, level in sorted(context.degradations().items()):
            if level is DegradationLevel.PARTIAL:
                description = f"{agent} returned a partial best-effort result"
            elif level in (DegradationLevel.SKIPPED, DegradationLevel.FAILED):
                description = f"{agent} did not produce output ({level.value})"
            else:
                continue
            issues.append(
                ValidationIssue(
                    field=agent,
                    severity=IssueSeverity.INFO,
                    description=description,
                    suggestion="Re-run the pipeline once the agent recovers",
                    affected_agents=(agent,),
                )
            )
        return issues

    def validate(self, context: AgentContext) -> ValidationReport:
        completeness, resolved, issues = self._completeness(context)

        cross_agent_checks: dict[str, bool] = {}
        conflicts: list[ConflictRecord] = []
        for name, check in self.checks.items():
            outcome = check(context, self.policy)
            cross_agent_checks[name] = outcome.passed
            issues.extend(outcome.issues)
            conflicts.extend(outcome.conflicts)

        issues.extend(self._degradation_issues(context))

        field_confidence = {
            value.name: value.confidence for value in resolved if value.present
        }
        confidence = mean(field_confidence.values()) if field_confidence else 0.0
        is_valid = not any(i.severity is IssueSeverity.CRITICAL for i in issues)
        score = self.quality_score(completeness, confidence, len(conflicts))

        report = ValidationReport(
            validation_status=ValidationStatus(
                is_valid=is_valid, completeness=completeness
            ),
            confidence=confidence,
            issues=issues,
            cross_agent_checks=cross_agent_checks,
            data_quality=DataQuality(
                missing_fields=[value.name for value in resolved if not value.present],
                conflicting_data=conflicts,
                quality_score=score,
            ),
            field_confidence=field_confidence,
        )
        log_context = {
            "call_id": context.metadata.call_id,
            "is_valid": is_valid,
            "completeness": round(completeness, 3),
            "quality_score": score,
            "conflicts": len(conflicts),
        }
        if is_valid:
            self.logger.info("Validation passed", extra={"context": log_context})
        else:
            self.logger.warning(
                f"Validation found {len(report.critical_issues)} critical issue(s)",
                extra={"context": log_context},
            )
        self.logger_manager.log_metric(
            "validation.quality_score", score, MetricType.GAUGE
        )
        return report


__all__ = ["ValidationEngine"]
