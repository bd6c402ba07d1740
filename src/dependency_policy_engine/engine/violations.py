"""Violation factory — turns a triggered rule into an evidenced violation record.

Message, impact and recommendation texts are templated by rule type
(vulnerability, license, age, maintenance, anything else). Evidence holds one
CONFIGURATION entry per triggered condition with the field, operator,
expected value and actual value.

Given the same inputs (including run id, batch position and detection time)
the factory produces an identical record: violation ids are UUIDv5 digests of
the run, the dependency's position in the batch, the policy, the rule and the
dependency. The position keeps duplicate name@version entries of one batch
apart.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from dependency_policy_engine.core.models import (
    Dependency,
    DependencyPolicy,
    EvaluationContext,
    PolicyRule,
    PolicyViolation,
    ViolationContext,
    ViolationDetails,
    ViolationEvidence,
)
from dependency_policy_engine.engine.rules import ConditionResult

_VIOLATION_NAMESPACE = uuid.UUID("6f1c3a4e-2b7d-4f0e-9a51-3c8e2d7b9f10")

_EVIDENCE_SOURCE = "policy-engine"

_MESSAGE_TEMPLATES: dict[str, str] = {
    "VULNERABILITY": "{dep} contains security vulnerabilities that violate policy: {rule}",
    "LICENSE": "{dep} has license restrictions that violate policy: {rule}",
    "AGE": "{dep} is outdated and violates policy: {rule}",
    "MAINTENANCE": "{dep} appears unmaintained and violates policy: {rule}",
}
_DEFAULT_MESSAGE = "{dep} violates policy rule: {rule}"

_IMPACT_TEXTS: dict[str, str] = {
    "VULNERABILITY": "Security vulnerability may expose the application to attacks",
    "LICENSE": "License restrictions may create legal compliance issues",
    "AGE": "Outdated dependency may lack security updates and bug fixes",
    "MAINTENANCE": "Unmaintained dependency may pose long-term security and stability risks",
}
_DEFAULT_IMPACT = "Policy violation may impact application security and compliance"

_RECOMMENDATION_TEMPLATES: dict[str, str] = {
    "VULNERABILITY": "Update {name} to a version that fixes the vulnerability",
    "LICENSE": "Replace {name} with an alternative that has an approved license",
    "AGE": "Update {name} to the latest stable version",
    "MAINTENANCE": "Consider replacing {name} with a more actively maintained alternative",
}
_DEFAULT_RECOMMENDATION = "Review and address the policy violation for {name}"


def build_message(rule: PolicyRule, dependency: Dependency) -> str:
    template = _MESSAGE_TEMPLATES.get(rule.type, _DEFAULT_MESSAGE)
    return template.format(dep=dependency.dependency_id, rule=rule.name)


def build_impact(rule: PolicyRule) -> str:
    return _IMPACT_TEXTS.get(rule.type, _DEFAULT_IMPACT)


def build_recommendation(rule: PolicyRule, dependency: Dependency) -> str:
    template = _RECOMMENDATION_TEMPLATES.get(rule.type, _DEFAULT_RECOMMENDATION)
    return template.format(name=dependency.name)


def build_evidence(
    condition_result: ConditionResult,
    timestamp: datetime,
) -> tuple[ViolationEvidence, ...]:
    """Build one CONFIGURATION evidence entry per triggered condition.

    Args:
        condition_result: Output of the RuleEvaluator.
        timestamp: Detection time stamped on every entry.

    Returns:
        Evidence entries in condition order.
    """
    return tuple(
        ViolationEvidence(
            type="CONFIGURATION",
            source=_EVIDENCE_SOURCE,
            content={
                "field": condition.field,
                "operator": condition.operator,
                "expected_value": condition.value,
                "actual_value": condition_result.actual_values.get(condition.field),
            },
            timestamp=timestamp,
        )
        for condition in condition_result.triggered_conditions
    )


def violation_id_for(
    run_id: str,
    position: int,
    policy_id: str,
    rule_id: str,
    dependency_id: str,
) -> str:
    seed = f"{run_id}:{position}:{policy_id}:{rule_id}:{dependency_id}"
    return str(uuid.uuid5(_VIOLATION_NAMESPACE, seed))


class ViolationFactory:
    """Builds immutable PolicyViolation records.

    Args:
        clock: Current-time source used when no detection time is supplied.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def build(
        self,
        policy: DependencyPolicy,
        rule: PolicyRule,
        dependency: Dependency,
        condition_result: ConditionResult,
        context: EvaluationContext,
        run_id: str = "",
        position: int = 0,
        detected_at: datetime | None = None,
    ) -> PolicyViolation:
        """Build a violation for a triggered rule.

        Args:
            policy: Policy owning the rule.
            rule: The triggered rule.
            dependency: The dependency that triggered it.
            condition_result: Triggered conditions and observed values.
            context: Batch evaluation context.
            run_id: Evaluation run id, part of the violation id.
            position: Index of the dependency in its batch, part of the violation id.
            detected_at: Detection time. Defaults to now.

        Returns:
            An OPEN PolicyViolation.
        """
        detected_at = detected_at or self._clock()

        return PolicyViolation(
            id=violation_id_for(run_id, position, policy.id, rule.id, dependency.dependency_id),
            tenant_id=policy.tenant_id,
            policy_id=policy.id,
            rule_id=rule.id,
            dependency=dependency,
            violation_type=rule.type,
            severity=rule.severity,
            message=build_message(rule, dependency),
            details=ViolationDetails(
                rule=rule,
                triggered_conditions=tuple(condition_result.triggered_conditions),
                actual_values=dict(condition_result.actual_values),
                evidence=build_evidence(condition_result, detected_at),
                impact=build_impact(rule),
                recommendation=build_recommendation(rule, dependency),
            ),
            context=ViolationContext(
                project=context.project or "unknown",
                environment=context.environment or "unknown",
                ecosystem=dependency.ecosystem,
                package_file=dependency.package_file,
                scan_id=context.scan_id,
                build_id=context.build_id,
                commit_id=context.commit_id,
                pull_request_id=context.pull_request_id,
            ),
            enforcement_mode=policy.enforcement.mode,
            status="OPEN",
            first_detected=detected_at,
            last_seen=detected_at,
            tags=rule.metadata.tags,
        )
