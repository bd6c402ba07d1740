"""Per-dependency evaluation pipeline.

scope filter -> per-policy, per-rule evaluation -> exception check ->
violation/warning classification.

A triggered rule is a violation when any of its enabled actions is BLOCK,
otherwise a warning. The dependency status is the highest of
VIOLATION > WARNING > EXCEPTION > COMPLIANT.
"""

import time
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from dependency_policy_engine.core.interfaces import IFactEnricher
from dependency_policy_engine.core.models import (
    Dependency,
    DependencyPolicy,
    EvaluationContext,
    EvaluationStatus,
    PolicyEvaluation,
    PolicyException,
    PolicyViolation,
)
from dependency_policy_engine.engine.fields import (
    FactRecord,
    build_fact_record,
    collect_extra_facts,
)
from dependency_policy_engine.engine.rules import RuleEvaluator
from dependency_policy_engine.engine.scope import ExceptionResolver, ScopeMatcher
from dependency_policy_engine.engine.violations import ViolationFactory

STATUS_COMPLIANT = "COMPLIANT"
STATUS_VIOLATION = "VIOLATION"
STATUS_WARNING = "WARNING"
STATUS_EXCEPTION = "EXCEPTION"
STATUS_SKIPPED = "SKIPPED"


def determine_status(
    violations: Sequence[PolicyViolation],
    warnings: Sequence[PolicyViolation],
    exceptions: Sequence[PolicyException],
) -> EvaluationStatus:
    if violations:
        return STATUS_VIOLATION
    if warnings:
        return STATUS_WARNING
    if exceptions:
        return STATUS_EXCEPTION
    return STATUS_COMPLIANT


class DependencyEvaluator:
    """Evaluates one dependency against a snapshot of active policies.

    Args:
        scope_matcher: Scope filter.
        exception_resolver: Active exception lookup.
        rule_evaluator: Rule trigger decision.
        violation_factory: Violation record builder.
        enrichers: Pure fact enrichers applied once per dependency.
        clock: Current-time source.
    """

    def __init__(
        self,
        scope_matcher: ScopeMatcher | None = None,
        exception_resolver: ExceptionResolver | None = None,
        rule_evaluator: RuleEvaluator | None = None,
        violation_factory: ViolationFactory | None = None,
        enrichers: Iterable[IFactEnricher] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._scope = scope_matcher or ScopeMatcher()
        self._exceptions = exception_resolver or ExceptionResolver(self._clock)
        self._rules = rule_evaluator or RuleEvaluator(clock=self._clock)
        self._violations = violation_factory or ViolationFactory(self._clock)
        self._enrichers = tuple(enrichers)

    def evaluate(
        self,
        dependency: Dependency,
        policies: Sequence[DependencyPolicy],
        context: EvaluationContext,
        run_id: str = "",
        position: int = 0,
    ) -> PolicyEvaluation:
        """Evaluate a dependency against every in-scope policy.

        Args:
            dependency: Dependency to evaluate.
            policies: Active policy snapshot for the tenant.
            context: Batch evaluation context.
            run_id: Evaluation run id, used to derive violation ids.
            position: Index of the dependency in its batch, used to derive
                violation ids.

        Returns:
            PolicyEvaluation with exact rule counters.

        Raises:
            Exception: Any error raised while enriching facts propagates; the
                orchestrator records the dependency as skipped.
        """
        start = time.monotonic()
        now = self._clock()

        violations: list[PolicyViolation] = []
        warnings: list[PolicyViolation] = []
        exceptions: list[PolicyException] = []
        applied_policy_ids: list[str] = []
        rules_evaluated = 0
        rules_triggered = 0

        extra: dict[str, Any] | None = None
        facts_by_type: dict[str, FactRecord] = {}

        for policy in policies:
            if not self._scope.in_scope(dependency, policy.scope, context):
                continue
            applied_policy_ids.append(policy.id)

            for rule in policy.rules:
                if not rule.enabled:
                    continue
                rules_evaluated += 1

                exception = self._exceptions.find_active(policy, rule, dependency)
                if exception is not None:
                    exceptions.append(exception)
                    continue

                if extra is None:
                    extra = collect_extra_facts(dependency, context, self._enrichers)
                facts = facts_by_type.get(rule.type)
                if facts is None:
                    facts = build_fact_record(dependency, rule.type, context, now, extra)
                    facts_by_type[rule.type] = facts

                result = self._rules.evaluate(rule, dependency, context, facts)
                if not result.triggered:
                    continue
                rules_triggered += 1

                violation = self._violations.build(
                    policy,
                    rule,
                    dependency,
                    result,
                    context,
                    run_id=run_id,
                    position=position,
                    detected_at=now,
                )
                if rule.has_blocking_action:
                    violations.append(violation)
                else:
                    warnings.append(violation)

        return PolicyEvaluation(
            dependency_id=dependency.dependency_id,
            dependency_name=dependency.name,
            policy_ids=tuple(applied_policy_ids),
            status=determine_status(violations, warnings, exceptions),
            violations=tuple(violations),
            warnings=tuple(warnings),
            exceptions=tuple(exceptions),
            evaluated_at=self._clock(),
            evaluation_duration_ms=round((time.monotonic() - start) * 1000, 3),
            rules_evaluated=rules_evaluated,
            rules_triggered=rules_triggered,
        )
