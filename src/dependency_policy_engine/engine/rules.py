"""Rule evaluation — combine per-condition results into a trigger decision.

Two combination modes are supported:

SEQUENTIAL (default)
    A left-to-right fold with no operator precedence. Condition 0 seeds the
    accumulator; each following condition is AND-ed or OR-ed into it using
    the logical_operator of the condition before it (AND when unset). Mixed
    chains are order dependent: [a OR b AND c] means ((a or b) and c).

GROUPED (opt-in)
    Conventional precedence. A logical_operator of OR closes the current
    AND-group; the rule triggers when any AND-group holds entirely:
    [a AND b OR c AND d] means ((a and b) or (c and d)).

In both modes every condition is evaluated and its actual field value is
recorded for evidence, whether or not it holds.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dependency_policy_engine.core.models import (
    ConditionMode,
    Dependency,
    EvaluationContext,
    PolicyRule,
    RuleCondition,
)
from dependency_policy_engine.engine.conditions import ConditionEvaluator
from dependency_policy_engine.engine.fields import FactRecord, build_fact_record

MODE_SEQUENTIAL = "SEQUENTIAL"
MODE_GROUPED = "GROUPED"


@dataclass
class ConditionResult:
    """Outcome of evaluating one rule's conditions.

    Attributes:
        triggered: Whether the rule fires.
        triggered_conditions: Conditions that individually held, in order.
        actual_values: Field name to the value observed for it.
    """

    triggered: bool
    triggered_conditions: list[RuleCondition] = field(default_factory=list)
    actual_values: dict[str, Any] = field(default_factory=dict)


def fold_sequential(conditions: list[RuleCondition], results: list[bool]) -> bool:
    if not results:
        return False
    accumulator = results[0]
    for previous, result in zip(conditions, results[1:]):
        if (previous.logical_operator or "AND") == "OR":
            accumulator = accumulator or result
        else:
            accumulator = accumulator and result
    return accumulator


def fold_grouped(conditions: list[RuleCondition], results: list[bool]) -> bool:
    if not results:
        return False
    groups: list[list[bool]] = [[]]
    for index, (condition, result) in enumerate(zip(conditions, results)):
        groups[-1].append(result)
        if condition.logical_operator == "OR" and index < len(results) - 1:
            groups.append([])
    return any(all(group) for group in groups)


class RuleEvaluator:
    """Decides whether a rule triggers for a dependency.

    Args:
        condition_evaluator: Evaluator for individual conditions.
        default_mode: Combination mode for rules that do not set condition_mode.
        clock: Current-time source used when no fact record is supplied.
    """

    def __init__(
        self,
        condition_evaluator: ConditionEvaluator | None = None,
        default_mode: ConditionMode = "SEQUENTIAL",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._conditions = condition_evaluator or ConditionEvaluator()
        self._default_mode = default_mode
        self._clock = clock or (lambda: datetime.now(UTC))

    def evaluate(
        self,
        rule: PolicyRule,
        dependency: Dependency,
        context: EvaluationContext,
        facts: FactRecord | None = None,
    ) -> ConditionResult:
        """Evaluate all of a rule's conditions in declared order.

        Args:
            rule: The rule to evaluate.
            dependency: Dependency under evaluation.
            context: Batch evaluation context.
            facts: Pre-built fact record. Built from the dependency when omitted.

        Returns:
            ConditionResult with the trigger decision and evidence.
        """
        if facts is None:
            facts = build_fact_record(dependency, rule.type, context, self._clock())

        conditions = list(rule.conditions)
        results: list[bool] = []
        outcome = ConditionResult(triggered=False)

        for condition in conditions:
            held = self._conditions.evaluate(condition, facts)
            results.append(held)
            outcome.actual_values[condition.field] = self._conditions.resolve_field(
                condition.field, facts
            )
            if held:
                outcome.triggered_conditions.append(condition)

        mode = rule.condition_mode or self._default_mode
        if mode == MODE_GROUPED:
            outcome.triggered = fold_grouped(conditions, results)
        else:
            outcome.triggered = fold_sequential(conditions, results)
        return outcome
