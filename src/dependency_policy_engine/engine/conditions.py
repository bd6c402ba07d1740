"""Condition evaluation — one typed comparison against a fact record.

Operator semantics:
- equals / not_equals: strict equality (booleans never equal numbers)
- contains / not_contains / starts_with / ends_with / matches: string fields
  only; False when the field value is not a string
- greater_than / less_than / greater_equal / less_equal: numeric fields and
  operands only
- in / not_in: membership; False unless the operand is a list
- exists / not_exists: field value is / is not None

An unknown operator evaluates to False. It is not an error at evaluation
time; the PolicyRegistry rejects unknown operators when a policy is stored.
"""

import re
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from dependency_policy_engine.core.models import RuleCondition
from dependency_policy_engine.engine.fields import FactRecord, resolve_field
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile and cache a condition regex. Raises re.error if invalid."""
    return re.compile(pattern)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that never conflates booleans with numbers."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and str(expected) in actual


def _not_contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and str(expected) not in actual


def _starts_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and actual.startswith(str(expected))


def _ends_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and actual.endswith(str(expected))


def _matches(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    try:
        return compile_pattern(expected).search(actual) is not None
    except re.error as exc:
        logger.warning("Invalid condition pattern", pattern=expected, error=str(exc))
        return False


def _numeric(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def op(actual: Any, expected: Any) -> bool:
        return _is_number(actual) and _is_number(expected) and compare(actual, expected)

    return op


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and any(
        strict_equals(actual, candidate) for candidate in expected
    )


def _not_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and not any(
        strict_equals(actual, candidate) for candidate in expected
    )


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": strict_equals,
    "not_equals": lambda actual, expected: not strict_equals(actual, expected),
    "contains": _contains,
    "not_contains": _not_contains,
    "starts_with": _starts_with,
    "ends_with": _ends_with,
    "matches": _matches,
    "greater_than": _numeric(lambda a, b: a > b),
    "less_than": _numeric(lambda a, b: a < b),
    "greater_equal": _numeric(lambda a, b: a >= b),
    "less_equal": _numeric(lambda a, b: a <= b),
    "in": _in,
    "not_in": _not_in,
    "exists": lambda actual, _expected: actual is not None,
    "not_exists": lambda actual, _expected: actual is None,
}


class ConditionEvaluator:
    """Evaluates a single RuleCondition against a FactRecord."""

    def resolve_field(self, path: str, facts: FactRecord) -> Any:
        """Return the value a condition on `path` would compare against."""
        return resolve_field(path, facts)

    def evaluate(self, condition: RuleCondition, facts: FactRecord) -> bool:
        """Evaluate one condition.

        Args:
            condition: The condition to evaluate.
            facts: Enriched facts for the dependency under evaluation.

        Returns:
            True if the condition holds. False for unknown operators.
        """
        operator = _OPERATORS.get(condition.operator)
        if operator is None:
            return False
        return operator(self.resolve_field(condition.field, facts), condition.value)
