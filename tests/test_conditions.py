"""Tests for the field accessor registry and ConditionEvaluator.

Covers:
- Operator table: matching, non-matching and missing-field inputs
- Type strictness (strings only for string operators, numbers only for
  numeric operators, lists only for membership)
- Unknown operators and invalid patterns evaluate to False
- Fact record construction (age, vulnerability facts, extra paths)
"""

from datetime import timedelta
from typing import Any

import pytest

from dependency_policy_engine.core.models import EvaluationContext
from dependency_policy_engine.engine.conditions import ConditionEvaluator, strict_equals
from dependency_policy_engine.engine.fields import (
    build_fact_record,
    collect_extra_facts,
    is_known_field,
    most_severe,
    resolve_field,
)
from tests.conftest import NOW, make_condition, make_dependency, make_vulnerability


def _facts(rule_type: str = "CUSTOM", **dependency_fields: Any):
    dependency = make_dependency(**dependency_fields)
    return build_fact_record(dependency, rule_type, EvaluationContext(environment="production"), NOW)


# ---------------------------------------------------------------------------
# Operator table
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("field", "operator", "value", "expected"),
    [
        # equals
        ("name", "equals", "lodash", True),
        ("name", "equals", "express", False),
        ("homepage", "equals", "https://lodash.com", False),
        # greater_than
        ("daysSinceLastUpdate", "greater_than", 10, True),
        ("daysSinceLastUpdate", "greater_than", 30, False),
        ("downloads", "greater_than", 0, False),
        # in
        ("license", "in", ["MIT", "ISC"], True),
        ("license", "in", ["GPL-3.0"], False),
        ("homepage", "in", ["x"], False),
        # exists
        ("license", "exists", None, True),
        ("homepage", "exists", None, False),
        ("riskScore", "not_exists", None, True),
    ],
)
def test_operator_table(field: str, operator: str, value: Any, expected: bool) -> None:
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate(make_condition(field, operator, value), _facts()) is expected


@pytest.mark.parametrize(
    ("operator", "value", "expected"),
    [
        ("contains", "oda", True),
        ("not_contains", "oda", False),
        ("starts_with", "lo", True),
        ("ends_with", "ash", True),
        ("ends_with", "lo", False),
        ("matches", r"^lod.sh$", True),
        ("matches", r"^express", False),
    ],
)
def test_string_operators(operator: str, value: str, expected: bool) -> None:
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate(make_condition("name", operator, value), _facts()) is expected


def test_string_operators_require_string_fields() -> None:
    evaluator = ConditionEvaluator()
    facts = _facts(downloads=12345)

    assert evaluator.evaluate(make_condition("downloads", "contains", "123"), facts) is False
    assert evaluator.evaluate(make_condition("downloads", "not_contains", "9"), facts) is False
    assert evaluator.evaluate(make_condition("downloads", "matches", r"\d+"), facts) is False


def test_numeric_operators_reject_non_numbers() -> None:
    evaluator = ConditionEvaluator()
    facts = _facts()

    assert evaluator.evaluate(make_condition("name", "greater_than", 1), facts) is False
    assert evaluator.evaluate(make_condition("daysSinceLastUpdate", "less_than", "100"), facts) is False
    assert evaluator.evaluate(make_condition("daysSinceLastUpdate", "less_equal", 30), facts) is True
    assert evaluator.evaluate(make_condition("daysSinceLastUpdate", "greater_equal", 30), facts) is True


def test_membership_requires_list_operand() -> None:
    evaluator = ConditionEvaluator()
    facts = _facts()

    assert evaluator.evaluate(make_condition("license", "in", "MIT"), facts) is False
    assert evaluator.evaluate(make_condition("license", "not_in", "GPL-3.0"), facts) is False
    assert evaluator.evaluate(make_condition("license", "not_in", ["GPL-3.0"]), facts) is True


def test_equality_is_strict() -> None:
    assert strict_equals(1, 1.0) is True
    assert strict_equals(True, 1) is False
    assert strict_equals("1", 1) is False
    assert strict_equals(None, None) is True


def test_unknown_operator_evaluates_false() -> None:
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate(make_condition("name", "sounds_like", "lodash"), _facts()) is False


def test_invalid_pattern_evaluates_false() -> None:
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate(make_condition("name", "matches", "(unclosed"), _facts()) is False


# ---------------------------------------------------------------------------
# Fact records and field registry
# ---------------------------------------------------------------------------


def test_days_since_last_update_is_whole_days() -> None:
    facts = _facts(last_update=NOW - timedelta(days=800, hours=5))
    assert facts.days_since_last_update == 800


def test_vulnerability_facts_only_for_vulnerability_rules() -> None:
    vulns = [make_vulnerability("HIGH", vuln_id="V-1", cvss_score=7.5), make_vulnerability("CRITICAL", vuln_id="V-2")]

    vuln_facts = _facts(rule_type="VULNERABILITY", vulnerabilities=vulns)
    license_facts = _facts(rule_type="LICENSE", vulnerabilities=vulns)

    assert resolve_field("vulnerability.severity", vuln_facts) == "CRITICAL"
    assert resolve_field("vulnerability.id", vuln_facts) == "V-2"
    assert resolve_field("vulnerabilityCount", vuln_facts) == 2
    assert resolve_field("maxCvssScore", vuln_facts) == 9.8
    assert resolve_field("vulnerability.severity", license_facts) is None
    assert resolve_field("vulnerabilityCount", license_facts) is None


def test_most_severe_breaks_ties_on_cvss() -> None:
    low_score = make_vulnerability("HIGH", vuln_id="A", cvss_score=7.0)
    high_score = make_vulnerability("HIGH", vuln_id="B", cvss_score=8.8)
    assert most_severe([low_score, high_score]).id == "B"
    assert most_severe([]) is None


def test_licenses_resolves_none_when_empty() -> None:
    facts = _facts(licenses=())
    assert resolve_field("licenses", facts) is None
    assert resolve_field("license", facts) is None


def test_context_fields_resolve() -> None:
    assert resolve_field("context.environment", _facts()) == "production"
    assert resolve_field("context.project", _facts()) is None


def test_extra_paths_traverse_nested_mappings() -> None:
    facts = _facts(extra={"sbom": {"supplier": "acme"}})
    assert resolve_field("extra.sbom.supplier", facts) == "acme"
    assert resolve_field("extra.sbom.missing", facts) is None
    assert resolve_field("extra.sbom.supplier.deeper", facts) is None


def test_enrichers_extend_extra_facts() -> None:
    dependency = make_dependency(extra={"team": "web"})

    def owner_enricher(dep, context):
        return {"owner": f"{dep.name}-owners"}

    extra = collect_extra_facts(dependency, EvaluationContext(), [owner_enricher])
    assert extra == {"team": "web", "owner": "lodash-owners"}


@pytest.mark.parametrize(
    ("path", "known"),
    [
        ("daysSinceLastUpdate", True),
        ("vulnerability.cvssScore", True),
        ("context.pullRequestId", True),
        ("extra.sbom.supplier", True),
        ("extra.", False),
        ("extra..x", False),
        ("vulnerability.exploitability", False),
        ("dependency.name", False),
    ],
)
def test_is_known_field(path: str, known: bool) -> None:
    assert is_known_field(path) is known
