"""Fact records and the enumerated field accessor registry.

Rule conditions name a field such as "daysSinceLastUpdate" or
"vulnerability.severity". Instead of reflective attribute lookup, every
supported field maps to an extraction closure over a FactRecord, so an
unknown field is rejected when a policy is validated rather than silently
resolving to None at evaluation time.

The only open-ended namespace is extra.<key>[.<key>...], which traverses the
free-form facts contributed by the dependency itself and by fact enrichers.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dependency_policy_engine.core.interfaces import IFactEnricher
from dependency_policy_engine.core.models import (
    SEVERITIES,
    Dependency,
    EvaluationContext,
    VulnerabilityMatch,
)

EXTRA_PREFIX = "extra."

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class FactRecord:
    """Everything a condition may look at for one (dependency, rule type) pair.

    Attributes:
        dependency: The raw dependency.
        context: Evaluation context of the batch.
        rule_type: Type of the rule being evaluated. Vulnerability facts are
            only exposed to VULNERABILITY rules.
        days_since_last_update: Whole days since the last publish, if known.
        vulnerability: Most severe matched vulnerability (VULNERABILITY rules only).
        vulnerabilities: All matched vulnerabilities (VULNERABILITY rules only).
        extra: Dependency extras merged with enricher output.
    """

    dependency: Dependency
    context: EvaluationContext
    rule_type: str
    days_since_last_update: int | None = None
    vulnerability: VulnerabilityMatch | None = None
    vulnerabilities: tuple[VulnerabilityMatch, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)


def _vuln_attr(name: str) -> Callable[[FactRecord], Any]:
    def accessor(facts: FactRecord) -> Any:
        if facts.vulnerability is None:
            return None
        return getattr(facts.vulnerability, name)

    return accessor


def _max_cvss(facts: FactRecord) -> float | None:
    scores = [v.cvss_score for v in facts.vulnerabilities if v.cvss_score is not None]
    return max(scores) if scores else None


FIELD_ACCESSORS: dict[str, Callable[[FactRecord], Any]] = {
    # Dependency attributes
    "name": lambda f: f.dependency.name,
    "version": lambda f: f.dependency.version,
    "type": lambda f: f.dependency.type,
    "scope": lambda f: f.dependency.scope,
    "ecosystem": lambda f: f.dependency.ecosystem,
    "packageFile": lambda f: f.dependency.package_file,
    "licenses": lambda f: list(f.dependency.licenses) or None,
    "license": lambda f: f.dependency.licenses[0] if f.dependency.licenses else None,
    "description": lambda f: f.dependency.description,
    "homepage": lambda f: f.dependency.homepage,
    "repository": lambda f: f.dependency.repository,
    "maintainers": lambda f: list(f.dependency.maintainers),
    "maintainerCount": lambda f: len(f.dependency.maintainers),
    "downloads": lambda f: f.dependency.downloads,
    "lastUpdate": lambda f: (
        f.dependency.last_update.isoformat() if f.dependency.last_update else None
    ),
    "daysSinceLastUpdate": lambda f: f.days_since_last_update,
    "dependsOnCount": lambda f: len(f.dependency.depends_on),
    "dependedOnByCount": lambda f: len(f.dependency.depended_on_by),
    "riskScore": lambda f: f.dependency.risk_score,
    # Matched vulnerability (VULNERABILITY rules only)
    "vulnerability.id": _vuln_attr("id"),
    "vulnerability.cve": _vuln_attr("cve"),
    "vulnerability.severity": _vuln_attr("severity"),
    "vulnerability.cvssScore": _vuln_attr("cvss_score"),
    "vulnerability.fixedVersion": _vuln_attr("fixed_version"),
    "vulnerabilityCount": lambda f: (
        len(f.vulnerabilities) if f.rule_type == "VULNERABILITY" else None
    ),
    "maxCvssScore": _max_cvss,
    # Evaluation context
    "context.project": lambda f: f.context.project,
    "context.environment": lambda f: f.context.environment,
    "context.scanId": lambda f: f.context.scan_id,
    "context.buildId": lambda f: f.context.build_id,
    "context.commitId": lambda f: f.context.commit_id,
    "context.pullRequestId": lambda f: f.context.pull_request_id,
}


def is_known_field(path: str) -> bool:
    """Return True if a condition may reference this field path."""
    if path in FIELD_ACCESSORS:
        return True
    if path.startswith(EXTRA_PREFIX):
        parts = path[len(EXTRA_PREFIX):].split(".")
        return all(parts)
    return False


def resolve_field(path: str, facts: FactRecord) -> Any:
    """Resolve a condition field against a fact record.

    Args:
        path: A registered field name or an extra.<dotted.path>.
        facts: The fact record to read from.

    Returns:
        The field value, or None if the field is unknown or any segment of an
        extra path is missing.
    """
    accessor = FIELD_ACCESSORS.get(path)
    if accessor is not None:
        return accessor(facts)

    if not path.startswith(EXTRA_PREFIX):
        return None

    value: Any = facts.extra
    for part in path[len(EXTRA_PREFIX):].split("."):
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            return None
    return value


def most_severe(vulnerabilities: Iterable[VulnerabilityMatch]) -> VulnerabilityMatch | None:
    """Pick the most severe vulnerability, breaking ties on CVSS score."""
    ranked = sorted(
        vulnerabilities,
        key=lambda v: (SEVERITIES.index(v.severity), -(v.cvss_score or 0.0)),
    )
    return ranked[0] if ranked else None


def days_since(moment: datetime, now: datetime) -> int:
    """Whole days between moment and now. Naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return math.floor((now - moment).total_seconds() / _SECONDS_PER_DAY)


def collect_extra_facts(
    dependency: Dependency,
    context: EvaluationContext,
    enrichers: Iterable[IFactEnricher],
) -> dict[str, Any]:
    """Merge the dependency's own extras with every enricher's output.

    Later enrichers override earlier keys. Enricher exceptions propagate.
    """
    extra: dict[str, Any] = dict(dependency.extra)
    for enricher in enrichers:
        extra.update(enricher(dependency, context))
    return extra


def build_fact_record(
    dependency: Dependency,
    rule_type: str,
    context: EvaluationContext,
    now: datetime,
    extra: Mapping[str, Any] | None = None,
) -> FactRecord:
    """Build the enriched fact record a rule's conditions are evaluated against.

    Args:
        dependency: The raw dependency.
        rule_type: Type of the rule about to be evaluated.
        context: Batch evaluation context.
        now: Reference time for derived age fields.
        extra: Pre-collected extra facts. Defaults to the dependency's own.

    Returns:
        A FactRecord.
    """
    days = (
        days_since(dependency.last_update, now)
        if dependency.last_update is not None
        else None
    )

    vulnerability: VulnerabilityMatch | None = None
    vulnerabilities: tuple[VulnerabilityMatch, ...] = ()
    if rule_type == "VULNERABILITY":
        vulnerabilities = dependency.vulnerabilities
        vulnerability = most_severe(vulnerabilities)

    return FactRecord(
        dependency=dependency,
        context=context,
        rule_type=rule_type,
        days_since_last_update=days,
        vulnerability=vulnerability,
        vulnerabilities=vulnerabilities,
        extra=dict(extra) if extra is not None else dict(dependency.extra),
    )
