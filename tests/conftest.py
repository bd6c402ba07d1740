"""Test fixtures for dependency-policy-engine.

Provides:
- now / clock: a fixed reference time so age and expiry checks are deterministic
- publisher: an InMemoryEventPublisher that captures published events
- policy_repo / violation_repo / history_repo: in-memory repositories
- registry: a PolicyRegistry over policy_repo with the bundled templates
- make_dependency / make_rule / make_policy / make_exception / make_vulnerability:
  model factories used across test modules
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from dependency_policy_engine.adapters.publishers import InMemoryEventPublisher
from dependency_policy_engine.adapters.repositories import (
    InMemoryEvaluationHistoryRepository,
    InMemoryPolicyRepository,
    InMemoryViolationRepository,
)
from dependency_policy_engine.core.models import (
    ActionConfig,
    Dependency,
    DependencyPolicy,
    EnforcementConfig,
    PolicyException,
    PolicyRule,
    PolicyScope,
    RuleAction,
    RuleCondition,
    RuleMetadata,
    VulnerabilityMatch,
)
from dependency_policy_engine.engine.registry import PolicyRegistry

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
TENANT_ID = "tenant-1"


def fixed_clock() -> datetime:
    return NOW


def make_vulnerability(
    severity: str = "CRITICAL",
    vuln_id: str = "GHSA-35jh-r3h4-6jhm",
    cvss_score: float | None = 9.8,
    fixed_version: str | None = "4.17.21",
) -> VulnerabilityMatch:
    """Create a VulnerabilityMatch for tests."""
    return VulnerabilityMatch(
        id=vuln_id,
        cve="CVE-2021-23337",
        severity=severity,
        cvss_score=cvss_score,
        title="Command injection in lodash",
        fixed_version=fixed_version,
    )


def make_dependency(
    name: str = "lodash",
    version: str = "4.17.20",
    ecosystem: str = "npm",
    dep_type: str = "direct",
    scope: str = "production",
    licenses: Sequence[str] = ("MIT",),
    last_update: datetime | None = None,
    vulnerabilities: Sequence[VulnerabilityMatch] = (),
    **extra_fields: Any,
) -> Dependency:
    """Create a Dependency for tests.

    Args:
        name: Package name.
        version: Package version.
        ecosystem: Package ecosystem.
        dep_type: direct or transitive.
        scope: Usage scope.
        licenses: Declared licenses.
        last_update: Last publish time. Defaults to 30 days before NOW.
        vulnerabilities: Pre-attached vulnerability matches.
        **extra_fields: Any other Dependency field.

    Returns:
        A Dependency instance.
    """
    return Dependency(
        name=name,
        version=version,
        ecosystem=ecosystem,
        type=dep_type,
        scope=scope,
        package_file="package.json",
        licenses=tuple(licenses),
        last_update=last_update or NOW - timedelta(days=30),
        vulnerabilities=tuple(vulnerabilities),
        **extra_fields,
    )


def make_condition(
    field: str,
    operator: str,
    value: Any = None,
    logical_operator: str | None = None,
) -> RuleCondition:
    return RuleCondition(field=field, operator=operator, value=value, logical_operator=logical_operator)


def make_action(action_type: str = "BLOCK", enabled: bool = True, **config: Any) -> RuleAction:
    return RuleAction(type=action_type, config=ActionConfig(**config), enabled=enabled)


def make_rule(
    rule_id: str = "rule-critical",
    name: str = "Block critical vulnerabilities",
    rule_type: str = "VULNERABILITY",
    severity: str = "CRITICAL",
    conditions: Sequence[RuleCondition] | None = None,
    actions: Sequence[RuleAction] | None = None,
    enabled: bool = True,
    condition_mode: str | None = None,
    tags: Sequence[str] = ("security",),
) -> PolicyRule:
    """Create a PolicyRule for tests. Defaults to a critical-vulnerability BLOCK rule."""
    return PolicyRule(
        id=rule_id,
        name=name,
        type=rule_type,
        severity=severity,
        enabled=enabled,
        conditions=tuple(
            conditions
            if conditions is not None
            else [make_condition("vulnerability.severity", "equals", "CRITICAL")]
        ),
        actions=tuple(
            actions
            if actions is not None
            else [make_action("BLOCK", blocking_message="Critical vulnerability")]
        ),
        metadata=RuleMetadata(tags=tuple(tags)),
        condition_mode=condition_mode,
    )


def make_maintenance_rule(actions: Sequence[RuleAction] | None = None) -> PolicyRule:
    return make_rule(
        rule_id="rule-maintenance",
        name="Warn on unmaintained dependencies",
        rule_type="MAINTENANCE",
        severity="MEDIUM",
        conditions=[make_condition("daysSinceLastUpdate", "greater_than", 730)],
        actions=actions or [make_action("WARN", warning_message="Unmaintained")],
        tags=("maintenance",),
    )


def make_exception(
    rule_id: str = "rule-critical",
    dependency: str = "lodash",
    expires_at: datetime | None = None,
    status: str = "ACTIVE",
    exception_id: str = "exc-1",
) -> PolicyException:
    """Create a PolicyException. Defaults to active and expiring a year after NOW."""
    return PolicyException(
        id=exception_id,
        rule_id=rule_id,
        dependency=dependency,
        justification="Not reachable from production code paths",
        approved_by="security-lead",
        approved_at=NOW - timedelta(days=1),
        expires_at=expires_at or NOW + timedelta(days=365),
        status=status,
    )


def make_policy(
    rules: Sequence[PolicyRule] | None = None,
    policy_id: str = "policy-1",
    tenant_id: str = TENANT_ID,
    name: str = "Security policy",
    priority: int = 100,
    enabled: bool = True,
    mode: str = "ENFORCING",
    scope: PolicyScope | None = None,
    exceptions: Sequence[PolicyException] = (),
) -> DependencyPolicy:
    """Create a DependencyPolicy for tests. Defaults to one critical-vulnerability rule."""
    return DependencyPolicy(
        id=policy_id,
        tenant_id=tenant_id,
        name=name,
        priority=priority,
        enabled=enabled,
        scope=scope or PolicyScope(),
        rules=tuple(rules if rules is not None else [make_rule()]),
        enforcement=EnforcementConfig(mode=mode),
        exceptions=tuple(exceptions),
        created_at=NOW,
        updated_at=NOW,
        created_by="tester",
    )


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return fixed_clock


@pytest.fixture()
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture()
def policy_repo() -> InMemoryPolicyRepository:
    return InMemoryPolicyRepository()


@pytest.fixture()
def violation_repo() -> InMemoryViolationRepository:
    return InMemoryViolationRepository()


@pytest.fixture()
def history_repo() -> InMemoryEvaluationHistoryRepository:
    return InMemoryEvaluationHistoryRepository()


@pytest.fixture()
def registry(
    policy_repo: InMemoryPolicyRepository,
    publisher: InMemoryEventPublisher,
) -> PolicyRegistry:
    """PolicyRegistry over the in-memory repository, clock fixed at NOW."""
    return PolicyRegistry(repository=policy_repo, publisher=publisher, clock=fixed_clock)
