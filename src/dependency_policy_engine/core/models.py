"""Pydantic domain models for the dependency policy engine.

Policy-side models (Policy, Rule, Condition, Action, Exception, Scope) are
frozen and hold tuple collections, so a policy fetched for an evaluation run
is an immutable snapshot. Mutations go through the PolicyRegistry, which
builds new model instances with model_copy().

Models:
- Dependency, VulnerabilityMatch, EvaluationContext — engine inputs
- PolicyScope, RuleCondition, RuleAction, PolicyRule, PolicyException,
  DependencyPolicy, PolicyTemplate — policy definitions
- PolicyViolation, ExecutedAction, PolicyEvaluation, PolicyEnforcementResult —
  engine outputs
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

RuleType = Literal["VULNERABILITY", "LICENSE", "AGE", "MAINTENANCE", "CONFIGURATION", "CUSTOM"]
Severity = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO"]
LogicalOperator = Literal["AND", "OR"]
ConditionMode = Literal["SEQUENTIAL", "GROUPED"]
EnforcementMode = Literal["ENFORCING", "PERMISSIVE", "DISABLED"]
ExceptionStatus = Literal["ACTIVE", "EXPIRED", "REVOKED"]
ViolationStatus = Literal["OPEN", "ACKNOWLEDGED", "RESOLVED", "SUPPRESSED", "FALSE_POSITIVE"]
EvaluationStatus = Literal["COMPLIANT", "VIOLATION", "WARNING", "EXCEPTION", "SKIPPED"]
ActionStatus = Literal["SUCCESS", "FAILED", "SKIPPED"]

# Ordered most to least severe
SEVERITIES: tuple[str, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO")

CONDITION_OPERATORS: frozenset[str] = frozenset(
    {
        "equals",
        "not_equals",
        "contains",
        "not_contains",
        "starts_with",
        "ends_with",
        "matches",
        "greater_than",
        "less_than",
        "greater_equal",
        "less_equal",
        "in",
        "not_in",
        "exists",
        "not_exists",
    }
)

ACTION_BLOCK = "BLOCK"
ACTION_WARN = "WARN"
ACTION_LOG = "LOG"
ACTION_NOTIFY = "NOTIFY"
ACTION_AUTO_FIX = "AUTO_FIX"
ACTION_CREATE_ISSUE = "CREATE_ISSUE"
ACTION_ESCALATE = "ESCALATE"

ACTION_TYPES: frozenset[str] = frozenset(
    {
        ACTION_BLOCK,
        ACTION_WARN,
        ACTION_LOG,
        ACTION_NOTIFY,
        ACTION_AUTO_FIX,
        ACTION_CREATE_ISSUE,
        ACTION_ESCALATE,
    }
)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Engine inputs
# ---------------------------------------------------------------------------


class VulnerabilityMatch(_FrozenModel):
    """A vulnerability matched to a dependency by the vulnerability collaborator.

    Attributes:
        id: Advisory identifier (GHSA, OSV, vendor id).
        cve: CVE identifier, if assigned.
        severity: Normalized severity.
        cvss_score: CVSS base score, if known.
        title: Short advisory title.
        fixed_version: First version that fixes the vulnerability.
    """

    id: str
    cve: str | None = None
    severity: Severity
    cvss_score: float | None = None
    title: str | None = None
    fixed_version: str | None = None


class Dependency(_FrozenModel):
    """A third-party package produced by the inventory scanner.

    Vulnerability matches and the risk score are pre-attached by collaborators
    before the batch reaches the engine; the engine performs no I/O.

    Attributes:
        name: Package name.
        version: Resolved package version.
        type: direct or transitive.
        scope: Usage scope declared by the manifest.
        ecosystem: Package ecosystem (npm, python, java, ...).
        package_file: Manifest the dependency was found in.
        licenses: Declared SPDX license identifiers.
        last_update: When the package was last published.
        vulnerabilities: Matched vulnerabilities.
        risk_score: Pre-computed risk score (0-100), if available.
        extra: Free-form facts available to CUSTOM rules as extra.<key>.
    """

    name: str
    version: str
    type: Literal["direct", "transitive"] = "direct"
    scope: Literal["production", "development", "optional", "peer"] = "production"
    ecosystem: str
    package_file: str = ""
    licenses: tuple[str, ...] = ()
    description: str | None = None
    homepage: str | None = None
    repository: str | None = None
    maintainers: tuple[str, ...] = ()
    last_update: datetime | None = None
    downloads: int | None = None
    depends_on: tuple[str, ...] = ()
    depended_on_by: tuple[str, ...] = ()
    vulnerabilities: tuple[VulnerabilityMatch, ...] = ()
    risk_score: float | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @property
    def dependency_id(self) -> str:
        return f"{self.name}@{self.version}"


class EvaluationContext(_FrozenModel):
    """Where and why a batch is being evaluated."""

    project: str | None = None
    environment: str | None = None
    scan_id: str | None = None
    build_id: str | None = None
    commit_id: str | None = None
    pull_request_id: str | None = None


# ---------------------------------------------------------------------------
# Policy definitions
# ---------------------------------------------------------------------------


class PolicyScope(_FrozenModel):
    """Which dependencies a policy applies to. An empty tuple means unrestricted."""

    environments: tuple[str, ...] = ()
    projects: tuple[str, ...] = ()
    ecosystems: tuple[str, ...] = ()
    dependency_types: tuple[Literal["direct", "transitive"], ...] = ()
    scopes: tuple[Literal["production", "development", "optional", "peer"], ...] = ()


class RuleCondition(_FrozenModel):
    """One field/operator/value comparison.

    Attributes:
        field: Known fact field name (see engine.fields) or extra.<key> path.
        operator: One of CONDITION_OPERATORS. Kept as a plain string so that
            stored rules with unknown operators evaluate to False instead of
            failing to load.
        value: Comparison operand.
        logical_operator: How the NEXT condition's result combines with the
            running result.
    """

    field: str
    operator: str
    value: Any = None
    logical_operator: LogicalOperator | None = None


class IssueTrackerConfig(_FrozenModel):
    system: Literal["JIRA", "GITHUB", "GITLAB", "AZURE_DEVOPS"]
    project: str
    issue_type: str
    priority: str
    assignee: str | None = None
    labels: tuple[str, ...] = ()


class ActionConfig(_FrozenModel):
    """Per-action configuration. Each action type reads only its own keys."""

    blocking_message: str | None = None
    warning_message: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] | None = None
    notification_channels: tuple[str, ...] = ()
    recipients: tuple[str, ...] = ()
    escalation_level: int | None = None
    auto_fix_strategy: Literal["UPDATE", "REPLACE", "CONFIGURE", "REMOVE"] | None = None
    issue_tracker: IssueTrackerConfig | None = None


class RuleAction(_FrozenModel):
    type: str
    config: ActionConfig = Field(default_factory=ActionConfig)
    enabled: bool = True


class RuleMetadata(_FrozenModel):
    tags: tuple[str, ...] = ()
    category: str = ""
    rationale: str = ""
    references: tuple[str, ...] = ()
    impact: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = "MEDIUM"
    last_updated: datetime | None = None


class RuleTemplate(_FrozenModel):
    """A rule definition without identity, as found in policy templates."""

    name: str
    description: str = ""
    type: RuleType
    severity: Severity
    enabled: bool = True
    conditions: tuple[RuleCondition, ...] = ()
    actions: tuple[RuleAction, ...] = ()
    metadata: RuleMetadata = Field(default_factory=RuleMetadata)
    condition_mode: ConditionMode | None = None


class PolicyRule(RuleTemplate):
    """A single compliance check belonging to exactly one policy."""

    id: str

    @property
    def has_blocking_action(self) -> bool:
        return any(a.type == ACTION_BLOCK and a.enabled for a in self.actions)


class ReviewSchedule(_FrozenModel):
    frequency: Literal["MONTHLY", "QUARTERLY", "ANNUALLY"]
    next_review: datetime
    reviewer: str


class PolicyException(_FrozenModel):
    """A time-bound, approved suppression of one rule for one dependency name.

    Attributes:
        id: Exception identifier.
        rule_id: Rule being suppressed.
        dependency: Dependency name the suppression applies to.
        justification: Why the exception was granted.
        approved_by: Approver identity.
        approved_at: Approval timestamp.
        expires_at: The exception is inert at and after this instant.
        status: ACTIVE, EXPIRED or REVOKED.
    """

    id: str
    rule_id: str
    dependency: str
    reason: str = ""
    justification: str
    approved_by: str
    approved_at: datetime
    expires_at: datetime
    conditions: tuple[str, ...] = ()
    review_schedule: ReviewSchedule | None = None
    status: ExceptionStatus = "ACTIVE"

    def is_active(self, now: datetime) -> bool:
        return self.status == "ACTIVE" and self.expires_at > now


class PolicyChange(_FrozenModel):
    version: str
    date: datetime
    author: str
    description: str
    changes: tuple[str, ...] = ()


class PolicyMetadata(_FrozenModel):
    framework: str | None = None
    regulation: str | None = None
    tags: tuple[str, ...] = ()
    owner: str = ""
    reviewers: tuple[str, ...] = ()
    last_review: datetime | None = None
    next_review: datetime | None = None
    change_log: tuple[PolicyChange, ...] = ()


class EnforcementConfig(_FrozenModel):
    mode: EnforcementMode = "ENFORCING"
    continue_on_error: bool = True
    parallel: bool = True
    timeout: int = 300
    retry_attempts: int = 0


class DependencyPolicy(_FrozenModel):
    """A tenant-scoped, versioned collection of rules.

    Attributes:
        id: Policy identifier.
        tenant_id: Owning tenant.
        name: Human-readable name.
        version: Semver string; patch is bumped when rules change.
        enabled: Disabled policies are never evaluated.
        priority: Higher first in listings and reports. Does not short-circuit.
        scope: Which dependencies the policy applies to.
        rules: Ordered rules.
        enforcement: Enforcement mode and execution hints.
        exceptions: Granted rule exceptions.
        metadata: Ownership, review dates and change log.
    """

    id: str
    tenant_id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    enabled: bool = True
    priority: int = 100
    scope: PolicyScope = Field(default_factory=PolicyScope)
    rules: tuple[PolicyRule, ...] = ()
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    exceptions: tuple[PolicyException, ...] = ()
    metadata: PolicyMetadata = Field(default_factory=PolicyMetadata)
    created_at: datetime
    updated_at: datetime
    created_by: str
    approved_by: str | None = None
    approved_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.enabled and self.enforcement.mode != "DISABLED"


class TemplateMetadata(_FrozenModel):
    version: str = "1.0.0"
    author: str = ""
    tags: tuple[str, ...] = ()
    references: tuple[str, ...] = ()


class PolicyTemplate(_FrozenModel):
    id: str
    name: str
    description: str = ""
    category: Literal["SECURITY", "LICENSE", "MAINTENANCE", "COMPLIANCE", "CUSTOM"]
    framework: str | None = None
    rules: tuple[RuleTemplate, ...]
    default_scope: PolicyScope = Field(default_factory=PolicyScope)
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)


# ---------------------------------------------------------------------------
# Administrative inputs
# ---------------------------------------------------------------------------


class RuleDraft(RuleTemplate):
    """A rule submitted for creation or update. Rules without an id get one assigned."""

    id: str | None = None


class PolicyDraft(_FrozenModel):
    """Everything needed to create a policy except identity and timestamps."""

    name: str
    description: str = ""
    version: str = "1.0.0"
    enabled: bool = True
    priority: int = 100
    scope: PolicyScope = Field(default_factory=PolicyScope)
    rules: tuple[RuleDraft, ...] = ()
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    metadata: PolicyMetadata = Field(default_factory=PolicyMetadata)


class PolicyPatch(_FrozenModel):
    """Partial policy update. Only fields that were explicitly set are applied."""

    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    priority: int | None = None
    scope: PolicyScope | None = None
    rules: tuple[RuleDraft, ...] | None = None
    enforcement: EnforcementConfig | None = None
    metadata: PolicyMetadata | None = None


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------


class ViolationEvidence(_FrozenModel):
    type: Literal["SCAN_RESULT", "CONFIGURATION", "METADATA", "VULNERABILITY", "LICENSE"]
    source: str
    content: dict[str, Any]
    timestamp: datetime


class ViolationDetails(_FrozenModel):
    rule: PolicyRule
    triggered_conditions: tuple[RuleCondition, ...]
    actual_values: dict[str, Any]
    evidence: tuple[ViolationEvidence, ...]
    impact: str
    recommendation: str


class ViolationContext(_FrozenModel):
    project: str
    environment: str
    ecosystem: str
    package_file: str
    scan_id: str | None = None
    build_id: str | None = None
    commit_id: str | None = None
    pull_request_id: str | None = None


class PolicyViolation(_FrozenModel):
    """An evidenced instance of a rule firing for one dependency.

    Created once per (dependency, rule) trigger per evaluation run. Used for
    both violations (rule has an enabled BLOCK action) and warnings.
    """

    id: str
    tenant_id: str
    policy_id: str
    rule_id: str
    dependency: Dependency
    violation_type: RuleType
    severity: Severity
    message: str
    details: ViolationDetails
    context: ViolationContext
    enforcement_mode: EnforcementMode = "ENFORCING"
    status: ViolationStatus = "OPEN"
    first_detected: datetime
    last_seen: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution: str | None = None
    assigned_to: str | None = None
    due_date: datetime | None = None
    tags: tuple[str, ...] = ()


class ExecutedAction(_FrozenModel):
    violation_id: str
    action_type: str
    status: ActionStatus
    result: dict[str, Any] | None = None
    error: str | None = None
    executed_at: datetime
    execution_duration_ms: float


class PolicyEvaluation(_FrozenModel):
    """Evaluation outcome for a single dependency.

    Attributes:
        dependency_id: name@version.
        dependency_name: Package name.
        policy_ids: Policies whose scope included the dependency.
        status: COMPLIANT, VIOLATION, WARNING, EXCEPTION or SKIPPED.
        violations: Triggered rules with an enabled BLOCK action.
        warnings: Triggered rules without one.
        exceptions: Exceptions that suppressed a rule.
        evaluated_at: Completion timestamp.
        evaluation_duration_ms: Wall-clock duration.
        rules_evaluated: Enabled, in-scope rules considered (exceptions included).
        rules_triggered: Rules whose conditions fired.
        actions_executed: Action records produced for this dependency.
        error: Why the dependency was skipped, if it was.
    """

    dependency_id: str
    dependency_name: str
    policy_ids: tuple[str, ...] = ()
    status: EvaluationStatus
    violations: tuple[PolicyViolation, ...] = ()
    warnings: tuple[PolicyViolation, ...] = ()
    exceptions: tuple[PolicyException, ...] = ()
    evaluated_at: datetime
    evaluation_duration_ms: float = 0.0
    rules_evaluated: int = 0
    rules_triggered: int = 0
    actions_executed: int = 0
    error: str | None = None


class EnforcementSummary(_FrozenModel):
    policies_evaluated: int
    rules_evaluated: int
    violations_detected: int
    actions_executed: int
    blocked_dependencies: int
    severity_breakdown: dict[str, int]
    policy_breakdown: dict[str, int]


class PolicyMetrics(_FrozenModel):
    """Policy and violation counters for one tenant, or for all tenants."""

    total_policies: int
    enabled_policies: int
    total_rules: int
    total_violations: int
    open_violations: int
    resolved_violations: int
    violations_by_severity: dict[str, int]
    violations_by_type: dict[str, int]
    evaluation_history: int


class PolicyEnforcementResult(_FrozenModel):
    """Aggregated outcome of one evaluation batch."""

    evaluation_id: str
    tenant_id: str
    total_dependencies: int
    evaluated_dependencies: int
    skipped_dependencies: int
    compliant_dependencies: int
    violating_dependencies: int
    warning_dependencies: int
    evaluations: tuple[PolicyEvaluation, ...]
    executed_actions: tuple[ExecutedAction, ...]
    summary: EnforcementSummary
    start_time: datetime
    end_time: datetime
    duration_ms: float
