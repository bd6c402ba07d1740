"""Typed events emitted by the policy engine.

Every side effect the engine signals to the outside world (CI gates,
notifiers, ticketing bridges, audit logs) is one of the frozen event models
below, delivered through an IEventPublisher. Each event carries enough ids
for a consumer to act without querying the engine again.

The EngineEvent union is closed and discriminated on event_type.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _EngineEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., description="Owning tenant identifier")
    occurred_at: datetime = Field(default_factory=_utcnow, description="UTC emission time")


# ---------------------------------------------------------------------------
# Batch lifecycle
# ---------------------------------------------------------------------------


class PolicyEvaluationStarted(_EngineEventBase):
    event_type: Literal["policyEvaluationStarted"] = "policyEvaluationStarted"
    evaluation_id: str
    dependency_count: int


class PolicyEvaluationCompleted(_EngineEventBase):
    event_type: Literal["policyEvaluationCompleted"] = "policyEvaluationCompleted"
    evaluation_id: str
    violations_count: int
    blocked_count: int
    skipped_count: int


class PolicyEvaluationFailed(_EngineEventBase):
    event_type: Literal["policyEvaluationFailed"] = "policyEvaluationFailed"
    evaluation_id: str
    error: str


class DependencyEvaluationError(_EngineEventBase):
    event_type: Literal["dependencyEvaluationError"] = "dependencyEvaluationError"
    evaluation_id: str
    dependency: str
    error: str


# ---------------------------------------------------------------------------
# Enforcement actions
# ---------------------------------------------------------------------------


class DependencyBlocked(_EngineEventBase):
    event_type: Literal["dependencyBlocked"] = "dependencyBlocked"
    violation_id: str
    dependency: str
    reason: str
    policy_id: str
    rule_id: str


class DependencyWarning(_EngineEventBase):
    event_type: Literal["dependencyWarning"] = "dependencyWarning"
    violation_id: str
    dependency: str
    warning: str
    policy_id: str
    rule_id: str


class PolicyViolationNotification(_EngineEventBase):
    event_type: Literal["policyViolationNotification"] = "policyViolationNotification"
    violation_id: str
    dependency: str
    policy_id: str
    rule_id: str
    severity: str
    message: str
    channels: tuple[str, ...]
    recipients: tuple[str, ...]


class AutoFixTriggered(_EngineEventBase):
    event_type: Literal["autoFixTriggered"] = "autoFixTriggered"
    violation_id: str
    dependency: str
    strategy: str


class IssueCreated(_EngineEventBase):
    event_type: Literal["issueCreated"] = "issueCreated"
    violation_id: str
    tracker: str
    project: str
    issue: dict[str, Any]


class ViolationEscalated(_EngineEventBase):
    event_type: Literal["violationEscalated"] = "violationEscalated"
    violation_id: str
    dependency: str
    policy_id: str
    rule_id: str
    severity: str
    level: int


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


class PolicyCreated(_EngineEventBase):
    event_type: Literal["policyCreated"] = "policyCreated"
    policy_id: str
    name: str


class PolicyCreatedFromTemplate(_EngineEventBase):
    event_type: Literal["policyCreatedFromTemplate"] = "policyCreatedFromTemplate"
    policy_id: str
    template_id: str


class PolicyUpdated(_EngineEventBase):
    event_type: Literal["policyUpdated"] = "policyUpdated"
    policy_id: str
    version: str


class ExceptionRevoked(_EngineEventBase):
    event_type: Literal["exceptionRevoked"] = "exceptionRevoked"
    policy_id: str
    exception_id: str
    revoked_by: str


class ViolationResolved(_EngineEventBase):
    event_type: Literal["violationResolved"] = "violationResolved"
    violation_id: str
    resolved_by: str


EngineEvent = Annotated[
    Union[
        PolicyEvaluationStarted,
        PolicyEvaluationCompleted,
        PolicyEvaluationFailed,
        DependencyEvaluationError,
        DependencyBlocked,
        DependencyWarning,
        PolicyViolationNotification,
        AutoFixTriggered,
        IssueCreated,
        ViolationEscalated,
        PolicyCreated,
        PolicyCreatedFromTemplate,
        PolicyUpdated,
        ExceptionRevoked,
        ViolationResolved,
    ],
    Field(discriminator="event_type"),
]
