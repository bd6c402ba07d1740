"""Pydantic request and response schemas for the administrative API.

Policy, violation and result bodies reuse the frozen domain models from
core.models; the schemas here cover request shapes that have no domain
counterpart and list envelopes.

Resources:
- Policy — CRUD and template instantiation
- PolicyException — grant and revoke
- Evaluation — batch evaluation requests
- Violation — listing and resolution
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from dependency_policy_engine.core.models import (
    Dependency,
    DependencyPolicy,
    EvaluationContext,
    PolicyDraft,
    PolicyEnforcementResult,
    PolicyPatch,
    PolicyTemplate,
    PolicyViolation,
    ReviewSchedule,
)


# ---------------------------------------------------------------------------
# Policy schemas
# ---------------------------------------------------------------------------


class PolicyCreateRequest(PolicyDraft):
    """Request body for creating a policy. Rules without ids are assigned one."""


class PolicyUpdateRequest(PolicyPatch):
    """Request body for a partial policy update. Omitted fields are unchanged."""


class PolicyListResponse(BaseModel):
    items: list[DependencyPolicy] = Field(description="Policies, highest priority first")
    total: int = Field(description="Number of policies returned")


# ---------------------------------------------------------------------------
# Template schemas
# ---------------------------------------------------------------------------


class TemplateSummaryResponse(BaseModel):
    """Listing entry for a policy template (no rule detail)."""

    id: str = Field(description="Template identifier")
    name: str = Field(description="Template name")
    description: str = Field(description="What the template enforces")
    category: str = Field(description="SECURITY | LICENSE | MAINTENANCE | COMPLIANCE | CUSTOM")
    framework: str | None = Field(default=None, description="Compliance framework, if any")
    rule_count: int = Field(description="Number of rules in the template")
    tags: list[str] = Field(default_factory=list, description="Template tags")

    @classmethod
    def from_template(cls, template: PolicyTemplate) -> "TemplateSummaryResponse":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            category=template.category,
            framework=template.framework,
            rule_count=len(template.rules),
            tags=list(template.metadata.tags),
        )


class TemplateInstantiateRequest(BaseModel):
    """Customizations applied when a policy is created from a template."""

    name: str | None = Field(default=None, description="Policy name; defaults to the template name")
    scope: dict[str, list[str]] | None = Field(
        default=None,
        description="Scope dimensions overriding the template default scope",
    )
    rule_overrides: dict[str, dict[str, Any]] | None = Field(
        default=None,
        description="Rule field overrides keyed by template rule name",
    )


# ---------------------------------------------------------------------------
# Exception schemas
# ---------------------------------------------------------------------------


class ExceptionCreateRequest(BaseModel):
    """Request body for granting a rule exception to one dependency."""

    rule_id: str = Field(description="Rule to suppress", min_length=1)
    dependency: str = Field(description="Dependency name the exception applies to", min_length=1)
    justification: str = Field(description="Why the exception is acceptable", min_length=1)
    expires_at: datetime = Field(description="Exception is inert at and after this instant")
    reason: str = Field(default="", description="Short reason code or summary")
    conditions: list[str] = Field(default_factory=list, description="Conditions attached to the approval")
    review_schedule: ReviewSchedule | None = Field(default=None, description="Periodic review plan")


# ---------------------------------------------------------------------------
# Evaluation schemas
# ---------------------------------------------------------------------------


class EvaluateRequest(BaseModel):
    """Request body for evaluating a dependency batch."""

    dependencies: list[Dependency] = Field(description="Dependencies to evaluate")
    context: EvaluationContext = Field(
        default_factory=EvaluationContext,
        description="Project, environment and build identifiers for the batch",
    )
    schedule_id: str | None = Field(
        default=None,
        description="When set, the run is guarded against overlapping runs of this schedule",
    )


class EvaluationListResponse(BaseModel):
    items: list[PolicyEnforcementResult] = Field(description="Results, newest first")
    total: int = Field(description="Number of results returned")


# ---------------------------------------------------------------------------
# Violation schemas
# ---------------------------------------------------------------------------


class ViolationResolveRequest(BaseModel):
    resolution: str = Field(description="How the violation was resolved", min_length=1)


class ViolationListResponse(BaseModel):
    items: list[PolicyViolation] = Field(description="Violations, newest first")
    total: int = Field(description="Number of violations returned")
