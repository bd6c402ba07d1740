"""API router for the dependency policy engine.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin: business logic lives in the PolicyRegistry and the
ComplianceService. The caller's tenant comes from the X-Tenant-ID header and
the acting identity from X-Actor-ID.

Endpoints:
- POST/GET      /policies                                 — create / list policies
- GET/PATCH/DEL /policies/{id}                            — read / update / delete a policy
- POST          /policies/{id}/exceptions                 — grant a rule exception
- POST          /policies/{id}/exceptions/{eid}/revoke    — revoke an exception
- GET           /templates                                — list policy templates
- GET           /templates/{id}                           — template detail
- POST          /templates/{id}/instantiate               — create a policy from a template
- POST/GET      /evaluations                              — evaluate a batch / list results
- GET           /evaluations/{id}                         — evaluation result lookup
- GET           /violations                               — list violations (filter by status)
- GET           /violations/{id}                          — violation detail
- POST          /violations/{id}/resolve                  — resolve a violation
- GET           /metrics                                  — policy and violation counters
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from dependency_policy_engine.api.schemas import (
    EvaluateRequest,
    EvaluationListResponse,
    ExceptionCreateRequest,
    PolicyCreateRequest,
    PolicyListResponse,
    PolicyUpdateRequest,
    TemplateInstantiateRequest,
    TemplateSummaryResponse,
    ViolationListResponse,
    ViolationResolveRequest,
)
from dependency_policy_engine.core.models import (
    DependencyPolicy,
    PolicyEnforcementResult,
    PolicyException,
    PolicyMetrics,
    PolicyTemplate,
    PolicyViolation,
    ViolationStatus,
)
from dependency_policy_engine.core.services import ComplianceService
from dependency_policy_engine.engine.registry import PolicyRegistry
from dependency_policy_engine.errors import NotFoundError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["dependency-policy"])


# ---------------------------------------------------------------------------
# Dependency factories: resolve the components wired in main.create_app
# ---------------------------------------------------------------------------


def get_registry(request: Request) -> PolicyRegistry:
    return request.app.state.registry


def get_compliance_service(request: Request) -> ComplianceService:
    return request.app.state.compliance_service


def get_tenant_id(x_tenant_id: Annotated[str, Header(min_length=1)]) -> str:
    return x_tenant_id


def get_actor_id(x_actor_id: Annotated[str, Header()] = "system") -> str:
    return x_actor_id


TenantId = Annotated[str, Depends(get_tenant_id)]
ActorId = Annotated[str, Depends(get_actor_id)]
Registry = Annotated[PolicyRegistry, Depends(get_registry)]
Compliance = Annotated[ComplianceService, Depends(get_compliance_service)]


async def _tenant_policy(registry: PolicyRegistry, policy_id: str, tenant_id: str) -> DependencyPolicy:
    policy = await registry.get_policy(policy_id)
    # Other tenants' policies are reported as missing
    if policy.tenant_id != tenant_id:
        raise NotFoundError("Policy", policy_id)
    return policy


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@router.post("/policies", response_model=DependencyPolicy, status_code=201)
async def create_policy(
    request_body: PolicyCreateRequest,
    tenant_id: TenantId,
    actor_id: ActorId,
    registry: Registry,
) -> DependencyPolicy:
    """Create a policy after structural validation."""
    return await registry.create_policy(tenant_id, request_body, created_by=actor_id)


@router.get("/policies", response_model=PolicyListResponse)
async def list_policies(tenant_id: TenantId, registry: Registry) -> PolicyListResponse:
    policies = await registry.list_policies(tenant_id)
    return PolicyListResponse(items=policies, total=len(policies))


@router.get("/policies/{policy_id}", response_model=DependencyPolicy)
async def get_policy(policy_id: str, tenant_id: TenantId, registry: Registry) -> DependencyPolicy:
    return await _tenant_policy(registry, policy_id, tenant_id)


@router.patch("/policies/{policy_id}", response_model=DependencyPolicy)
async def update_policy(
    policy_id: str,
    request_body: PolicyUpdateRequest,
    tenant_id: TenantId,
    actor_id: ActorId,
    registry: Registry,
) -> DependencyPolicy:
    """Apply a partial update. Changing rules bumps the patch version."""
    await _tenant_policy(registry, policy_id, tenant_id)
    return await registry.update_policy(policy_id, request_body, updated_by=actor_id)


@router.delete("/policies/{policy_id}", status_code=204)
async def delete_policy(policy_id: str, tenant_id: TenantId, registry: Registry) -> None:
    await _tenant_policy(registry, policy_id, tenant_id)
    await registry.delete_policy(policy_id)


@router.post("/policies/{policy_id}/exceptions", response_model=PolicyException, status_code=201)
async def add_exception(
    policy_id: str,
    request_body: ExceptionCreateRequest,
    tenant_id: TenantId,
    actor_id: ActorId,
    registry: Registry,
) -> PolicyException:
    """Grant a time-bound exception; the acting identity is recorded as approver."""
    await _tenant_policy(registry, policy_id, tenant_id)
    return await registry.add_exception(
        policy_id,
        rule_id=request_body.rule_id,
        dependency=request_body.dependency,
        justification=request_body.justification,
        approved_by=actor_id,
        expires_at=request_body.expires_at,
        reason=request_body.reason,
        conditions=request_body.conditions,
        review_schedule=request_body.review_schedule,
    )


@router.post(
    "/policies/{policy_id}/exceptions/{exception_id}/revoke",
    response_model=PolicyException,
)
async def revoke_exception(
    policy_id: str,
    exception_id: str,
    tenant_id: TenantId,
    actor_id: ActorId,
    registry: Registry,
) -> PolicyException:
    await _tenant_policy(registry, policy_id, tenant_id)
    return await registry.revoke_exception(policy_id, exception_id, revoked_by=actor_id)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@router.get("/templates", response_model=list[TemplateSummaryResponse])
async def list_templates(registry: Registry) -> list[TemplateSummaryResponse]:
    return [TemplateSummaryResponse.from_template(t) for t in registry.list_templates()]


@router.get("/templates/{template_id}", response_model=PolicyTemplate)
async def get_template(template_id: str, registry: Registry) -> PolicyTemplate:
    return registry.get_template(template_id)


@router.post("/templates/{template_id}/instantiate", response_model=DependencyPolicy, status_code=201)
async def instantiate_template(
    template_id: str,
    request_body: TemplateInstantiateRequest,
    tenant_id: TenantId,
    actor_id: ActorId,
    registry: Registry,
) -> DependencyPolicy:
    """Create a policy from a template with optional name, scope and rule overrides."""
    return await registry.create_policy_from_template(
        tenant_id,
        template_id,
        created_by=actor_id,
        name=request_body.name,
        scope=request_body.scope,
        rule_overrides=request_body.rule_overrides,
    )


# ---------------------------------------------------------------------------
# Evaluations
# ---------------------------------------------------------------------------


@router.post("/evaluations", response_model=PolicyEnforcementResult)
async def evaluate(
    request_body: EvaluateRequest,
    tenant_id: TenantId,
    service: Compliance,
) -> PolicyEnforcementResult:
    """Evaluate a dependency batch against the tenant's active policies."""
    if request_body.schedule_id is not None:
        return await service.run_scheduled_evaluation(
            request_body.schedule_id,
            request_body.dependencies,
            tenant_id,
            request_body.context,
        )
    return await service.evaluate(request_body.dependencies, tenant_id, request_body.context)


@router.get("/evaluations", response_model=EvaluationListResponse)
async def list_evaluations(tenant_id: TenantId, service: Compliance) -> EvaluationListResponse:
    results = await service.list_evaluation_results(tenant_id)
    return EvaluationListResponse(items=results, total=len(results))


@router.get("/evaluations/{evaluation_id}", response_model=PolicyEnforcementResult)
async def get_evaluation(
    evaluation_id: str,
    tenant_id: TenantId,
    service: Compliance,
) -> PolicyEnforcementResult:
    result = await service.get_evaluation_result(evaluation_id)
    if result.tenant_id != tenant_id:
        raise NotFoundError("Evaluation", evaluation_id)
    return result


# ---------------------------------------------------------------------------
# Violations and metrics
# ---------------------------------------------------------------------------


@router.get("/violations", response_model=ViolationListResponse)
async def list_violations(
    tenant_id: TenantId,
    service: Compliance,
    status: ViolationStatus | None = None,
) -> ViolationListResponse:
    violations = await service.list_violations(tenant_id, status=status)
    return ViolationListResponse(items=violations, total=len(violations))


@router.get("/violations/{violation_id}", response_model=PolicyViolation)
async def get_violation(violation_id: str, tenant_id: TenantId, service: Compliance) -> PolicyViolation:
    violation = await service.get_violation(violation_id)
    if violation.tenant_id != tenant_id:
        raise NotFoundError("Violation", violation_id)
    return violation


@router.post("/violations/{violation_id}/resolve", response_model=PolicyViolation)
async def resolve_violation(
    violation_id: str,
    request_body: ViolationResolveRequest,
    tenant_id: TenantId,
    actor_id: ActorId,
    service: Compliance,
) -> PolicyViolation:
    await get_violation(violation_id, tenant_id, service)
    return await service.resolve_violation(violation_id, request_body.resolution, resolved_by=actor_id)


@router.get("/metrics", response_model=PolicyMetrics)
async def get_metrics(tenant_id: TenantId, service: Compliance) -> PolicyMetrics:
    return await service.get_policy_metrics(tenant_id)
