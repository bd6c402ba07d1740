"""Compliance service — the administrative layer around the engine.

ComplianceService wires the EnforcementOrchestrator to the violation and
evaluation-history stores:
- evaluate / run_scheduled_evaluation: run a batch and record its findings
- get_violation / list_violations / resolve_violation: violation lifecycle
- get_evaluation_result / list_evaluation_results: history lookup
- get_policy_metrics: policy and violation counters

All methods are async-first and accept injected repositories through the
constructor; the service holds no framework code.
"""

from collections import Counter
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from dependency_policy_engine.core.events import ViolationResolved
from dependency_policy_engine.core.guard import ScheduleRunGuard
from dependency_policy_engine.core.interfaces import (
    IEvaluationHistoryRepository,
    IEventPublisher,
    IPolicyRepository,
    IViolationRepository,
)
from dependency_policy_engine.core.models import (
    Dependency,
    EvaluationContext,
    PolicyEnforcementResult,
    PolicyMetrics,
    PolicyViolation,
    ViolationStatus,
)
from dependency_policy_engine.engine.orchestrator import EnforcementOrchestrator
from dependency_policy_engine.errors import NotFoundError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)


class ComplianceService:
    """Runs evaluations and manages their recorded outcomes.

    Args:
        orchestrator: Batch evaluation engine.
        policy_repository: Policy store, read for metrics.
        violation_repository: Store for violations and warnings found by runs.
        history_repository: Store for completed batch results.
        publisher: Receives violationResolved events.
        guard: Schedule mutual-exclusion table.
        clock: Current-time source.
    """

    def __init__(
        self,
        orchestrator: EnforcementOrchestrator,
        policy_repository: IPolicyRepository,
        violation_repository: IViolationRepository,
        history_repository: IEvaluationHistoryRepository,
        publisher: IEventPublisher,
        guard: ScheduleRunGuard | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._policies = policy_repository
        self._violations = violation_repository
        self._history = history_repository
        self._publisher = publisher
        self._guard = guard or ScheduleRunGuard()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(
        self,
        dependencies: Sequence[Dependency],
        tenant_id: str,
        context: EvaluationContext | None = None,
    ) -> PolicyEnforcementResult:
        """Evaluate a dependency batch and record every violation and warning.

        Args:
            dependencies: Dependencies to evaluate.
            tenant_id: Owning tenant.
            context: Batch evaluation context.

        Returns:
            The batch result.
        """
        result = await self._orchestrator.evaluate_policies(dependencies, tenant_id, context)

        recorded = 0
        for evaluation in result.evaluations:
            for finding in (*evaluation.violations, *evaluation.warnings):
                await self._violations.put(finding)
                recorded += 1

        logger.info(
            "Evaluation recorded",
            evaluation_id=result.evaluation_id,
            tenant_id=tenant_id,
            findings=recorded,
        )
        return result

    async def run_scheduled_evaluation(
        self,
        schedule_id: str,
        dependencies: Sequence[Dependency],
        tenant_id: str,
        context: EvaluationContext | None = None,
    ) -> PolicyEnforcementResult:
        """Evaluate a batch on behalf of a schedule, rejecting overlapping runs.

        Raises:
            ScheduleAlreadyRunningError: If this schedule is already running.
        """
        async with self._guard.acquire(schedule_id):
            logger.info("Scheduled evaluation started", schedule_id=schedule_id, tenant_id=tenant_id)
            return await self.evaluate(dependencies, tenant_id, context)

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    async def get_violation(self, violation_id: str) -> PolicyViolation:
        violation = await self._violations.get(violation_id)
        if violation is None:
            raise NotFoundError("Violation", violation_id)
        return violation

    async def list_violations(
        self,
        tenant_id: str,
        status: ViolationStatus | None = None,
    ) -> list[PolicyViolation]:
        """Return a tenant's violations, newest first, optionally filtered by status."""
        violations = await self._violations.list_all(tenant_id)
        if status is not None:
            violations = [v for v in violations if v.status == status]
        return sorted(violations, key=lambda v: v.first_detected, reverse=True)

    async def resolve_violation(
        self,
        violation_id: str,
        resolution: str,
        resolved_by: str,
    ) -> PolicyViolation:
        """Mark a violation RESOLVED.

        Args:
            violation_id: Violation to resolve.
            resolution: Free-text resolution note.
            resolved_by: Resolver identity.

        Returns:
            The updated violation.

        Raises:
            NotFoundError: If the violation does not exist.
        """
        violation = await self.get_violation(violation_id)
        resolved = violation.model_copy(
            update={
                "status": "RESOLVED",
                "resolved_at": self._clock(),
                "resolved_by": resolved_by,
                "resolution": resolution,
            }
        )
        await self._violations.put(resolved)

        logger.info("Violation resolved", violation_id=violation_id, resolved_by=resolved_by)
        await self._publisher.publish(
            ViolationResolved(
                tenant_id=resolved.tenant_id,
                violation_id=violation_id,
                resolved_by=resolved_by,
            )
        )
        return resolved

    # ------------------------------------------------------------------
    # History and metrics
    # ------------------------------------------------------------------

    async def get_evaluation_result(self, evaluation_id: str) -> PolicyEnforcementResult:
        result = await self._history.get(evaluation_id)
        if result is None:
            raise NotFoundError("Evaluation", evaluation_id)
        return result

    async def list_evaluation_results(self, tenant_id: str) -> list[PolicyEnforcementResult]:
        results = await self._history.list_all(tenant_id)
        return sorted(results, key=lambda r: r.start_time, reverse=True)

    async def get_policy_metrics(self, tenant_id: str | None = None) -> PolicyMetrics:
        """Count policies, rules and violations.

        Args:
            tenant_id: Restrict to one tenant. None aggregates all tenants.

        Returns:
            PolicyMetrics snapshot.
        """
        policies = await self._policies.list_all(tenant_id)
        violations = await self._violations.list_all(tenant_id)
        history = await self._history.list_all(tenant_id)
        statuses = Counter(v.status for v in violations)

        return PolicyMetrics(
            total_policies=len(policies),
            enabled_policies=sum(1 for p in policies if p.enabled),
            total_rules=sum(len(p.rules) for p in policies),
            total_violations=len(violations),
            open_violations=statuses["OPEN"],
            resolved_violations=statuses["RESOLVED"],
            violations_by_severity=dict(Counter(v.severity for v in violations)),
            violations_by_type=dict(Counter(v.violation_type for v in violations)),
            evaluation_history=len(history),
        )
