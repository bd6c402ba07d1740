"""Enforcement orchestrator — evaluates a whole dependency batch.

The orchestrator processes a batch by:
1. Loading the tenant's active policies once, as an immutable snapshot
2. Evaluating every dependency on a bounded asyncio worker pool
3. Running enforcement actions for each violation found
4. Merging per-dependency results post-hoc, in input order
5. Aggregating counts, severity/policy breakdowns and executed actions
6. Recording the result in the evaluation history

Failure handling:
- An error while evaluating one dependency is caught, the dependency is
  reported as SKIPPED with the error message, a dependencyEvaluationError
  event is published, and the batch continues.
- The batch deadline bounds the evaluation phase. A dependency whose
  evaluation starts or finishes after the deadline is reported as SKIPPED,
  its partial result is discarded and none of its actions run. Once a
  dependency's actions are dispatched they run to completion and are always
  reported, so no event goes out for a dependency the result calls SKIPPED.
- A failure to load policies is fatal: policyEvaluationFailed is published
  and the error propagates.

Completeness: every input dependency yields exactly one PolicyEvaluation.
EXCEPTION counts toward compliant_dependencies, so
total == evaluated + skipped and evaluated == compliant + violating + warning.
"""

import asyncio
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from dependency_policy_engine.core.events import (
    DependencyEvaluationError,
    PolicyEvaluationCompleted,
    PolicyEvaluationFailed,
    PolicyEvaluationStarted,
)
from dependency_policy_engine.core.interfaces import (
    IEvaluationHistoryRepository,
    IEventPublisher,
    IPolicyRepository,
)
from dependency_policy_engine.core.models import (
    SEVERITIES,
    Dependency,
    DependencyPolicy,
    EnforcementSummary,
    EvaluationContext,
    ExecutedAction,
    PolicyEnforcementResult,
    PolicyEvaluation,
)
from dependency_policy_engine.engine.actions import ActionExecutor
from dependency_policy_engine.engine.evaluator import (
    STATUS_COMPLIANT,
    STATUS_EXCEPTION,
    STATUS_SKIPPED,
    STATUS_VIOLATION,
    STATUS_WARNING,
    DependencyEvaluator,
)
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)

DEADLINE_EXCEEDED = "evaluation deadline exceeded"

_WorkerResult = tuple[PolicyEvaluation, list[ExecutedAction]]


def build_summary(
    policies: Sequence[DependencyPolicy],
    evaluations: Sequence[PolicyEvaluation],
    executed_actions: Sequence[ExecutedAction],
) -> EnforcementSummary:
    """Aggregate a batch summary from per-dependency evaluations.

    Args:
        policies: Active policy snapshot used for the batch.
        evaluations: One evaluation per dependency.
        executed_actions: All executed action records.

    Returns:
        EnforcementSummary. Severity and policy breakdowns count violations
        and warnings together. rules_evaluated counts only the enabled rules
        of the snapshot; disabled rules are never evaluated.
    """
    severity_breakdown: dict[str, int] = {severity: 0 for severity in SEVERITIES}
    policy_breakdown: dict[str, int] = {}

    for evaluation in evaluations:
        for finding in (*evaluation.violations, *evaluation.warnings):
            severity_breakdown[finding.severity] += 1
            policy_breakdown[finding.policy_id] = policy_breakdown.get(finding.policy_id, 0) + 1

    return EnforcementSummary(
        policies_evaluated=len(policies),
        rules_evaluated=sum(1 for policy in policies for rule in policy.rules if rule.enabled),
        violations_detected=sum(len(e.violations) for e in evaluations),
        actions_executed=len(executed_actions),
        blocked_dependencies=sum(
            1
            for e in evaluations
            if any(v.details.rule.has_blocking_action for v in e.violations)
        ),
        severity_breakdown=severity_breakdown,
        policy_breakdown=policy_breakdown,
    )


class EnforcementOrchestrator:
    """Drives dependency evaluation across a batch.

    Args:
        policy_repository: Source of tenant policies.
        dependency_evaluator: Per-dependency pipeline.
        action_executor: Runs enforcement actions for violations.
        publisher: Receives batch lifecycle events.
        history_repository: Optional store for completed results.
        max_concurrency: Upper bound on concurrently evaluated dependencies.
        deadline_seconds: Optional whole-batch deadline.
        execute_warning_actions: Also run actions for warnings.
        clock: Current-time source.
    """

    def __init__(
        self,
        policy_repository: IPolicyRepository,
        dependency_evaluator: DependencyEvaluator,
        action_executor: ActionExecutor,
        publisher: IEventPublisher,
        history_repository: IEvaluationHistoryRepository | None = None,
        max_concurrency: int = 8,
        deadline_seconds: float | None = None,
        execute_warning_actions: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._policies = policy_repository
        self._evaluator = dependency_evaluator
        self._executor = action_executor
        self._publisher = publisher
        self._history = history_repository
        self._max_concurrency = max_concurrency
        self._deadline_seconds = deadline_seconds
        self._execute_warning_actions = execute_warning_actions
        self._clock = clock or (lambda: datetime.now(UTC))

    async def evaluate_policies(
        self,
        dependencies: Sequence[Dependency],
        tenant_id: str,
        context: EvaluationContext | None = None,
    ) -> PolicyEnforcementResult:
        """Evaluate a batch of dependencies against the tenant's active policies.

        Args:
            dependencies: Dependencies to evaluate.
            tenant_id: Owning tenant.
            context: Project/environment/build context for the batch.

        Returns:
            PolicyEnforcementResult covering every input dependency.

        Raises:
            Exception: If the tenant's policies cannot be loaded.
        """
        context = context or EvaluationContext()
        evaluation_id = str(uuid.uuid4())
        start_time = self._clock()
        started = time.monotonic()

        logger.info(
            "Starting policy evaluation",
            evaluation_id=evaluation_id,
            tenant_id=tenant_id,
            dependency_count=len(dependencies),
            project=context.project,
            environment=context.environment,
        )
        await self._publisher.publish(
            PolicyEvaluationStarted(
                tenant_id=tenant_id,
                evaluation_id=evaluation_id,
                dependency_count=len(dependencies),
            )
        )

        try:
            policies = await self._load_active_policies(tenant_id)
        except Exception as exc:
            logger.error(
                "Policy evaluation failed",
                evaluation_id=evaluation_id,
                tenant_id=tenant_id,
                error=str(exc),
            )
            await self._publisher.publish(
                PolicyEvaluationFailed(
                    tenant_id=tenant_id,
                    evaluation_id=evaluation_id,
                    error=str(exc),
                )
            )
            raise

        loop = asyncio.get_running_loop()
        deadline = (
            loop.time() + self._deadline_seconds if self._deadline_seconds is not None else None
        )
        semaphore = asyncio.Semaphore(self._max_concurrency)

        def _past_deadline() -> bool:
            return deadline is not None and loop.time() >= deadline

        async def _worker(position: int, dependency: Dependency) -> _WorkerResult:
            async with semaphore:
                if _past_deadline():
                    return self._skipped(dependency, DEADLINE_EXCEEDED), []
                try:
                    evaluation = self._evaluator.evaluate(
                        dependency, policies, context, run_id=evaluation_id, position=position
                    )
                    if _past_deadline():
                        logger.warning(
                            "Dependency evaluation exceeded batch deadline",
                            evaluation_id=evaluation_id,
                            dependency=dependency.dependency_id,
                        )
                        return self._skipped(dependency, DEADLINE_EXCEEDED), []
                    return await self._run_actions(evaluation, context)
                except Exception as exc:
                    logger.warning(
                        "Dependency evaluation error",
                        evaluation_id=evaluation_id,
                        dependency=dependency.dependency_id,
                        error=str(exc),
                    )
                    await self._publisher.publish(
                        DependencyEvaluationError(
                            tenant_id=tenant_id,
                            evaluation_id=evaluation_id,
                            dependency=dependency.name,
                            error=str(exc),
                        )
                    )
                    return self._skipped(dependency, str(exc)), []

        worker_results = await asyncio.gather(
            *(_worker(position, d) for position, d in enumerate(dependencies))
        )

        evaluations: list[PolicyEvaluation] = []
        executed_actions: list[ExecutedAction] = []
        for evaluation, actions in worker_results:
            evaluations.append(evaluation)
            executed_actions.extend(actions)

        result = self._aggregate(
            evaluation_id=evaluation_id,
            tenant_id=tenant_id,
            policies=policies,
            evaluations=evaluations,
            executed_actions=executed_actions,
            start_time=start_time,
            duration_ms=(time.monotonic() - started) * 1000,
        )

        if self._history is not None:
            await self._history.put(result)

        await self._publisher.publish(
            PolicyEvaluationCompleted(
                tenant_id=tenant_id,
                evaluation_id=evaluation_id,
                violations_count=result.summary.violations_detected,
                blocked_count=result.summary.blocked_dependencies,
                skipped_count=result.skipped_dependencies,
            )
        )
        logger.info(
            "Policy evaluation complete",
            evaluation_id=evaluation_id,
            tenant_id=tenant_id,
            compliant=result.compliant_dependencies,
            violating=result.violating_dependencies,
            warning=result.warning_dependencies,
            skipped=result.skipped_dependencies,
            blocked=result.summary.blocked_dependencies,
            duration_ms=result.duration_ms,
        )
        return result

    async def _load_active_policies(self, tenant_id: str) -> list[DependencyPolicy]:
        policies = await self._policies.list_all(tenant_id)
        active = [p for p in policies if p.is_active]
        active.sort(key=lambda p: p.priority, reverse=True)
        return active

    async def _run_actions(
        self,
        evaluation: PolicyEvaluation,
        context: EvaluationContext,
    ) -> _WorkerResult:
        targets = list(evaluation.violations)
        if self._execute_warning_actions:
            targets.extend(evaluation.warnings)

        per_violation = await asyncio.gather(
            *(self._executor.run_all(violation, context) for violation in targets)
        )
        executed = [action for actions in per_violation for action in actions]
        evaluation = evaluation.model_copy(update={"actions_executed": len(executed)})
        return evaluation, executed

    def _skipped(self, dependency: Dependency, error: str) -> PolicyEvaluation:
        return PolicyEvaluation(
            dependency_id=dependency.dependency_id,
            dependency_name=dependency.name,
            status=STATUS_SKIPPED,
            evaluated_at=self._clock(),
            error=error,
        )

    def _aggregate(
        self,
        evaluation_id: str,
        tenant_id: str,
        policies: Sequence[DependencyPolicy],
        evaluations: Sequence[PolicyEvaluation],
        executed_actions: Sequence[ExecutedAction],
        start_time: datetime,
        duration_ms: float,
    ) -> PolicyEnforcementResult:
        statuses = [e.status for e in evaluations]
        skipped = statuses.count(STATUS_SKIPPED)

        return PolicyEnforcementResult(
            evaluation_id=evaluation_id,
            tenant_id=tenant_id,
            total_dependencies=len(evaluations),
            evaluated_dependencies=len(evaluations) - skipped,
            skipped_dependencies=skipped,
            compliant_dependencies=statuses.count(STATUS_COMPLIANT) + statuses.count(STATUS_EXCEPTION),
            violating_dependencies=statuses.count(STATUS_VIOLATION),
            warning_dependencies=statuses.count(STATUS_WARNING),
            evaluations=tuple(evaluations),
            executed_actions=tuple(executed_actions),
            summary=build_summary(policies, evaluations, executed_actions),
            start_time=start_time,
            end_time=self._clock(),
            duration_ms=round(duration_ms, 3),
        )
