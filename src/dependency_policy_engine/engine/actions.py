"""Enforcement action execution.

Each action type has one handler in a dispatch table. Handlers signal the
outside world through typed events; none of them performs the side effect
itself (a BLOCK is an event the CI gate observes, an AUTO_FIX is a request
to an updater, and so on).

Every action runs in isolation: an exception raised by a handler is caught,
logged, and recorded as a FAILED ExecutedAction. It never aborts sibling
actions or the dependency evaluation that produced the violation.

BLOCK actions of PERMISSIVE policies are recorded as SKIPPED.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from dependency_policy_engine.core.events import (
    AutoFixTriggered,
    DependencyBlocked,
    DependencyWarning,
    IssueCreated,
    PolicyViolationNotification,
    ViolationEscalated,
)
from dependency_policy_engine.core.interfaces import IEventPublisher
from dependency_policy_engine.core.models import (
    ACTION_AUTO_FIX,
    ACTION_BLOCK,
    ACTION_CREATE_ISSUE,
    ACTION_ESCALATE,
    ACTION_LOG,
    ACTION_NOTIFY,
    ACTION_WARN,
    ActionConfig,
    EvaluationContext,
    ExecutedAction,
    PolicyViolation,
    RuleAction,
)
from dependency_policy_engine.errors import ActionConfigurationError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)

_LOG_METHODS: dict[str, str] = {
    "DEBUG": "debug",
    "INFO": "info",
    "WARN": "warning",
    "ERROR": "error",
}

_Handler = Callable[[ActionConfig, PolicyViolation, EvaluationContext], Awaitable[dict[str, Any]]]


class ActionExecutor:
    """Runs a rule's configured actions against a violation.

    Args:
        publisher: Event publisher receiving action events.
        clock: Current-time source for executed_at stamps.
    """

    def __init__(
        self,
        publisher: IEventPublisher,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._publisher = publisher
        self._clock = clock or (lambda: datetime.now(UTC))
        self._handlers: dict[str, _Handler] = {
            ACTION_BLOCK: self._block,
            ACTION_WARN: self._warn,
            ACTION_LOG: self._log,
            ACTION_NOTIFY: self._notify,
            ACTION_AUTO_FIX: self._auto_fix,
            ACTION_CREATE_ISSUE: self._create_issue,
            ACTION_ESCALATE: self._escalate,
        }

    async def run_all(
        self,
        violation: PolicyViolation,
        context: EvaluationContext,
    ) -> list[ExecutedAction]:
        """Run every enabled action of the violation's rule, in declared order.

        Args:
            violation: The violation whose rule actions should run.
            context: Batch evaluation context.

        Returns:
            One ExecutedAction per enabled action.
        """
        executed: list[ExecutedAction] = []
        for action in violation.details.rule.actions:
            if not action.enabled:
                continue
            executed.append(await self.run(violation, action, context))
        return executed

    async def run(
        self,
        violation: PolicyViolation,
        action: RuleAction,
        context: EvaluationContext,
    ) -> ExecutedAction:
        """Run a single action with failure isolation.

        Args:
            violation: The violation the action responds to.
            action: The action to run.
            context: Batch evaluation context.

        Returns:
            ExecutedAction with SUCCESS, FAILED or SKIPPED status.
        """
        start = time.monotonic()

        skip_reason = self._skip_reason(violation, action)
        if skip_reason is not None:
            return self._record(violation, action, "SKIPPED", start, result={"reason": skip_reason})

        try:
            handler = self._handlers.get(action.type)
            if handler is None:
                raise ActionConfigurationError(f"Unknown action type: {action.type}")
            result = await handler(action.config, violation, context)
        except Exception as exc:
            logger.warning(
                "Enforcement action failed",
                violation_id=violation.id,
                action_type=action.type,
                dependency=violation.dependency.name,
                error=str(exc),
            )
            return self._record(violation, action, "FAILED", start, error=str(exc))

        return self._record(violation, action, "SUCCESS", start, result=result)

    @staticmethod
    def _skip_reason(violation: PolicyViolation, action: RuleAction) -> str | None:
        if not action.enabled:
            return "action disabled"
        if action.type == ACTION_BLOCK and violation.enforcement_mode == "PERMISSIVE":
            return "policy is permissive"
        return None

    def _record(
        self,
        violation: PolicyViolation,
        action: RuleAction,
        status: str,
        start: float,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ExecutedAction:
        return ExecutedAction(
            violation_id=violation.id,
            action_type=action.type,
            status=status,  # type: ignore[arg-type]
            result=result,
            error=error,
            executed_at=self._clock(),
            execution_duration_ms=round((time.monotonic() - start) * 1000, 3),
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _block(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        reason = config.blocking_message or "Policy violation"
        await self._publisher.publish(
            DependencyBlocked(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                dependency=violation.dependency.name,
                reason=reason,
                policy_id=violation.policy_id,
                rule_id=violation.rule_id,
            )
        )
        return {"blocked": True, "message": config.blocking_message}

    async def _warn(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        warning = config.warning_message or "Policy violation detected"
        await self._publisher.publish(
            DependencyWarning(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                dependency=violation.dependency.name,
                warning=warning,
                policy_id=violation.policy_id,
                rule_id=violation.rule_id,
            )
        )
        return {"warned": True, "message": config.warning_message}

    async def _log(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        level = config.log_level or "WARN"
        message = f"Policy violation: {violation.message}"
        log = getattr(logger, _LOG_METHODS[level])
        log(
            message,
            violation_id=violation.id,
            policy_id=violation.policy_id,
            rule_id=violation.rule_id,
            dependency=violation.dependency.dependency_id,
            severity=violation.severity,
            project=context.project,
            environment=context.environment,
        )
        return {"logged": True, "level": level, "message": message}

    async def _notify(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        await self._publisher.publish(
            PolicyViolationNotification(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                dependency=violation.dependency.name,
                policy_id=violation.policy_id,
                rule_id=violation.rule_id,
                severity=violation.severity,
                message=violation.message,
                channels=config.notification_channels,
                recipients=config.recipients,
            )
        )
        return {
            "notified": True,
            "channels": len(config.notification_channels),
            "recipients": len(config.recipients),
        }

    async def _auto_fix(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        strategy = config.auto_fix_strategy or "UPDATE"
        await self._publisher.publish(
            AutoFixTriggered(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                dependency=violation.dependency.name,
                strategy=strategy,
            )
        )
        return {"auto_fix_triggered": True, "strategy": strategy}

    async def _create_issue(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        tracker = config.issue_tracker
        if tracker is None:
            raise ActionConfigurationError(
                "Issue tracker configuration is required for CREATE_ISSUE action"
            )

        issue = {
            "title": f"Policy Violation: {violation.dependency.name}",
            "description": violation.message,
            "issue_type": tracker.issue_type,
            "priority": tracker.priority,
            "labels": list(tracker.labels),
            "assignee": tracker.assignee,
        }
        await self._publisher.publish(
            IssueCreated(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                tracker=tracker.system,
                project=tracker.project,
                issue=issue,
            )
        )
        return {"issue_created": True, "tracker": tracker.system}

    async def _escalate(
        self, config: ActionConfig, violation: PolicyViolation, context: EvaluationContext
    ) -> dict[str, Any]:
        level = config.escalation_level or 1
        await self._publisher.publish(
            ViolationEscalated(
                tenant_id=violation.tenant_id,
                violation_id=violation.id,
                dependency=violation.dependency.name,
                policy_id=violation.policy_id,
                rule_id=violation.rule_id,
                severity=violation.severity,
                level=level,
            )
        )
        return {"escalated": True, "level": level}
