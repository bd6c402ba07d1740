"""Policy registry — CRUD, structural validation, templates and exceptions.

The PolicyRegistry is the only writer of DependencyPolicy records. Every
create or update is validated before it is stored:
- a policy has a name and at least one rule
- a rule has a name, at least one condition and at least one action
- a condition names a known field, one of the supported operators, and (for
  "matches") a regex that compiles
- an action has a supported type

Stored policies are frozen models; a mutation stores a new instance, so an
evaluation run holding an older snapshot never observes a partial edit.
Changing a policy's rules bumps its patch version and appends a change-log
entry.
"""

import asyncio
import re
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from dependency_policy_engine.core.events import (
    ExceptionRevoked,
    PolicyCreated,
    PolicyCreatedFromTemplate,
    PolicyUpdated,
)
from dependency_policy_engine.core.interfaces import IEventPublisher, IPolicyRepository
from dependency_policy_engine.core.models import (
    ACTION_TYPES,
    CONDITION_OPERATORS,
    DependencyPolicy,
    EnforcementConfig,
    PolicyChange,
    PolicyDraft,
    PolicyException,
    PolicyMetadata,
    PolicyPatch,
    PolicyRule,
    PolicyScope,
    PolicyTemplate,
    ReviewSchedule,
    RuleAction,
    RuleCondition,
    RuleDraft,
)
from dependency_policy_engine.engine.conditions import compile_pattern
from dependency_policy_engine.engine.fields import is_known_field
from dependency_policy_engine.engine.templates import TemplateCatalog
from dependency_policy_engine.errors import NotFoundError, PolicyValidationError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)

_MEMBERSHIP_OPERATORS = frozenset({"in", "not_in"})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_condition(condition: RuleCondition) -> None:
    if not condition.field:
        raise PolicyValidationError("Condition field is required", field="field")
    if not is_known_field(condition.field):
        raise PolicyValidationError(f"Unknown condition field: {condition.field}", field="field")
    if not condition.operator:
        raise PolicyValidationError("Condition operator is required", field="operator")
    if condition.operator not in CONDITION_OPERATORS:
        raise PolicyValidationError(f"Invalid operator: {condition.operator}", field="operator")

    if condition.operator == "matches":
        if not isinstance(condition.value, str):
            raise PolicyValidationError("Operator 'matches' requires a string pattern", field="value")
        try:
            compile_pattern(condition.value)
        except re.error as exc:
            raise PolicyValidationError(
                f"Invalid regular expression {condition.value!r}: {exc}", field="value"
            ) from exc

    if condition.operator in _MEMBERSHIP_OPERATORS and not isinstance(condition.value, (list, tuple)):
        raise PolicyValidationError(
            f"Operator '{condition.operator}' requires a list value", field="value"
        )


def validate_action(action: RuleAction) -> None:
    if not action.type:
        raise PolicyValidationError("Action type is required", field="type")
    if action.type not in ACTION_TYPES:
        raise PolicyValidationError(f"Invalid action type: {action.type}", field="type")


def validate_rule(rule: PolicyRule) -> None:
    """Validate one rule and all of its conditions and actions.

    Raises:
        PolicyValidationError: On the first structural problem found.
    """
    if not rule.name or not rule.name.strip():
        raise PolicyValidationError("Rule name is required", field="name")
    if not rule.conditions:
        raise PolicyValidationError(f"Rule '{rule.name}' must have at least one condition", field="conditions")
    if not rule.actions:
        raise PolicyValidationError(f"Rule '{rule.name}' must have at least one action", field="actions")

    for condition in rule.conditions:
        validate_condition(condition)
    for action in rule.actions:
        validate_action(action)

    if rule.condition_mode == "GROUPED" and rule.conditions[-1].logical_operator is not None:
        raise PolicyValidationError(
            f"Rule '{rule.name}': the last condition of a GROUPED rule cannot set a logical operator",
            field="logical_operator",
        )


def validate_policy(policy: DependencyPolicy) -> None:
    """Validate a policy before it is stored.

    Raises:
        PolicyValidationError: On the first structural problem found.
    """
    if not policy.name or not policy.name.strip():
        raise PolicyValidationError("Policy name is required", field="name")
    if not policy.rules:
        raise PolicyValidationError("Policy must have at least one rule", field="rules")

    seen: set[str] = set()
    for rule in policy.rules:
        if rule.id in seen:
            raise PolicyValidationError(f"Duplicate rule id: {rule.id}", field="rules")
        seen.add(rule.id)
        validate_rule(rule)


def bump_patch(version: str) -> str:
    """Increment the patch component of a semver string ("1.2.3" -> "1.2.4")."""
    parts = version.split(".")
    try:
        major = int(parts[0]) if parts[0] else 1
        minor = int(parts[1]) if len(parts) > 1 else 0
        patch = int(parts[2]) if len(parts) > 2 else 0
    except ValueError as exc:
        raise PolicyValidationError(f"Invalid policy version: {version}", field="version") from exc
    return f"{major}.{minor}.{patch + 1}"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _materialize_rules(drafts: Iterable[RuleDraft]) -> tuple[PolicyRule, ...]:
    rules = []
    for draft in drafts:
        data = draft.model_dump(exclude={"id"})
        rules.append(PolicyRule.model_validate({**data, "id": draft.id or _new_id("rule")}))
    return tuple(rules)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class PolicyRegistry:
    """Creates, updates and serves tenant policies.

    Args:
        repository: Policy storage.
        publisher: Receives administrative events.
        templates: Template catalog. Defaults to the bundled templates.
        review_interval_days: Next-review offset for template-created policies.
        clock: Current-time source.
    """

    def __init__(
        self,
        repository: IPolicyRepository,
        publisher: IEventPublisher,
        templates: TemplateCatalog | None = None,
        review_interval_days: int = 90,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._templates = templates or TemplateCatalog()
        self._review_interval = timedelta(days=review_interval_days)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def create_policy(
        self,
        tenant_id: str,
        draft: PolicyDraft,
        created_by: str,
    ) -> DependencyPolicy:
        """Validate and store a new policy.

        Args:
            tenant_id: Owning tenant.
            draft: Policy content. Rules without ids are assigned new ids.
            created_by: Author identity.

        Returns:
            The stored policy.

        Raises:
            PolicyValidationError: If the policy is structurally invalid.
        """
        now = self._clock()
        policy = DependencyPolicy(
            id=_new_id("policy"),
            tenant_id=tenant_id,
            name=draft.name,
            description=draft.description,
            version=draft.version,
            enabled=draft.enabled,
            priority=draft.priority,
            scope=draft.scope,
            rules=_materialize_rules(draft.rules),
            enforcement=draft.enforcement,
            metadata=draft.metadata,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        validate_policy(policy)
        await self._repository.put(policy)

        logger.info("Policy created", policy_id=policy.id, tenant_id=tenant_id, name=policy.name)
        await self._publisher.publish(
            PolicyCreated(tenant_id=tenant_id, policy_id=policy.id, name=policy.name)
        )
        return policy

    async def create_policy_from_template(
        self,
        tenant_id: str,
        template_id: str,
        created_by: str,
        name: str | None = None,
        scope: Mapping[str, Any] | None = None,
        rule_overrides: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> DependencyPolicy:
        """Instantiate a policy from a catalog template.

        Args:
            tenant_id: Owning tenant.
            template_id: Template to instantiate.
            created_by: Author identity; also becomes the policy owner.
            name: Policy name. Defaults to the template name.
            scope: Scope dimensions overriding the template's default scope.
            rule_overrides: Rule field overrides keyed by template rule name.

        Returns:
            The stored policy.

        Raises:
            NotFoundError: If the template does not exist.
            PolicyValidationError: If the overrides produce an invalid policy.
        """
        template = self._templates.get(template_id)
        now = self._clock()
        overrides = rule_overrides or {}

        try:
            rules = tuple(
                PolicyRule.model_validate(
                    {**rule.model_dump(), **overrides.get(rule.name, {}), "id": _new_id("rule")}
                )
                for rule in template.rules
            )
            policy_scope = PolicyScope.model_validate(
                {**template.default_scope.model_dump(), **(scope or {})}
            )
        except ValidationError as exc:
            raise PolicyValidationError(f"Invalid template customization: {exc}") from exc

        policy = DependencyPolicy(
            id=_new_id("policy"),
            tenant_id=tenant_id,
            name=name or template.name,
            description=template.description,
            scope=policy_scope,
            rules=rules,
            enforcement=EnforcementConfig(
                mode="ENFORCING", continue_on_error=False, parallel=True, timeout=300, retry_attempts=2
            ),
            metadata=PolicyMetadata(
                framework=template.framework,
                tags=template.metadata.tags,
                owner=created_by,
                last_review=now,
                next_review=now + self._review_interval,
                change_log=(
                    PolicyChange(
                        version="1.0.0",
                        date=now,
                        author=created_by,
                        description=f"Created from template: {template.name}",
                        changes=("Initial policy creation",),
                    ),
                ),
            ),
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        validate_policy(policy)
        await self._repository.put(policy)

        logger.info(
            "Policy created from template",
            policy_id=policy.id,
            tenant_id=tenant_id,
            template_id=template_id,
        )
        await self._publisher.publish(
            PolicyCreatedFromTemplate(tenant_id=tenant_id, policy_id=policy.id, template_id=template_id)
        )
        return policy

    async def update_policy(
        self,
        policy_id: str,
        patch: PolicyPatch,
        updated_by: str,
    ) -> DependencyPolicy:
        """Apply a partial update to a stored policy.

        When the rules change, the patch version is bumped and a change-log
        entry is appended.

        Args:
            policy_id: Policy to update.
            patch: Fields to change. Unset fields are left as they are.
            updated_by: Author identity for the change log.

        Returns:
            The stored, updated policy.

        Raises:
            NotFoundError: If the policy does not exist.
            PolicyValidationError: If the result is structurally invalid.
        """
        async with self._lock:
            existing = await self.get_policy(policy_id)
            now = self._clock()

            updates: dict[str, Any] = {
                name: getattr(patch, name)
                for name in patch.model_fields_set
                if getattr(patch, name) is not None
            }
            if "rules" in updates:
                updates["rules"] = _materialize_rules(updates["rules"])
            updates["updated_at"] = now

            updated = existing.model_copy(update=updates)
            if "rules" in updates and updates["rules"] != existing.rules:
                version = bump_patch(existing.version)
                change = PolicyChange(
                    version=version,
                    date=now,
                    author=updated_by,
                    description="Policy rules updated",
                    changes=("Rules modified",),
                )
                updated = updated.model_copy(
                    update={
                        "version": version,
                        "metadata": updated.metadata.model_copy(
                            update={"change_log": (*updated.metadata.change_log, change)}
                        ),
                    }
                )

            validate_policy(updated)
            await self._repository.put(updated)

        logger.info("Policy updated", policy_id=policy_id, version=updated.version, updated_by=updated_by)
        await self._publisher.publish(
            PolicyUpdated(tenant_id=updated.tenant_id, policy_id=policy_id, version=updated.version)
        )
        return updated

    async def get_policy(self, policy_id: str) -> DependencyPolicy:
        policy = await self._repository.get(policy_id)
        if policy is None:
            raise NotFoundError("Policy", policy_id)
        return policy

    async def list_policies(self, tenant_id: str) -> list[DependencyPolicy]:
        """Return a tenant's policies, highest priority first."""
        policies = await self._repository.list_all(tenant_id)
        return sorted(policies, key=lambda p: (-p.priority, p.name))

    async def active_policies(self, tenant_id: str) -> list[DependencyPolicy]:
        """Return the enabled, non-DISABLED policies of a tenant, highest priority first."""
        return [p for p in await self.list_policies(tenant_id) if p.is_active]

    async def delete_policy(self, policy_id: str) -> None:
        async with self._lock:
            if not await self._repository.delete(policy_id):
                raise NotFoundError("Policy", policy_id)
        logger.info("Policy deleted", policy_id=policy_id)

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------

    async def add_exception(
        self,
        policy_id: str,
        rule_id: str,
        dependency: str,
        justification: str,
        approved_by: str,
        expires_at: datetime,
        reason: str = "",
        conditions: Iterable[str] = (),
        review_schedule: ReviewSchedule | None = None,
    ) -> PolicyException:
        """Grant a time-bound exception for one rule and one dependency name.

        Raises:
            NotFoundError: If the policy does not exist.
            PolicyValidationError: If the rule is not part of the policy or the
                expiry is not in the future.
        """
        async with self._lock:
            policy = await self.get_policy(policy_id)
            now = self._clock()
            expires_at = _as_utc(expires_at)

            if not any(rule.id == rule_id for rule in policy.rules):
                raise PolicyValidationError(f"Rule {rule_id} is not part of policy {policy_id}", field="rule_id")
            if not dependency:
                raise PolicyValidationError("Exception dependency is required", field="dependency")
            if expires_at <= now:
                raise PolicyValidationError("Exception expiry must be in the future", field="expires_at")

            exception = PolicyException(
                id=_new_id("exception"),
                rule_id=rule_id,
                dependency=dependency,
                reason=reason,
                justification=justification,
                approved_by=approved_by,
                approved_at=now,
                expires_at=expires_at,
                conditions=tuple(conditions),
                review_schedule=review_schedule,
            )
            await self._repository.put(
                policy.model_copy(update={"exceptions": (*policy.exceptions, exception), "updated_at": now})
            )

        logger.info(
            "Policy exception granted",
            policy_id=policy_id,
            exception_id=exception.id,
            rule_id=rule_id,
            dependency=dependency,
            expires_at=expires_at.isoformat(),
        )
        return exception

    async def revoke_exception(
        self,
        policy_id: str,
        exception_id: str,
        revoked_by: str,
    ) -> PolicyException:
        """Mark an exception REVOKED. It stops suppressing its rule immediately.

        Raises:
            NotFoundError: If the policy or exception does not exist.
        """
        async with self._lock:
            policy = await self.get_policy(policy_id)
            target = next((e for e in policy.exceptions if e.id == exception_id), None)
            if target is None:
                raise NotFoundError("Exception", exception_id)

            revoked = target.model_copy(update={"status": "REVOKED"})
            exceptions = tuple(revoked if e.id == exception_id else e for e in policy.exceptions)
            await self._repository.put(
                policy.model_copy(update={"exceptions": exceptions, "updated_at": self._clock()})
            )

        logger.info("Policy exception revoked", policy_id=policy_id, exception_id=exception_id, revoked_by=revoked_by)
        await self._publisher.publish(
            ExceptionRevoked(
                tenant_id=policy.tenant_id,
                policy_id=policy_id,
                exception_id=exception_id,
                revoked_by=revoked_by,
            )
        )
        return revoked

    async def expire_exceptions(self, now: datetime | None = None) -> int:
        """Flip ACTIVE exceptions past their expiry to EXPIRED.

        Expired exceptions are already inert during evaluation; this sweep
        only makes the stored status reflect it.

        Returns:
            Number of exceptions marked EXPIRED.
        """
        now = now or self._clock()
        expired = 0
        async with self._lock:
            for policy in await self._repository.list_all():
                stale = {e.id for e in policy.exceptions if e.status == "ACTIVE" and e.expires_at <= now}
                if not stale:
                    continue
                exceptions = tuple(
                    e.model_copy(update={"status": "EXPIRED"}) if e.id in stale else e
                    for e in policy.exceptions
                )
                await self._repository.put(policy.model_copy(update={"exceptions": exceptions}))
                expired += len(stale)

        if expired:
            logger.info("Policy exceptions expired", count=expired)
        return expired

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def list_templates(self) -> list[PolicyTemplate]:
        return self._templates.list_templates()

    def get_template(self, template_id: str) -> PolicyTemplate:
        return self._templates.get(template_id)
