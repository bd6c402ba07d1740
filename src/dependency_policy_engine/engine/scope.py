"""Scope matching and exception resolution.

ScopeMatcher decides whether a dependency falls within a policy's declared
scope. Every dimension is set membership and an empty dimension is
unrestricted. Environment and project are only checked when the evaluation
context supplies them.

ExceptionResolver finds an ACTIVE, unexpired exception suppressing one rule
for one dependency name. Exceptions carry no priority; the first match in
declaration order wins.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from dependency_policy_engine.core.models import (
    Dependency,
    DependencyPolicy,
    EvaluationContext,
    PolicyException,
    PolicyRule,
    PolicyScope,
)


def _allows(declared: tuple[str, ...], value: str) -> bool:
    return not declared or value in declared


class ScopeMatcher:
    """Pure scope filter. Never raises."""

    def in_scope(
        self,
        dependency: Dependency,
        scope: PolicyScope,
        context: EvaluationContext,
    ) -> bool:
        """Return True if the dependency is covered by the scope.

        Args:
            dependency: Dependency under evaluation.
            scope: Policy scope.
            context: Batch context supplying environment and project.

        Returns:
            Whether every declared dimension admits the dependency.
        """
        if not _allows(scope.ecosystems, dependency.ecosystem):
            return False
        if not _allows(scope.dependency_types, dependency.type):
            return False
        if not _allows(scope.scopes, dependency.scope):
            return False
        if context.environment and not _allows(scope.environments, context.environment):
            return False
        if context.project and not _allows(scope.projects, context.project):
            return False
        return True


class ExceptionResolver:
    """Looks up active exceptions on a policy.

    Args:
        clock: Returns the current UTC time. Injected for deterministic tests.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def find_active(
        self,
        policy: DependencyPolicy,
        rule: PolicyRule,
        dependency: Dependency,
    ) -> PolicyException | None:
        """Return the first active exception for (rule, dependency name), if any."""
        now = self._clock()
        return next(
            (
                exception
                for exception in policy.exceptions
                if exception.rule_id == rule.id
                and exception.dependency == dependency.name
                and exception.is_active(now)
            ),
            None,
        )
