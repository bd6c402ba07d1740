"""Abstract interfaces (Protocol classes) for the policy engine.

Defines the contracts between the engine/service layer and the adapter layer
using typing.Protocol. Engine code depends on these protocols, never on the
concrete in-memory adapters, so persistence and event delivery can be
substituted without touching evaluation logic.

Protocols defined:
- IPolicyRepository
- IViolationRepository
- IEvaluationHistoryRepository
- IEventPublisher
- IFactEnricher
"""

from typing import Any, Protocol

from dependency_policy_engine.core.events import EngineEvent
from dependency_policy_engine.core.models import (
    Dependency,
    DependencyPolicy,
    EvaluationContext,
    PolicyEnforcementResult,
    PolicyViolation,
)


class IPolicyRepository(Protocol):
    """Repository contract for DependencyPolicy storage."""

    async def get(self, policy_id: str) -> DependencyPolicy | None:
        """Return the policy with the given id, or None."""
        ...

    async def list_all(self, tenant_id: str | None = None) -> list[DependencyPolicy]:
        """Return all policies, optionally restricted to one tenant.

        Args:
            tenant_id: Tenant filter. None returns every tenant's policies.

        Returns:
            Stored policies in no particular order.
        """
        ...

    async def put(self, policy: DependencyPolicy) -> None:
        """Insert or replace a policy keyed by its id."""
        ...

    async def delete(self, policy_id: str) -> bool:
        """Remove a policy. Returns True if it existed."""
        ...


class IViolationRepository(Protocol):
    """Repository contract for PolicyViolation storage."""

    async def get(self, violation_id: str) -> PolicyViolation | None:
        ...

    async def list_all(self, tenant_id: str | None = None) -> list[PolicyViolation]:
        ...

    async def put(self, violation: PolicyViolation) -> None:
        ...

    async def delete(self, violation_id: str) -> bool:
        ...


class IEvaluationHistoryRepository(Protocol):
    """Repository contract for completed PolicyEnforcementResults."""

    async def get(self, evaluation_id: str) -> PolicyEnforcementResult | None:
        ...

    async def list_all(self, tenant_id: str | None = None) -> list[PolicyEnforcementResult]:
        ...

    async def put(self, result: PolicyEnforcementResult) -> None:
        ...

    async def delete(self, evaluation_id: str) -> bool:
        ...


class IEventPublisher(Protocol):
    """Delivery channel for engine events."""

    async def publish(self, event: EngineEvent) -> None:
        """Publish one event.

        Args:
            event: Any member of the EngineEvent union.
        """
        ...


class IFactEnricher(Protocol):
    """Pure function contributing extra facts for a dependency.

    Enrichers run before rule evaluation and must not perform blocking I/O.
    Returned keys are merged into the fact record's extra mapping. An
    exception raised here is an evaluation error for that dependency only.
    """

    def __call__(
        self,
        dependency: Dependency,
        context: EvaluationContext,
    ) -> dict[str, Any]:
        ...
