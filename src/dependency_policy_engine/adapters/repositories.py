"""In-memory repository implementations.

These satisfy the repository protocols in core.interfaces with plain dicts
keyed by record id. They make the service hermetic without database
infrastructure; a persistent adapter only needs to implement the same four
async methods.

Stored records are frozen pydantic models, so handing the same instance to
several readers is safe.
"""

from typing import Generic, Protocol, TypeVar

from dependency_policy_engine.core.models import (
    DependencyPolicy,
    PolicyEnforcementResult,
    PolicyViolation,
)


class _TenantRecord(Protocol):
    @property
    def tenant_id(self) -> str: ...


RecordT = TypeVar("RecordT", bound=_TenantRecord)


class _InMemoryRepository(Generic[RecordT]):
    """Dict-backed store for tenant-scoped records."""

    def __init__(self) -> None:
        self._records: dict[str, RecordT] = {}

    def _key(self, record: RecordT) -> str:
        raise NotImplementedError

    async def get(self, record_id: str) -> RecordT | None:
        return self._records.get(record_id)

    async def list_all(self, tenant_id: str | None = None) -> list[RecordT]:
        if tenant_id is None:
            return list(self._records.values())
        return [r for r in self._records.values() if r.tenant_id == tenant_id]

    async def put(self, record: RecordT) -> None:
        self._records[self._key(record)] = record

    async def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)


class InMemoryPolicyRepository(_InMemoryRepository[DependencyPolicy]):
    def _key(self, record: DependencyPolicy) -> str:
        return record.id


class InMemoryViolationRepository(_InMemoryRepository[PolicyViolation]):
    def _key(self, record: PolicyViolation) -> str:
        return record.id


class InMemoryEvaluationHistoryRepository(_InMemoryRepository[PolicyEnforcementResult]):
    def _key(self, record: PolicyEnforcementResult) -> str:
        return record.evaluation_id
