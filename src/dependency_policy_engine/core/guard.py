"""Mutual exclusion for scheduled evaluations.

A scheduled job must not overlap with itself: if a run for a schedule id is
still in progress, the next trigger is rejected instead of queued. The table
is process-local, matching the single-process engine.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dependency_policy_engine.errors import ScheduleAlreadyRunningError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)


class ScheduleRunGuard:
    """Tracks which schedule ids currently have a run in progress."""

    def __init__(self) -> None:
        self._running: set[str] = set()

    def is_running(self, schedule_id: str) -> bool:
        return schedule_id in self._running

    @property
    def running(self) -> frozenset[str]:
        return frozenset(self._running)

    @asynccontextmanager
    async def acquire(self, schedule_id: str) -> AsyncIterator[None]:
        """Hold the schedule for the duration of the block.

        Args:
            schedule_id: Schedule to lock.

        Raises:
            ScheduleAlreadyRunningError: If the schedule is already held.
        """
        # Check and insert happen without an await in between.
        if schedule_id in self._running:
            logger.warning("Scheduled evaluation already running", schedule_id=schedule_id)
            raise ScheduleAlreadyRunningError(schedule_id)
        self._running.add(schedule_id)
        try:
            yield
        finally:
            self._running.discard(schedule_id)
