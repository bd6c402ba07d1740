"""Event publisher adapters.

- InMemoryEventPublisher keeps every event in a list. Tests assert on it.
- LoggingEventPublisher writes one structured log line per event, which is
  the default delivery channel when no broker is wired in.
"""

from dependency_policy_engine.core.events import EngineEvent
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)


class InMemoryEventPublisher:
    """Captures published events in memory, in publication order."""

    def __init__(self) -> None:
        self.events: list[EngineEvent] = []

    async def publish(self, event: EngineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[EngineEvent]:
        """Return captured events whose event_type matches."""
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventPublisher:
    """Publishes each event as a structured log line."""

    async def publish(self, event: EngineEvent) -> None:
        logger.info(
            "Engine event",
            **event.model_dump(mode="json"),
        )
