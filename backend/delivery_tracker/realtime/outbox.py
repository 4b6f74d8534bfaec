"""
Outbound event queue drained after a successful commit.

Mutations record the events they cause in an ``EventOutbox``; the caller
flushes it only once the change is durable. A failed publish is logged and
skipped: it never raises to the caller and never undoes the committed change.
"""

from typing import Iterable

from delivery_tracker.core.logging import get_logger
from delivery_tracker.realtime.broker import ChannelBroker
from delivery_tracker.realtime.events import RealtimeEvent

logger = get_logger(__name__)


class EventOutbox:
    """Ordered buffer of events belonging to one unit of work."""

    def __init__(self) -> None:
        self._events: list[RealtimeEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> tuple[RealtimeEvent, ...]:
        return tuple(self._events)

    def add(self, event: RealtimeEvent) -> None:
        self._events.append(event)

    def extend(self, events: Iterable[RealtimeEvent]) -> None:
        self._events.extend(events)

    def discard(self) -> None:
        """Drop pending events, e.g. after a rollback."""
        self._events.clear()

    async def flush(self, broker: ChannelBroker) -> int:
        """
        Publish pending events in order.

        Returns:
            Number of events published without error
        """
        events, self._events = self._events, []
        published = 0
        for event in events:
            try:
                await broker.publish(event)
            except Exception as e:
                logger.error(
                    "Realtime event publication failed",
                    channel=event.channel,
                    event_type=event.event.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            published += 1
        return published
