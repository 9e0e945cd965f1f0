"""Grid status tracking: interruption and restoration events.

Each new availability reading is compared with the immediately preceding
availability reading of the same source. Only online->offline and
offline->online produce an event; the event is stored as a synthetic
``event`` reading whose fingerprint dedups detections within the same minute.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import store
from .core.classify import classify_transition
from .core.errors import StoreIOError
from .core.models import (
    AvailabilityReading,
    EventReading,
    GridEventsSummary,
    GridEventType,
    GridStatusEvent,
    Source,
)
from .db import get_session_factory

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LIMIT = 10


def _to_event(reading: EventReading) -> GridStatusEvent:
    return GridStatusEvent(
        timestamp=reading.timestamp,
        source=reading.source,
        event_type=reading.event_type,
        previous_status=reading.previous_status,
        current_status=reading.current_status,
    )


class StatusTracker:
    """Derives status-change events from availability readings."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def record_status_change(self, reading: AvailabilityReading) -> Optional[GridStatusEvent]:
        """Emit an event if ``reading`` changes its source's availability.

        Store failures are logged and swallowed; the calling ingestion goes on.
        """
        try:
            async with store.transaction(self.session_factory, "record_status_change") as session:
                previous = await store.fetch_previous_availability(
                    session,
                    reading.source,
                    reading.timestamp,
                    exclude_fingerprint=reading.fingerprint,
                )
                if previous is None or previous.status == reading.status:
                    return None

                event_type = classify_transition(previous.status, reading.status)
                if event_type is None:
                    logger.debug(
                        "%s status %s -> %s is not a tracked transition",
                        reading.source.value, previous.status.value, reading.status.value,
                    )
                    return None

                event = EventReading(
                    timestamp=reading.timestamp,
                    source=reading.source,
                    event_type=event_type,
                    previous_status=previous.status,
                    current_status=reading.status,
                    context=f"{reading.source.value.upper()} {event_type.value}: "
                            f"{previous.status.value} -> {reading.status.value}",
                )
                inserted = await store.append_reading(session, event)
        except StoreIOError as exc:
            logger.error("Error tracking %s status change: %s", reading.source.value, exc, exc_info=True)
            return None

        if not inserted:
            return None

        if event_type == GridEventType.INTERRUPTION:
            logger.warning("%s INTERRUPTION detected at %s", reading.source.value.upper(), reading.timestamp)
        else:
            logger.info("%s RESTORATION detected at %s", reading.source.value.upper(), reading.timestamp)
        return _to_event(event)

    async def get_grid_events(self, limit: int = DEFAULT_EVENT_LIMIT) -> GridEventsSummary:
        """Most recent grid events plus the last interruption and restoration."""
        async with store.transaction(self.session_factory, "get_grid_events") as session:
            rows = await store.fetch_events(session, Source.GRID, limit)

        events = [_to_event(r) for r in rows]
        last_interruption = next((e for e in events if e.event_type == GridEventType.INTERRUPTION), None)
        last_restoration = next((e for e in events if e.event_type == GridEventType.RESTORATION), None)
        return GridEventsSummary(
            last_interruption=last_interruption.timestamp if last_interruption else None,
            last_restoration=last_restoration.timestamp if last_restoration else None,
            events=events,
        )
