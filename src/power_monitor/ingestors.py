"""Ingestion of scraped readings and raw-reading queries.

The scraper hands over batches of typed readings. Each one is scored (when
the scraper did not score it), validated, checked for an availability
transition, and appended to the store. Re-submitting a reading inside the
same minute is absorbed by its fingerprint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import store
from .consumption import ConsumptionEngine
from .core.classify import ChangesFilter, apply_changes_filter, is_valid_reading, score_reading_confidence
from .core.errors import StoreIOError
from .core.models import (
    AvailabilityReading,
    BalanceReading,
    Category,
    ConsumptionReading,
    IngestResult,
    LatestStatus,
    Reading,
    Source,
    as_utc,
)
from .db import get_session_factory
from .events import StatusTracker

logger = logging.getLogger(__name__)

LATEST_WINDOW = timedelta(hours=1)
# balance is scraped far less often than the other signals
BALANCE_WINDOW = timedelta(hours=24)
DEFAULT_HISTORY_HOURS = 24
DEFAULT_HISTORY_LIMIT = 1000


def _without_scraped_today(readings: list[Reading]) -> list[Reading]:
    return [r for r in readings if not (isinstance(r, ConsumptionReading) and r.period == "today")]


def _scored(reading: Reading) -> Reading:
    if reading.confidence is not None:
        return reading
    return reading.model_copy(update={"confidence": score_reading_confidence(reading)})


async def ingest_readings(
    readings: Iterable[Reading],
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    tracker: Optional[StatusTracker] = None,
) -> IngestResult:
    """Append a batch of readings to the store.

    A failure to store one reading is logged and counted; it does not stop the
    rest of the batch.
    """
    session_factory = session_factory or get_session_factory()
    tracker = tracker or StatusTracker(session_factory)
    result = IngestResult()

    for reading in readings:
        reading = _scored(reading)
        if not is_valid_reading(reading):
            logger.debug("Rejected %s reading from %s: %r", reading.category.value, reading.source.value, reading)
            result.rejected += 1
            continue

        # compare against the previous status before this reading becomes the latest one
        if isinstance(reading, AvailabilityReading):
            if await tracker.record_status_change(reading):
                result.events += 1

        try:
            async with store.transaction(session_factory, "append_reading") as session:
                inserted = await store.append_reading(session, reading)
        except StoreIOError as exc:
            logger.warning("Failed to save %s reading: %s", reading.category.value, exc)
            result.failed += 1
            continue

        if inserted:
            result.saved += 1
        else:
            result.duplicates += 1

    logger.info(
        "Ingestion complete: %d new records, %d duplicates, %d rejected, %d failed",
        result.saved, result.duplicates, result.rejected, result.failed,
    )
    return result


async def get_latest_status(
    engine: Optional[ConsumptionEngine] = None,
    reference: Optional[datetime] = None,
) -> LatestStatus:
    """Latest reading per (category, source) from the last hour.

    The grid balance is looked up over the last 24 hours instead. The scraped
    "today" consumption is replaced by the figure calculated from meter
    readings when one is available.
    """
    engine = engine or ConsumptionEngine()
    reference = as_utc(reference) if reference is not None else datetime.now(timezone.utc)

    async with store.transaction(engine.session_factory, "get_latest_status") as session:
        readings = await store.fetch_latest_per_signal(session, reference - LATEST_WINDOW)
        balance = await store.fetch_latest_reading(session, Category.BALANCE, Source.GRID, reference - BALANCE_WINDOW)

    readings = [r for r in readings if not (isinstance(r, BalanceReading) and r.source == Source.GRID)]
    if balance is not None:
        readings.append(balance)

    today = await engine.get_today_consumption(reference)
    if today is not None:
        readings = _without_scraped_today(readings)
        readings.append(ConsumptionReading(
            timestamp=today.timestamp,
            source=Source.GRID,
            value=today.value,
            unit=today.unit,
            period="today",
            confidence=today.confidence,
            context="Calculated from meter readings",
        ))
        if today.has_gaps:
            logger.warning("Monitoring gaps detected for today's calculation")

    return LatestStatus(readings=readings, today_consumption=today, as_of=reference)


async def get_reading_history(
    hours: int = DEFAULT_HISTORY_HOURS,
    limit: int = DEFAULT_HISTORY_LIMIT,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    category: Optional[Category] = None,
    source: Optional[Source] = None,
    period: Optional[str] = None,
    changes_filter: Optional[ChangesFilter] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    reference: Optional[datetime] = None,
) -> list[Reading]:
    """Raw readings, newest first.

    An explicit ``start`` (and optional ``end``) takes priority over the
    trailing ``hours`` window. Scraped "today" consumption readings are left
    out unless exactly that category and period are requested, since the
    calculated figure supersedes them. ``changes_filter`` thins the result to
    value changes (``changes_only``) or drops consecutive repeats
    (``no_duplicates``).
    """
    session_factory = session_factory or get_session_factory()
    if start is None:
        now = as_utc(reference) if reference is not None else datetime.now(timezone.utc)
        start = now - timedelta(hours=hours)

    async with store.transaction(session_factory, "get_reading_history") as session:
        readings = await store.fetch_reading_history(
            session,
            start=start,
            end=end,
            category=category,
            source=source,
            period=period,
            limit=limit,
        )

    if not (category == Category.CONSUMPTION and period == "today"):
        readings = _without_scraped_today(readings)

    filtered = apply_changes_filter(readings, changes_filter)
    if changes_filter:
        logger.debug("Applied %s filter: %d of %d readings kept", changes_filter, len(filtered), len(readings))
    return filtered
