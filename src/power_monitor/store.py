"""Reading Store access contract.

Thin async functions over an ``AsyncSession``; callers own the transaction.
Rows are converted to and from the typed reading models here so nothing
above this module touches ``ReadingRow`` directly. Storage failures surface
as ``StoreIOError``.
"""

from __future__ import annotations

import functools
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from pydantic import TypeAdapter
from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.errors import StoreIOError
from .core.models import (
    AvailabilityReading,
    Category,
    EventReading,
    MeterReading,
    Reading,
    Source,
    as_utc,
)
from .sqlmodels import ReadingRow

logger = logging.getLogger(__name__)

_reading_adapter: TypeAdapter[Reading] = TypeAdapter(Reading)


def store_errors(fn):
    """Re-raise SQLAlchemy failures as StoreIOError naming the operation."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StoreIOError(f"{fn.__name__} failed: {exc}", operation=fn.__name__) from exc

    return wrapper


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
) -> AsyncIterator[AsyncSession]:
    """One session in one transaction; commit and begin failures become StoreIOError."""
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except SQLAlchemyError as exc:
        raise StoreIOError(f"{operation} failed: {exc}", operation=operation) from exc


def to_storage_time(value: datetime) -> datetime:
    """Naive UTC, the form timestamps are stored and compared in."""
    return as_utc(value).replace(tzinfo=None)


def reading_to_row(reading: Reading) -> dict:
    """Column values for a reading, keyed by mapped attribute name."""
    details: dict = {"context": reading.context}
    status = None
    value = None

    if isinstance(reading, AvailabilityReading):
        status = reading.status.value
    elif isinstance(reading, EventReading):
        status = reading.event_type.value
        details.update({
            "previous_status": reading.previous_status.value,
            "current_status": reading.current_status.value,
            "event_type": reading.event_type.value,
            "detected_at": reading.timestamp.isoformat(),
        })
    else:
        value = reading.value

    return {
        "timestamp": to_storage_time(reading.timestamp),
        "category": reading.category.value,
        "source": reading.source.value,
        "status": status,
        "value": value,
        "unit": reading.unit,
        "period": reading.period,
        "confidence": reading.confidence,
        "details": json.dumps(details),
        "fingerprint": reading.fingerprint,
    }


def reading_from_row(row: ReadingRow) -> Reading:
    try:
        details = json.loads(row.details) if row.details else {}
    except ValueError:
        logger.warning("Unreadable metadata on reading %s", row.id)
        details = {}

    data = {
        "category": row.category,
        "source": row.source,
        "timestamp": as_utc(row.timestamp),
        "unit": row.unit,
        "period": row.period,
        "confidence": row.confidence,
        "context": details.get("context"),
    }
    if row.category == Category.AVAILABILITY.value:
        data["status"] = row.status
    elif row.category == Category.EVENT.value:
        data["event_type"] = row.status
        data["previous_status"] = details.get("previous_status")
        data["current_status"] = details.get("current_status")
    else:
        data["value"] = row.value
    return _reading_adapter.validate_python(data)


@store_errors
async def append_reading(session: AsyncSession, reading: Reading) -> bool:
    """Insert a reading. Returns False when its fingerprint is already stored."""
    stmt = (
        insert(ReadingRow)
        .values(**reading_to_row(reading), created_at=datetime.utcnow())
        .on_conflict_do_nothing(index_elements=["fingerprint"])
    )
    result = await session.execute(stmt)
    return result.rowcount > 0


def _meter_query(source: Source):
    return select(ReadingRow).where(
        ReadingRow.category == Category.METER_READING.value,
        ReadingRow.source == source.value,
        ReadingRow.value.is_not(None),
    )


@store_errors
async def fetch_meter_readings(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    source: Source = Source.GRID,
    until: Optional[datetime] = None,
) -> list[MeterReading]:
    """Meter readings with ``start <= timestamp < end`` (and ``<= until``), oldest first."""
    query = _meter_query(source).where(
        ReadingRow.timestamp >= to_storage_time(start),
        ReadingRow.timestamp < to_storage_time(end),
    )
    if until is not None:
        query = query.where(ReadingRow.timestamp <= to_storage_time(until))

    result = await session.execute(query.order_by(ReadingRow.timestamp.asc(), ReadingRow.id.asc()))
    return [reading_from_row(r) for r in result.scalars().all()]


@store_errors
async def fetch_latest_meter_reading(
    session: AsyncSession,
    source: Source = Source.GRID,
    until: Optional[datetime] = None,
) -> Optional[MeterReading]:
    """Most recent meter reading overall, optionally no later than ``until``."""
    query = _meter_query(source)
    if until is not None:
        query = query.where(ReadingRow.timestamp <= to_storage_time(until))

    result = await session.execute(
        query.order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc()).limit(1)
    )
    row = result.scalar_one_or_none()
    return reading_from_row(row) if row else None


@store_errors
async def fetch_previous_availability(
    session: AsyncSession,
    source: Source,
    at: datetime,
    exclude_fingerprint: Optional[str] = None,
) -> Optional[AvailabilityReading]:
    """Latest availability reading for ``source`` at or before ``at``."""
    query = select(ReadingRow).where(
        ReadingRow.category == Category.AVAILABILITY.value,
        ReadingRow.source == source.value,
        ReadingRow.timestamp <= to_storage_time(at),
    )
    if exclude_fingerprint:
        query = query.where(ReadingRow.fingerprint != exclude_fingerprint)

    result = await session.execute(
        query.order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc()).limit(1)
    )
    row = result.scalar_one_or_none()
    return reading_from_row(row) if row else None


@store_errors
async def fetch_events(
    session: AsyncSession,
    source: Source = Source.GRID,
    limit: int = 10,
) -> list[EventReading]:
    """Most recent status-change events, newest first."""
    result = await session.execute(
        select(ReadingRow)
        .where(
            ReadingRow.category == Category.EVENT.value,
            ReadingRow.source == source.value,
            ReadingRow.status.in_(["interruption", "restoration"]),
        )
        .order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc())
        .limit(limit)
    )
    return [reading_from_row(r) for r in result.scalars().all()]


@store_errors
async def fetch_latest_per_signal(session: AsyncSession, since: datetime) -> list[Reading]:
    """Latest reading per (category, source) recorded since ``since``."""
    ranked = (
        select(
            ReadingRow.id,
            func.row_number().over(
                partition_by=[ReadingRow.category, ReadingRow.source],
                order_by=[ReadingRow.timestamp.desc(), ReadingRow.id.desc()],
            ).label("rn"),
        )
        .where(ReadingRow.timestamp > to_storage_time(since))
        .subquery()
    )
    result = await session.execute(
        select(ReadingRow)
        .join(ranked, ranked.c.id == ReadingRow.id)
        .where(ranked.c.rn == 1)
        .order_by(ReadingRow.timestamp.desc())
    )
    return [reading_from_row(r) for r in result.scalars().all()]


@store_errors
async def fetch_reading_history(
    session: AsyncSession,
    start: datetime,
    end: Optional[datetime] = None,
    category: Optional[Category] = None,
    source: Optional[Source] = None,
    period: Optional[str] = None,
    limit: int = 1000,
) -> list[Reading]:
    """Filtered readings between ``start`` and ``end`` inclusive, newest first."""
    query = select(ReadingRow).where(ReadingRow.timestamp >= to_storage_time(start))
    if end is not None:
        query = query.where(ReadingRow.timestamp <= to_storage_time(end))
    if category is not None:
        query = query.where(ReadingRow.category == category.value)
    if source is not None:
        query = query.where(ReadingRow.source == source.value)
    if period:
        query = query.where(ReadingRow.period == period)

    result = await session.execute(
        query.order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc()).limit(limit)
    )
    return [reading_from_row(r) for r in result.scalars().all()]


@store_errors
async def fetch_latest_reading(
    session: AsyncSession,
    category: Category,
    source: Source,
    since: datetime,
) -> Optional[Reading]:
    """Most recent reading of one (category, source) recorded since ``since``."""
    result = await session.execute(
        select(ReadingRow)
        .where(
            ReadingRow.category == category.value,
            ReadingRow.source == source.value,
            ReadingRow.timestamp > to_storage_time(since),
        )
        .order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    return reading_from_row(row) if row else None
