"""Daily Consumption Ledger: one reconciled row per calendar date.

Rows are overwritten on every recomputation (upsert by date); the ledger is a
cache of the latest computation, not a history of computations.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .core.models import DailyConsumptionRecord, as_utc
from .sqlmodels import DailyConsumptionRow
from .store import store_errors, to_storage_time


def record_from_row(row: DailyConsumptionRow) -> DailyConsumptionRecord:
    return DailyConsumptionRecord(
        date=row.day,
        midnight_reading=row.midnight_reading,
        midnight_timestamp=as_utc(row.midnight_timestamp),
        current_reading=row.current_reading,
        current_timestamp=as_utc(row.current_timestamp),
        calculated_consumption=row.calculated_consumption,
        is_complete=row.is_complete,
        has_monitoring_gaps=row.has_monitoring_gaps,
        confidence_score=row.confidence_score,
        record_count=row.record_count,
        notes=row.notes,
    )


@store_errors
async def upsert_daily_consumption(session: AsyncSession, record: DailyConsumptionRecord) -> None:
    """Insert or overwrite the ledger row for ``record.date``."""
    now = datetime.utcnow()
    values = {
        "midnight_reading": record.midnight_reading,
        "midnight_timestamp": to_storage_time(record.midnight_timestamp),
        "current_reading": record.current_reading,
        "current_timestamp": to_storage_time(record.current_timestamp),
        "calculated_consumption": record.calculated_consumption,
        "is_complete": record.is_complete,
        "has_monitoring_gaps": record.has_monitoring_gaps,
        "confidence_score": record.confidence_score,
        "record_count": record.record_count,
        "notes": record.notes,
        "updated_at": now,
    }
    stmt = insert(DailyConsumptionRow).values(day=record.date, created_at=now, **values)
    stmt = stmt.on_conflict_do_update(index_elements=[DailyConsumptionRow.day], set_=values)
    await session.execute(stmt)


@store_errors
async def fetch_daily_consumptions(
    session: AsyncSession,
    start: date,
    end: date,
) -> list[DailyConsumptionRecord]:
    """Ledger rows with ``start <= date <= end``, newest first."""
    result = await session.execute(
        select(DailyConsumptionRow)
        .where(DailyConsumptionRow.day >= start, DailyConsumptionRow.day <= end)
        .order_by(DailyConsumptionRow.day.desc())
    )
    return [record_from_row(r) for r in result.scalars().all()]

