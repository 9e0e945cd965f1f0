"""Daily consumption engine with historical backfill.

Turns the cumulative grid meter readings in the store into one reconciled
figure per UTC calendar day and keeps the ledger up to date. "Now" is an
explicit ``reference`` instant, resolved once per call and threaded through;
readings stamped after it are ignored.

Each date's computation reads its readings inside a single transaction and
holds a per-date lock until the ledger row is written, so a dashboard request
and a scheduled poll recomputing the same day cannot interleave.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import ledger, store
from .core.errors import NegativeConsumptionError, ReconciliationError, StoreIOError
from .core.models import ConsumptionSnapshot, DailyConsumptionRecord, MeterReading, as_utc
from .core.reconciliation import consumption_at, day_window, reconcile_day, utc_today
from .core.settings import ReconciliationSettings
from .db import get_session_factory

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_DAYS = 7
DEFAULT_HISTORY_DAYS = 7


def _resolve_reference(reference: Optional[datetime]) -> datetime:
    return as_utc(reference) if reference is not None else datetime.now(timezone.utc)


class ConsumptionEngine:
    """Computes, stores and serves reconciled daily consumption."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[ReconciliationSettings] = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._date_locks: dict[date, asyncio.Lock] = {}
        self._lock_users: dict[date, int] = {}

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @property
    def settings(self) -> ReconciliationSettings:
        """Tunables, read from the environment on first use unless given."""
        if self._settings is None:
            self._settings = ReconciliationSettings.from_env()
        return self._settings

    @asynccontextmanager
    async def _date_lock(self, day: date) -> AsyncIterator[None]:
        """Hold the per-date lock; it is discarded once no caller uses it."""
        lock = self._date_locks.setdefault(day, asyncio.Lock())
        self._lock_users[day] = self._lock_users.get(day, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[day] -= 1
            if not self._lock_users[day]:
                del self._lock_users[day]
                del self._date_locks[day]

    async def _load_day(
        self,
        day: date,
        reference: datetime,
    ) -> tuple[list[MeterReading], Optional[MeterReading]]:
        """Window readings and the latest reading, read from one snapshot."""
        start, end = day_window(day)
        source = self.settings.meter_source

        async with store.transaction(self.session_factory, "load_day") as session:
            readings = await store.fetch_meter_readings(session, start, end, source, until=reference)
            latest = await store.fetch_latest_meter_reading(session, source, until=reference)
        return readings, latest

    async def calculate_daily_consumption(
        self,
        day: Optional[date] = None,
        reference: Optional[datetime] = None,
    ) -> Optional[DailyConsumptionRecord]:
        """Reconcile ``day`` (default: today) and upsert it into the ledger.

        Returns None when the day cannot be reconciled: no reading near
        midnight, no current reading, or a current reading below the anchor.
        Storage failures raise ``StoreIOError``.
        """
        reference = _resolve_reference(reference)
        return await self._calculate(day or utc_today(reference), reference)

    async def _calculate(self, day: date, reference: datetime) -> Optional[DailyConsumptionRecord]:
        logger.debug("Calculating daily consumption for %s", day)

        async with self._date_lock(day):
            readings, latest = await self._load_day(day, reference)
            try:
                record = reconcile_day(day, readings, latest, reference, self.settings)
            except NegativeConsumptionError as exc:
                logger.warning("Invalid consumption calculation, not stored: %s", exc)
                return None
            except ReconciliationError as exc:
                logger.info("%s", exc)
                return None

            async with store.transaction(self.session_factory, "upsert_daily_consumption") as session:
                await ledger.upsert_daily_consumption(session, record)

        logger.info(
            "Daily consumption for %s: %.2f units (%s -> %s), confidence %.1f%%, %d readings%s",
            day,
            record.calculated_consumption,
            record.midnight_reading,
            record.current_reading,
            record.confidence_score * 100,
            record.record_count,
            " (has gaps)" if record.has_monitoring_gaps else "",
        )
        return record

    async def backfill(
        self,
        days: int = DEFAULT_BACKFILL_DAYS,
        reference: Optional[datetime] = None,
    ) -> list[DailyConsumptionRecord]:
        """Recompute the last ``days`` dates, oldest first, today included.

        Days that cannot be reconciled or whose storage fails are skipped;
        only successful records are returned.
        """
        reference = _resolve_reference(reference)
        today = utc_today(reference)
        logger.info("Backfilling daily consumption for last %d days...", days)

        results = []
        for days_ago in range(days - 1, -1, -1):
            day = today - timedelta(days=days_ago)
            try:
                record = await self._calculate(day, reference)
            except StoreIOError as exc:
                logger.error("Backfill of %s failed: %s", day, exc, exc_info=True)
                continue
            if record:
                results.append(record)

        logger.info("Backfill complete: %d daily consumptions calculated", len(results))
        return results

    async def get_today_consumption(
        self,
        reference: Optional[datetime] = None,
    ) -> Optional[ConsumptionSnapshot]:
        """Today's consumption so far, recomputed on every call."""
        record = await self.calculate_daily_consumption(reference=reference)
        if record is None:
            return None

        return ConsumptionSnapshot(
            value=record.calculated_consumption,
            period="today",
            timestamp=record.current_timestamp,
            confidence=record.confidence_score,
            is_real_time_calculated=True,
            midnight_reading=record.midnight_reading,
            current_reading=record.current_reading,
            has_gaps=record.has_monitoring_gaps,
        )

    async def get_consumption_at_time(
        self,
        day: date,
        target: datetime,
        reference: Optional[datetime] = None,
    ) -> Optional[ConsumptionSnapshot]:
        """Consumption of ``day`` from its midnight anchor up to ``target``.

        Only readings inside the day's own window are considered. Nothing is
        written to the ledger.
        """
        reference = _resolve_reference(reference)
        if day == utc_today(reference):
            return await self.get_today_consumption(reference)

        readings, _ = await self._load_day(day, reference)
        snapshot = consumption_at(day, readings, target, self.settings)
        if snapshot is None:
            logger.info("No consumption available for %s at %s", day, target)
        return snapshot

    async def get_daily_consumptions(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        reference: Optional[datetime] = None,
    ) -> list[DailyConsumptionRecord]:
        """Ledger rows between ``start`` and ``end`` inclusive, newest first.

        Defaults to the last week through today.
        """
        today = utc_today(_resolve_reference(reference))
        start = start or today - timedelta(days=DEFAULT_HISTORY_DAYS)
        end = end or today

        async with store.transaction(self.session_factory, "get_daily_consumptions") as session:
            return await ledger.fetch_daily_consumptions(session, start, end)
