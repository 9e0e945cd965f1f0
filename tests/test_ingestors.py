"""Batch ingestion, latest status and raw reading history."""

from datetime import timedelta

import pytest

from power_monitor import store
from power_monitor.core.errors import StoreIOError
from power_monitor.core.models import (
    AvailabilityStatus,
    BalanceReading,
    Category,
    ConsumptionReading,
    MeterReading,
    Source,
)
from power_monitor.ingestors import get_latest_status, get_reading_history, ingest_readings

from .helpers import at, availability, hourly_day, meter


@pytest.mark.asyncio
async def test_resubmitted_batch_counts_duplicates(session_factory):
    batch = hourly_day(count=6)

    first = await ingest_readings(batch, session_factory=session_factory)
    second = await ingest_readings(batch, session_factory=session_factory)

    assert (first.saved, first.duplicates) == (6, 0)
    assert (second.saved, second.duplicates) == (0, 6)


@pytest.mark.asyncio
async def test_invalid_readings_are_rejected(session_factory):
    batch = [
        meter(at(1, 0), 150000.0),
        ConsumptionReading(timestamp=at(1, 0), source=Source.GRID, value=75.0, period="today"),
        meter(at(1, 1), 101.0),
    ]

    result = await ingest_readings(batch, session_factory=session_factory)

    assert (result.saved, result.rejected) == (1, 2)


@pytest.mark.asyncio
async def test_unscored_readings_get_a_confidence(session_factory):
    await ingest_readings([MeterReading(timestamp=at(2, 0), source=Source.GRID, value=500.0)], session_factory=session_factory)

    [stored] = await get_reading_history(start=at(0, 0), session_factory=session_factory)
    assert stored.confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_store_failure_does_not_stop_the_batch(session_factory, monkeypatch):
    append = store.append_reading

    async def flaky_append(session, reading):
        if reading.timestamp == at(3, 1):
            raise StoreIOError("disk I/O error", operation="append_reading")
        return await append(session, reading)

    monkeypatch.setattr(store, "append_reading", flaky_append)

    result = await ingest_readings([meter(at(3, m), 100.0 + m) for m in range(3)], session_factory=session_factory)

    assert (result.saved, result.failed) == (2, 1)


@pytest.mark.asyncio
async def test_latest_status_replaces_scraped_today_consumption(engine, seed):
    await seed(hourly_day(count=18))
    await seed([
        ConsumptionReading(timestamp=at(17, 50), source=Source.GRID, value=7.0, period="today", confidence=0.9),
        availability(at(17, 55), AvailabilityStatus.ONLINE),
        availability(at(17, 40), AvailabilityStatus.OFFLINE, Source.DG),
        BalanceReading(timestamp=at(16, 0), source=Source.GRID, value=320.0),
    ])

    status = await get_latest_status(engine, reference=at(18, 0))

    by_signal = {(r.category, r.source): r for r in status.readings}
    assert set(by_signal) == {
        (Category.METER_READING, Source.GRID),
        (Category.AVAILABILITY, Source.GRID),
        (Category.AVAILABILITY, Source.DG),
        (Category.CONSUMPTION, Source.GRID),
        (Category.BALANCE, Source.GRID),
    }
    assert by_signal[(Category.BALANCE, Source.GRID)].value == 320.0
    today = by_signal[(Category.CONSUMPTION, Source.GRID)]
    assert today.value == pytest.approx(0.25 * 17)
    assert today.value == status.today_consumption.value
    assert today.context == "Calculated from meter readings"
    assert by_signal[(Category.AVAILABILITY, Source.DG)].status == AvailabilityStatus.OFFLINE
    assert status.as_of == at(18, 0)


@pytest.mark.asyncio
async def test_latest_status_without_meter_readings(engine, seed):
    await seed([availability(at(17, 55), AvailabilityStatus.ONLINE)])

    status = await get_latest_status(engine, reference=at(18, 0))

    assert status.today_consumption is None
    assert [r.category for r in status.readings] == [Category.AVAILABILITY]


@pytest.mark.asyncio
async def test_reading_history_filters_and_orders(session_factory, seed):
    await seed(hourly_day(count=10))
    await seed([
        availability(at(4, 0), AvailabilityStatus.ONLINE),
        ConsumptionReading(timestamp=at(5, 0), source=Source.GRID, value=410.0, period="current_month", unit="KWH"),
    ])

    meters = await get_reading_history(
        category=Category.METER_READING,
        limit=3,
        session_factory=session_factory,
        reference=at(12, 0),
    )
    assert [r.timestamp for r in meters] == [at(9, 30), at(8, 30), at(7, 30)]

    window = await get_reading_history(start=at(3, 45), end=at(5, 0), session_factory=session_factory)
    assert [r.category for r in window] == [Category.CONSUMPTION, Category.METER_READING, Category.AVAILABILITY]

    monthly = await get_reading_history(
        period="current_month",
        session_factory=session_factory,
        reference=at(12, 0),
    )
    assert len(monthly) == 1 and monthly[0].value == 410.0

    stale = await get_reading_history(hours=1, session_factory=session_factory, reference=at(12, 0) + timedelta(days=1))
    assert stale == []


@pytest.mark.asyncio
async def test_latest_status_drops_balance_older_than_a_day(engine, seed):
    await seed([
        BalanceReading(timestamp=at(17, 0) - timedelta(days=1), source=Source.GRID, value=320.0),
        availability(at(17, 55), AvailabilityStatus.ONLINE),
    ])

    status = await get_latest_status(engine, reference=at(18, 0))

    assert Category.BALANCE not in {r.category for r in status.readings}


@pytest.mark.asyncio
async def test_reading_history_hides_scraped_today_consumption(session_factory, seed):
    await seed([
        ConsumptionReading(timestamp=at(6, 0), source=Source.GRID, value=3.0, period="today"),
        ConsumptionReading(timestamp=at(6, 1), source=Source.GRID, value=210.0, period="current_month", unit="KWH"),
        meter(at(6, 2), 101.0),
    ])

    everything = await get_reading_history(session_factory=session_factory, reference=at(12, 0))
    consumption = await get_reading_history(
        category=Category.CONSUMPTION,
        session_factory=session_factory,
        reference=at(12, 0),
    )
    scraped_today = await get_reading_history(
        category=Category.CONSUMPTION,
        period="today",
        session_factory=session_factory,
        reference=at(12, 0),
    )

    assert [r.timestamp for r in everything] == [at(6, 2), at(6, 1)]
    assert [r.period for r in consumption] == ["current_month"]
    assert [r.value for r in scraped_today] == [3.0]


@pytest.mark.asyncio
async def test_reading_history_change_filters(session_factory, seed):
    await seed([
        meter(at(7, 0), 101.0),
        meter(at(7, 1), 101.0),
        meter(at(7, 2), 101.5),
        meter(at(7, 3), 101.5),
        availability(at(7, 4), AvailabilityStatus.ONLINE),
        availability(at(7, 5), AvailabilityStatus.ONLINE),
    ])

    changes = await get_reading_history(
        changes_filter="changes_only",
        session_factory=session_factory,
        reference=at(12, 0),
    )
    no_repeats = await get_reading_history(
        changes_filter="no_duplicates",
        session_factory=session_factory,
        reference=at(12, 0),
    )

    assert [r.timestamp for r in changes] == [at(7, 4), at(7, 2), at(7, 0)]
    assert [r.timestamp for r in no_repeats] == [at(7, 5), at(7, 3), at(7, 1)]
