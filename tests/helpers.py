"""Reading builders shared by the test modules."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from power_monitor.core.models import AvailabilityReading, AvailabilityStatus, MeterReading, Source

DAY = date(2025, 10, 22)
MIDNIGHT = datetime(2025, 10, 22, tzinfo=timezone.utc)
# an instant on the following day, so DAY is a closed past day
NEXT_MORNING = MIDNIGHT + timedelta(days=1, hours=6)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def meter(
    ts: datetime,
    value: float,
    confidence: Optional[float] = 1.0,
    source: Source = Source.GRID,
) -> MeterReading:
    return MeterReading(timestamp=ts, source=source, value=value, confidence=confidence, context="Meter Reading")


def availability(ts: datetime, status: AvailabilityStatus, source: Source = Source.GRID) -> AvailabilityReading:
    return AvailabilityReading(timestamp=ts, source=source, status=status, confidence=0.8)


def hourly_day(start_value: float = 100.0, step: float = 0.25, count: int = 24, day: date = DAY) -> list[MeterReading]:
    """``count`` readings at HH:30, strictly increasing."""
    return [meter(at(h, 30, day), start_value + step * h) for h in range(count)]
