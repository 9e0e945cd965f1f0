"""Midnight-anchor reconciliation of cumulative meter readings.

A day's consumption is the difference between the meter reading closest to
the day's UTC midnight and the latest reading available for that day. The
result carries a confidence score and a gap flag so consumers can tell a
densely-sampled figure from one interpolated across monitoring outages.

Everything here is a pure function over already-fetched readings; the
consumption engine handles storage, locking and the choice of "now".
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence

from .errors import MissingAnchorError, MissingCurrentReadingError, NegativeConsumptionError
from .models import (
    ConsumptionSnapshot,
    DailyConsumptionRecord,
    MeterReading,
    MonitoringCoverage,
    as_utc,
)
from .settings import ReconciliationSettings

logger = logging.getLogger(__name__)


def day_window(day: date) -> tuple[datetime, datetime]:
    """Return the half-open UTC interval [midnight(day), midnight(day + 1))."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def utc_today(reference: datetime) -> date:
    return as_utc(reference).date()


def readings_in_window(readings: Sequence[MeterReading], day: date) -> list[MeterReading]:
    start, end = day_window(day)
    return [r for r in readings if start <= r.timestamp < end]


def select_midnight_anchor(readings: Sequence[MeterReading], day: date) -> Optional[MeterReading]:
    """Pick the in-window reading nearest to the day's midnight.

    Ties go to the earlier reading.
    """
    candidates = readings_in_window(readings, day)
    if not candidates:
        return None
    midnight, _ = day_window(day)
    return min(candidates, key=lambda r: (abs(r.timestamp - midnight), r.timestamp))


def select_closing_reading(readings: Sequence[MeterReading], day: date) -> Optional[MeterReading]:
    """Latest reading inside the day's window, or None when the day has no data."""
    candidates = readings_in_window(readings, day)
    if not candidates:
        return None
    return max(candidates, key=lambda r: r.timestamp)


def select_current_reading(
    readings: Sequence[MeterReading],
    latest: Optional[MeterReading],
    day: date,
    reference: datetime,
) -> Optional[MeterReading]:
    """Today: the latest reading overall. Past days: the day's own closing reading."""
    if day == utc_today(reference):
        return latest
    return select_closing_reading(readings, day)


def compute_coverage(
    readings: Sequence[MeterReading],
    day: date,
    settings: ReconciliationSettings,
) -> MonitoringCoverage:
    """Count the day's meter readings; too few means the day has gaps."""
    in_window = readings_in_window(readings, day)
    timestamps = [r.timestamp for r in in_window]
    return MonitoringCoverage(
        record_count=len(in_window),
        first_record=min(timestamps) if timestamps else None,
        last_record=max(timestamps) if timestamps else None,
        has_gaps=len(in_window) < settings.gap_threshold,
    )


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def score_confidence(
    anchor: MeterReading,
    current: MeterReading,
    has_gaps: bool,
    settings: ReconciliationSettings,
) -> float:
    """The weaker of the two readings' confidences, penalized for gaps."""
    anchor_conf = settings.default_confidence if anchor.confidence is None else anchor.confidence
    current_conf = settings.default_confidence if current.confidence is None else current.confidence

    confidence = min(_clamp(anchor_conf), _clamp(current_conf))
    if has_gaps:
        confidence *= settings.gap_penalty
    return _clamp(confidence)


def reconcile_day(
    day: date,
    readings: Sequence[MeterReading],
    latest: Optional[MeterReading],
    reference: datetime,
    settings: ReconciliationSettings,
) -> DailyConsumptionRecord:
    """Compute the consumption record for ``day``.

    Args:
        day: UTC calendar day to reconcile.
        readings: Meter readings fetched for the day's window.
        latest: Most recent meter reading at ``reference``; used as the
            current reading when ``day`` is today.
        reference: The instant treated as "now".
        settings: Thresholds and penalties.

    Raises:
        MissingAnchorError: No reading inside the day's window.
        MissingCurrentReadingError: No reading to close the day with.
        NegativeConsumptionError: The current reading is below the anchor.
    """
    today = utc_today(reference)

    anchor = select_midnight_anchor(readings, day)
    if anchor is None:
        raise MissingAnchorError(day)

    current = select_current_reading(readings, latest, day, reference)
    if current is None:
        raise MissingCurrentReadingError(day)

    coverage = compute_coverage(readings, day, settings)

    consumption = current.value - anchor.value
    if consumption < 0:
        raise NegativeConsumptionError(day, anchor, current)

    notes = [f"Records: {coverage.record_count}"]
    if consumption > settings.suspicious_consumption:
        logger.warning(
            "Unusually high consumption for %s: %.2f units (anchor %s at %s, current %s at %s)",
            day, consumption, anchor.value, anchor.timestamp, current.value, current.timestamp,
        )
        notes.append(f"Suspicious: exceeds {settings.suspicious_consumption:g} units")

    return DailyConsumptionRecord(
        date=day,
        midnight_reading=anchor.value,
        midnight_timestamp=anchor.timestamp,
        current_reading=current.value,
        current_timestamp=current.timestamp,
        calculated_consumption=consumption,
        is_complete=day < today,
        has_monitoring_gaps=coverage.has_gaps,
        confidence_score=score_confidence(anchor, current, coverage.has_gaps, settings),
        record_count=coverage.record_count,
        notes="; ".join(notes),
    )


def consumption_at(
    day: date,
    readings: Sequence[MeterReading],
    target: datetime,
    settings: ReconciliationSettings,
) -> Optional[ConsumptionSnapshot]:
    """Consumption from the day's anchor up to ``target``, bounded to the day.

    A reading from another day never stands in for a missing one: if the day
    has nothing at or before ``target`` the result is None.
    """
    target = as_utc(target)
    anchor = select_midnight_anchor(readings, day)
    if anchor is None:
        return None

    upto = [r for r in readings_in_window(readings, day) if r.timestamp <= target]
    if not upto:
        return None
    current = max(upto, key=lambda r: r.timestamp)

    consumption = current.value - anchor.value
    if consumption < 0:
        return None

    coverage = compute_coverage(readings, day, settings)
    confidence = min(
        score_confidence(anchor, current, coverage.has_gaps, settings),
        settings.historical_confidence,
    )
    return ConsumptionSnapshot(
        value=consumption,
        period=day.isoformat(),
        timestamp=current.timestamp,
        confidence=confidence,
        is_real_time_calculated=False,
        midnight_reading=anchor.value,
        current_reading=current.value,
        has_gaps=coverage.has_gaps,
    )
