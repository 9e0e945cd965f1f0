"""Classification of scraped readings before they reach the store.

Assigns a confidence to readings the scraper left unscored, filters out values
that cannot be real for their category, names availability transitions, and
thins reading histories down to the readings where something changed.
"""

from __future__ import annotations

from typing import Literal, Optional, Sequence

from .models import (
    AvailabilityReading,
    AvailabilityStatus,
    BalanceReading,
    ConsumptionReading,
    EventReading,
    GridEventType,
    MeterReading,
    Reading,
)


BASE_CONFIDENCE = 0.5

# (min, max, allowed units) per consumption period label; None = any unit
CONSUMPTION_RANGES: dict[str, tuple[float, float, Optional[frozenset[str]]]] = {
    "current_month": (10, 1000, frozenset({"KWH", "UNITS"})),
    "previous_month": (10, 1000, frozenset({"KWH", "UNITS"})),
    "today": (0, 50, frozenset({"UNITS"})),
    "monthly_total": (10, 5000, frozenset({"KWH"})),
    "daily": (0, 100, frozenset({"UNITS"})),
    "detected": (0.1, 50, frozenset({"UNITS"})),
}
DEFAULT_CONSUMPTION_RANGE = (0.1, 1000, None)

METER_READING_RANGE = (0, 100000)
BALANCE_RANGE = (-10000, 50000)

# period/unit combinations the portal reports reliably
_CONSUMPTION_PERIOD_BONUS = {
    ("current_month", "KWH"): 0.5,
    ("previous_month", "KWH"): 0.5,
    ("today", "UNITS"): 0.5,
    ("monthly_total", "KWH"): 0.4,
    ("current_month", "UNITS"): 0.4,
    ("previous_month", "UNITS"): 0.3,
}
_CONSUMPTION_CONTEXT_WORDS = ("Grid", "Consumption", "Month", "Day", "Today")


def _mentions(context: Optional[str], word: str) -> bool:
    return bool(context) and word in context


def score_reading_confidence(reading) -> float:
    """Heuristic trust in a scraped reading, in [0, 1]."""
    confidence = BASE_CONFIDENCE
    context = reading.context

    if isinstance(reading, AvailabilityReading):
        if reading.status != AvailabilityStatus.UNKNOWN:
            confidence += 0.3
        if _mentions(context, "LED"):
            confidence += 0.2

    elif isinstance(reading, ConsumptionReading):
        confidence += _CONSUMPTION_PERIOD_BONUS.get((reading.period, reading.unit), 0.0)
        if reading.value > 0:
            confidence += 0.1
        if reading.value > 1:
            confidence += 0.1
        if reading.value < 10000:
            confidence += 0.1
        confidence += 0.1 * sum(1 for word in _CONSUMPTION_CONTEXT_WORDS if _mentions(context, word))

    elif isinstance(reading, MeterReading):
        confidence += 0.4
        if _mentions(context, "Reading"):
            confidence += 0.2
        if reading.value > 1000:
            confidence += 0.1

    elif isinstance(reading, BalanceReading):
        confidence += 0.4
        if _mentions(context, "Balance"):
            confidence += 0.2
        if reading.unit == "INR":
            confidence += 0.1

    elif isinstance(reading, EventReading):
        return 1.0

    return min(confidence, 1.0)


def is_valid_reading(reading) -> bool:
    """Reject values that cannot be genuine for their category."""
    if isinstance(reading, ConsumptionReading):
        if reading.value <= 0:
            return False
        low, high, units = CONSUMPTION_RANGES.get(reading.period or "", DEFAULT_CONSUMPTION_RANGE)
        if units is not None and reading.unit not in units:
            return False
        return low <= reading.value <= high

    if isinstance(reading, MeterReading):
        low, high = METER_READING_RANGE
        return low <= reading.value <= high and reading.unit == "KWH"

    if isinstance(reading, BalanceReading):
        low, high = BALANCE_RANGE
        return low <= reading.value <= high and reading.unit == "INR"

    return True


def classify_transition(
    previous: AvailabilityStatus,
    current: AvailabilityStatus,
) -> Optional[GridEventType]:
    """Name an availability change. Only online<->offline is an event."""
    if previous == AvailabilityStatus.ONLINE and current == AvailabilityStatus.OFFLINE:
        return GridEventType.INTERRUPTION
    if previous == AvailabilityStatus.OFFLINE and current == AvailabilityStatus.ONLINE:
        return GridEventType.RESTORATION
    return None


ChangesFilter = Literal["changes_only", "no_duplicates"]


def _signal_value(reading: Reading):
    if isinstance(reading, AvailabilityReading):
        return reading.status
    if isinstance(reading, EventReading):
        return reading.event_type
    return reading.value


def _change_key(reading: Reading) -> Optional[str]:
    """Dashboard figure a reading feeds, or None when it feeds none."""
    if isinstance(reading, ConsumptionReading):
        if reading.period == "today":
            return "today_usage"
        if reading.period == "current_month":
            return "month_usage"
        return None
    if isinstance(reading, MeterReading):
        return f"meter_{reading.source.value}"
    if isinstance(reading, AvailabilityReading):
        return f"status_{reading.source.value}"
    if isinstance(reading, BalanceReading):
        return "balance"
    return None


def filter_changes_only(readings: Sequence[Reading]) -> list[Reading]:
    """Keep readings where a dashboard figure changed, newest first.

    Walks the readings oldest first; the first reading of each figure is
    always kept. Readings that feed no figure are dropped.
    """
    last_values: dict[str, object] = {}
    changes = []
    for reading in sorted(readings, key=lambda r: r.timestamp):
        key = _change_key(reading)
        if key is None:
            continue
        value = _signal_value(reading)
        if key not in last_values or last_values[key] != value:
            last_values[key] = value
            changes.append(reading)
    changes.reverse()
    return changes


def filter_no_duplicates(readings: Sequence[Reading]) -> list[Reading]:
    """Drop readings repeating the last kept value of their (category, source)."""
    last_values: dict[tuple, object] = {}
    kept = []
    for reading in readings:
        key = (reading.category, reading.source)
        value = _signal_value(reading)
        if key not in last_values or last_values[key] != value:
            last_values[key] = value
            kept.append(reading)
    return kept


def apply_changes_filter(readings: Sequence[Reading], mode: Optional[ChangesFilter]) -> list[Reading]:
    if mode == "changes_only":
        return filter_changes_only(readings)
    if mode == "no_duplicates":
        return filter_no_duplicates(readings)
    return list(readings)
