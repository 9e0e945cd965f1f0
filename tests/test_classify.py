import pytest
from pydantic import TypeAdapter, ValidationError

from power_monitor.core.classify import (
    apply_changes_filter,
    classify_transition,
    filter_changes_only,
    filter_no_duplicates,
    is_valid_reading,
    score_reading_confidence,
)
from power_monitor.core.models import (
    AvailabilityReading,
    AvailabilityStatus,
    BalanceReading,
    ConsumptionReading,
    EventReading,
    GridEventType,
    MeterReading,
    Reading,
    Source,
)

from .helpers import at

TS = at(10, 0)


@pytest.mark.parametrize(
    "reading, expected",
    [
        (AvailabilityReading(timestamp=TS, source=Source.GRID, status=AvailabilityStatus.ONLINE, context="Grid LED green"), 1.0),
        (AvailabilityReading(timestamp=TS, source=Source.DG, status=AvailabilityStatus.UNKNOWN), 0.5),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=0.5), 0.7),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=8.0, period="today", context="Today"), 1.0),
        (MeterReading(timestamp=TS, source=Source.GRID, value=500.0), 0.9),
        (MeterReading(timestamp=TS, source=Source.GRID, value=5000.0, context="Meter Reading"), 1.0),
        (BalanceReading(timestamp=TS, source=Source.GRID, value=120.0, unit="USD"), 0.9),
        (
            EventReading(
                timestamp=TS,
                source=Source.GRID,
                event_type=GridEventType.RESTORATION,
                previous_status=AvailabilityStatus.OFFLINE,
                current_status=AvailabilityStatus.ONLINE,
            ),
            1.0,
        ),
    ],
)
def test_score_reading_confidence(reading, expected):
    assert score_reading_confidence(reading) == pytest.approx(expected)


@pytest.mark.parametrize(
    "reading, valid",
    [
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=20.0, period="today"), True),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=60.0, period="today"), False),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=20.0, period="today", unit="KWH"), False),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=0.0, period="daily"), False),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=0.05), False),
        (ConsumptionReading(timestamp=TS, source=Source.GRID, value=4000.0, period="monthly_total", unit="KWH"), True),
        (MeterReading(timestamp=TS, source=Source.GRID, value=12345.6), True),
        (MeterReading(timestamp=TS, source=Source.GRID, value=150000.0), False),
        (MeterReading(timestamp=TS, source=Source.GRID, value=100.0, unit="UNITS"), False),
        (BalanceReading(timestamp=TS, source=Source.GRID, value=-20000.0), False),
        (BalanceReading(timestamp=TS, source=Source.GRID, value=-250.0), True),
        (AvailabilityReading(timestamp=TS, source=Source.GRID, status=AvailabilityStatus.WARNING), True),
    ],
)
def test_is_valid_reading(reading, valid):
    assert is_valid_reading(reading) is valid


@pytest.mark.parametrize(
    "previous, current, expected",
    [
        (AvailabilityStatus.ONLINE, AvailabilityStatus.OFFLINE, GridEventType.INTERRUPTION),
        (AvailabilityStatus.OFFLINE, AvailabilityStatus.ONLINE, GridEventType.RESTORATION),
        (AvailabilityStatus.ONLINE, AvailabilityStatus.UNKNOWN, None),
        (AvailabilityStatus.WARNING, AvailabilityStatus.OFFLINE, None),
        (AvailabilityStatus.OFFLINE, AvailabilityStatus.OFFLINE, None),
    ],
)
def test_classify_transition(previous, current, expected):
    assert classify_transition(previous, current) == expected


def test_fingerprint_buckets_by_minute():
    first = MeterReading(timestamp=TS.replace(second=5), source=Source.GRID, value=101.5)
    same_minute = MeterReading(timestamp=TS.replace(second=55), source=Source.GRID, value=101.5, confidence=0.2)
    next_minute = MeterReading(timestamp=at(10, 1), source=Source.GRID, value=101.5)
    other_value = MeterReading(timestamp=TS, source=Source.GRID, value=101.6)

    assert first.fingerprint == same_minute.fingerprint
    assert first.fingerprint != next_minute.fingerprint
    assert first.fingerprint != other_value.fingerprint
    assert len(first.fingerprint) == 32


def test_confidence_is_clamped_on_construction():
    assert MeterReading(timestamp=TS, source=Source.GRID, value=1.0, confidence=1.8).confidence == 1.0
    assert MeterReading(timestamp=TS, source=Source.GRID, value=1.0, confidence=-0.2).confidence == 0.0


def test_naive_timestamps_are_utc():
    naive = MeterReading(timestamp=TS.replace(tzinfo=None), source=Source.GRID, value=1.0)
    assert naive.timestamp == TS
    assert naive.fingerprint == MeterReading(timestamp=TS, source=Source.GRID, value=1.0).fingerprint


def test_tagged_union_dispatches_on_category():
    adapter = TypeAdapter(Reading)

    parsed = adapter.validate_python(
        {"category": "meter_reading", "source": "grid", "timestamp": "2025-10-22T10:00:00Z", "value": 99.5}
    )
    assert isinstance(parsed, MeterReading)
    assert parsed.unit == "KWH"

    with pytest.raises(ValidationError):
        adapter.validate_python({"category": "availability", "source": "grid", "timestamp": "2025-10-22T10:00:00Z"})
    with pytest.raises(ValidationError):
        adapter.validate_python({"category": "voltage", "source": "grid", "timestamp": "2025-10-22T10:00:00Z"})


def _history():
    """A newest-first history as the store returns it."""
    oldest_first = [
        MeterReading(timestamp=at(9, 0), source=Source.GRID, value=100.0),
        AvailabilityReading(timestamp=at(9, 1), source=Source.GRID, status=AvailabilityStatus.ONLINE),
        ConsumptionReading(timestamp=at(9, 2), source=Source.GRID, value=5.0, period="today"),
        MeterReading(timestamp=at(9, 3), source=Source.GRID, value=100.0),
        AvailabilityReading(timestamp=at(9, 4), source=Source.GRID, status=AvailabilityStatus.ONLINE),
        BalanceReading(timestamp=at(9, 5), source=Source.GRID, value=300.0),
        ConsumptionReading(timestamp=at(9, 6), source=Source.GRID, value=5.0, period="today"),
        MeterReading(timestamp=at(9, 7), source=Source.DG, value=100.0),
        ConsumptionReading(timestamp=at(9, 8), source=Source.GRID, value=40.0, period="previous_month"),
        AvailabilityReading(timestamp=at(9, 9), source=Source.GRID, status=AvailabilityStatus.OFFLINE),
        MeterReading(timestamp=at(9, 10), source=Source.GRID, value=100.5),
        BalanceReading(timestamp=at(9, 11), source=Source.GRID, value=300.0),
        ConsumptionReading(timestamp=at(9, 12), source=Source.GRID, value=6.0, period="today"),
        EventReading(
            timestamp=at(9, 13),
            source=Source.GRID,
            event_type=GridEventType.RESTORATION,
            previous_status=AvailabilityStatus.OFFLINE,
            current_status=AvailabilityStatus.ONLINE,
        ),
        MeterReading(timestamp=at(9, 14), source=Source.GRID, value=100.5),
    ]
    return list(reversed(oldest_first))


def test_changes_only_keeps_first_value_and_each_change():
    kept = filter_changes_only(_history())

    assert [r.timestamp.minute for r in kept] == [12, 10, 9, 7, 5, 2, 1, 0]


def test_changes_only_restores_newest_first_order():
    kept = filter_changes_only(list(reversed(_history())))

    assert [r.timestamp for r in kept] == sorted((r.timestamp for r in kept), reverse=True)


def test_no_duplicates_drops_consecutive_repeats_per_category_and_source():
    kept = filter_no_duplicates(_history())

    # 9:10, 9:05, 9:02, 9:01 and 9:00 repeat the last kept value of their signal
    assert [r.timestamp.minute for r in kept] == [14, 13, 12, 11, 9, 8, 7, 6, 4, 3]


def test_no_filter_returns_everything():
    history = _history()
    assert apply_changes_filter(history, None) == history
    assert apply_changes_filter(history, "no_duplicates") == filter_no_duplicates(history)
