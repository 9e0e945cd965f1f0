"""Failure modes of the reconciliation core.

Missing readings and negative deltas are data-quality conditions: the engine
catches them and reports "no result" for the day. Only storage failures
propagate to callers.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from .models import MeterReading


class ReconciliationError(Exception):
    """A day's consumption could not be derived from the stored readings."""

    def __init__(self, day: date, message: str):
        super().__init__(message)
        self.day = day


class MissingAnchorError(ReconciliationError):
    def __init__(self, day: date):
        super().__init__(day, f"No meter reading found around midnight for {day.isoformat()}")


class MissingCurrentReadingError(ReconciliationError):
    def __init__(self, day: date):
        super().__init__(day, f"No current meter reading available for {day.isoformat()}")


class NegativeConsumptionError(ReconciliationError):
    """Current reading is below the anchor: rollover, bad scrape or wrong anchor."""

    def __init__(self, day: date, anchor: MeterReading, current: MeterReading):
        consumption = current.value - anchor.value
        super().__init__(
            day,
            f"Negative consumption {consumption:.2f} for {day.isoformat()}: "
            f"anchor {anchor.value} at {anchor.timestamp.isoformat()}, "
            f"current {current.value} at {current.timestamp.isoformat()}",
        )
        self.anchor = anchor
        self.current = current
        self.consumption = consumption


class StoreIOError(Exception):
    """The underlying reading/ledger storage failed."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
