"""Pydantic data models shared by the store, the engine and the server.

Readings are a tagged union on ``category`` so that each kind of observation
carries only the fields that make sense for it: an event never has a numeric
value, a meter reading never has an availability status.
"""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Source(str, Enum):
    """Power sources reported by the portal."""

    GRID = "grid"
    DG = "dg"


class Category(str, Enum):
    """Kind of observation stored in the reading table."""

    AVAILABILITY = "availability"
    CONSUMPTION = "consumption"
    METER_READING = "meter_reading"
    BALANCE = "balance"
    EVENT = "event"


class AvailabilityStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"
    WARNING = "warning"


class GridEventType(str, Enum):
    INTERRUPTION = "interruption"
    RESTORATION = "restoration"


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minute_key(value: datetime) -> str:
    """ISO timestamp truncated to the minute, the dedup bucket for fingerprints."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M")


def _md5(key: str) -> str:
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class _ReadingBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    source: Source
    unit: Optional[str] = None
    period: Optional[str] = None
    confidence: Optional[float] = Field(None, description="Producer-assigned trust, clamped into [0, 1]")
    context: Optional[str] = Field(None, description="Text snippet the value was extracted from")

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return min(1.0, max(0.0, value))

    def _signal(self) -> str:
        raise NotImplementedError

    @property
    def fingerprint(self) -> str:
        """One stored reading per logical signal per minute."""
        return _md5(f"{self.category.value}_{self.source.value}_{self._signal()}_{minute_key(self.timestamp)}")


class AvailabilityReading(_ReadingBase):
    category: Literal[Category.AVAILABILITY] = Category.AVAILABILITY
    status: AvailabilityStatus

    def _signal(self) -> str:
        return self.status.value


class _NumericReading(_ReadingBase):
    value: float

    def _signal(self) -> str:
        return repr(float(self.value))


class ConsumptionReading(_NumericReading):
    category: Literal[Category.CONSUMPTION] = Category.CONSUMPTION
    unit: Optional[str] = "UNITS"


class MeterReading(_NumericReading):
    """Cumulative grid energy counter value."""

    category: Literal[Category.METER_READING] = Category.METER_READING
    unit: Optional[str] = "KWH"


class BalanceReading(_NumericReading):
    category: Literal[Category.BALANCE] = Category.BALANCE
    unit: Optional[str] = "INR"


class EventReading(_ReadingBase):
    """Synthetic status-change row derived from availability readings."""

    category: Literal[Category.EVENT] = Category.EVENT
    event_type: GridEventType
    previous_status: AvailabilityStatus
    current_status: AvailabilityStatus
    period: Optional[str] = "status_change"
    confidence: Optional[float] = 1.0

    @property
    def fingerprint(self) -> str:
        return _md5(f"event_{self.source.value}_{self.event_type.value}_{minute_key(self.timestamp)}")


Reading = Annotated[
    Union[AvailabilityReading, ConsumptionReading, MeterReading, BalanceReading, EventReading],
    Field(discriminator="category"),
]


class MonitoringCoverage(BaseModel):
    """How densely the meter was sampled across one calendar day."""

    record_count: int
    first_record: Optional[datetime] = None
    last_record: Optional[datetime] = None
    has_gaps: bool


class DailyConsumptionRecord(BaseModel):
    """Reconciled midnight-to-midnight consumption for one UTC calendar day."""

    date: date
    midnight_reading: float = Field(description="Meter value chosen as the day's anchor")
    midnight_timestamp: datetime
    current_reading: float = Field(description="Latest meter value (today) or last value of the day (past)")
    current_timestamp: datetime
    calculated_consumption: float = Field(ge=0.0)
    is_complete: bool = Field(description="True once the day has closed")
    has_monitoring_gaps: bool
    confidence_score: float = Field(ge=0.0, le=1.0)
    record_count: int = 0
    notes: Optional[str] = None


class ConsumptionSnapshot(BaseModel):
    """Consumption so far for a day, as shown to dashboards."""

    value: float
    unit: str = "UNITS"
    period: str = "today"
    timestamp: datetime
    confidence: float = Field(ge=0.0, le=1.0)
    is_real_time_calculated: bool
    midnight_reading: float
    current_reading: float
    has_gaps: bool


class GridStatusEvent(BaseModel):
    timestamp: datetime
    source: Source = Source.GRID
    event_type: GridEventType
    previous_status: AvailabilityStatus
    current_status: AvailabilityStatus


class GridEventsSummary(BaseModel):
    last_interruption: Optional[datetime] = None
    last_restoration: Optional[datetime] = None
    events: list[GridStatusEvent] = Field(default_factory=list)


class IngestResult(BaseModel):
    """Outcome counts of one ingestion batch."""

    saved: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    events: int = 0


class LatestStatus(BaseModel):
    """Latest reading per (category, source) plus the calculated today figure."""

    readings: list[Reading] = Field(default_factory=list)
    today_consumption: Optional[ConsumptionSnapshot] = None
    as_of: datetime
