"""SQLAlchemy models for local SQLite storage.

Two tables: ``power_data`` holds every raw reading the scraper produced
(append-only, deduplicated by fingerprint) and ``daily_consumption`` caches
one reconciled consumption figure per calendar day.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ReadingRow(Base):
    """One timestamped observation scraped from the portal."""

    __tablename__ = "power_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    value: Mapped[float | None] = mapped_column("consumption_value", Float, nullable=True)
    unit: Mapped[str | None] = mapped_column("consumption_unit", String(20), nullable=True)
    period: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    details: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)
    fingerprint: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_timestamp", "timestamp"),
        Index("idx_category_source_timestamp", "category", "source", "timestamp"),
    )


class DailyConsumptionRow(Base):
    """Reconciled midnight-to-midnight consumption, upserted by date."""

    __tablename__ = "daily_consumption"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    day: Mapped[date] = mapped_column("date", Date, unique=True, nullable=False)
    midnight_reading: Mapped[float] = mapped_column(Float, nullable=False)
    midnight_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    current_reading: Mapped[float] = mapped_column(Float, nullable=False)
    current_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    calculated_consumption: Mapped[float] = mapped_column(Float, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_monitoring_gaps: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
