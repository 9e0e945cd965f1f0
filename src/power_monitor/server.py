"""Power Monitor MCP Server.

FastMCP server exposing reconciled daily consumption, grid events and raw
readings to dashboards and assistants.
Run: power-monitor-mcp
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from datetime import time as dt_time
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import TypeAdapter, ValidationError

from .consumption import ConsumptionEngine
from .core.models import Category, ConsumptionSnapshot, Reading, Source
from .db import close_db, init_db
from .events import StatusTracker
from .ingestors import get_latest_status, get_reading_history, ingest_readings

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=False)
RECOMPUTE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=False)

NO_DATA = "No data available for this date"

engine = ConsumptionEngine()
tracker = StatusTracker()

_readings_adapter = TypeAdapter(list[Reading])


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Initialize the database for the lifetime of the server."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    await init_db()
    try:
        yield
    finally:
        await close_db()


mcp = FastMCP(
    "Power Monitor",
    instructions="Grid and DG power monitoring: daily consumption reconciled from meter readings, grid interruptions and restorations, and raw portal readings.",
    lifespan=lifespan,
)


def _parse_date(value: str, default: Optional[date] = None) -> date:
    if not value:
        if default is None:
            raise ValueError("A date in YYYY-MM-DD format is required")
        return default
    return date.fromisoformat(value)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _snapshot_summary(snapshot: ConsumptionSnapshot) -> str:
    summary = (
        f"{snapshot.value:.2f} {snapshot.unit} "
        f"({snapshot.midnight_reading} -> {snapshot.current_reading} KWH), "
        f"confidence {snapshot.confidence:.0%}"
    )
    if snapshot.has_gaps:
        summary += ", monitoring gaps detected"
    return summary


# ─── Tool 1: Today ──────────────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def power_today_consumption() -> dict:
    """Today's grid consumption so far, calculated from midnight and current meter readings."""
    snapshot = await engine.get_today_consumption()
    if snapshot is None:
        return {"title": "Today's Consumption", "consumption": None, "summary": NO_DATA}
    return {
        "title": "Today's Consumption",
        "consumption": snapshot.model_dump(mode="json"),
        "summary": _snapshot_summary(snapshot),
    }


# ─── Tool 2: One day ────────────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def power_daily_consumption(date: str = "") -> dict:
    """Recalculate and return the midnight-to-midnight consumption of one UTC day.

    Args:
        date: Day in YYYY-MM-DD format. Default today.
    """
    day = _parse_date(date, _utc_today())
    record = await engine.calculate_daily_consumption(day)
    if record is None:
        return {"title": f"Consumption {day.isoformat()}", "record": None, "summary": NO_DATA}

    summary = f"{record.calculated_consumption:.2f} units, confidence {record.confidence_score:.0%}"
    if record.has_monitoring_gaps:
        summary += f", monitoring gaps ({record.record_count} readings)"
    if not record.is_complete:
        summary += ", day still in progress"
    return {
        "title": f"Consumption {day.isoformat()}",
        "record": record.model_dump(mode="json"),
        "summary": summary,
    }


# ─── Tool 3: Backfill ───────────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def power_backfill(days: int = 7) -> dict:
    """Recalculate the daily consumption ledger for the last N days.

    Args:
        days: Number of days to recalculate, today included. Default 7.
    """
    records = await engine.backfill(days)
    return {
        "title": "Daily Consumption Backfill",
        "days_requested": days,
        "records": [r.model_dump(mode="json") for r in records],
        "summary": f"Calculated {len(records)} of {days} days",
    }


# ─── Tool 4: History ────────────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def power_consumption_history(start_date: str = "", end_date: str = "") -> dict:
    """Stored daily consumption records, newest first.

    Args:
        start_date: First day (YYYY-MM-DD). Default 7 days ago.
        end_date: Last day (YYYY-MM-DD). Default today.
    """
    today = _utc_today()
    start = _parse_date(start_date, today - timedelta(days=7))
    end = _parse_date(end_date, today)
    records = await engine.get_daily_consumptions(start, end)

    total = sum(r.calculated_consumption for r in records if r.is_complete)
    gaps = sum(1 for r in records if r.has_monitoring_gaps)
    return {
        "title": "Daily Consumption History",
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "records": [r.model_dump(mode="json") for r in records],
        "summary": f"{len(records)} day(s), {total:.2f} units across complete days, {gaps} with monitoring gaps"
        if records else "No daily consumption records in range",
    }


# ─── Tool 5: Point in time ──────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def power_consumption_at_time(date: str, time: str) -> dict:
    """Consumption of a day from its midnight reading up to a given time.

    Args:
        date: Day in YYYY-MM-DD format.
        time: ISO time or datetime (UTC), e.g. '18:30', '18:30:00' or '2025-10-22T18:30:00Z'.
    """
    day = _parse_date(date)
    if "T" in time or " " in time:
        target = datetime.fromisoformat(time.replace("Z", "+00:00"))
    else:
        target = datetime.combine(day, dt_time.fromisoformat(time), tzinfo=timezone.utc)

    snapshot = await engine.get_consumption_at_time(day, target)
    if snapshot is None:
        return {"title": f"Consumption {day.isoformat()} at {time}", "consumption": None, "summary": NO_DATA}
    return {
        "title": f"Consumption {day.isoformat()} at {time}",
        "consumption": snapshot.model_dump(mode="json"),
        "summary": _snapshot_summary(snapshot),
    }


# ─── Tool 6: Grid events ────────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def power_grid_events(limit: int = 10) -> dict:
    """Most recent grid interruptions and restorations.

    Args:
        limit: Maximum number of events. Default 10.
    """
    summary = await tracker.get_grid_events(limit)
    if not summary.events:
        text = "No grid interruptions or restorations recorded."
    else:
        parts = []
        if summary.last_interruption:
            parts.append(f"Last interruption: {summary.last_interruption.isoformat()}")
        if summary.last_restoration:
            parts.append(f"Last restoration: {summary.last_restoration.isoformat()}")
        text = " | ".join(parts)
    return {
        "title": "Grid Events",
        **summary.model_dump(mode="json"),
        "summary": text,
    }


# ─── Tool 7: Latest status ──────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def power_latest_status() -> dict:
    """Latest grid/DG availability, consumption, meter and balance readings from the last hour."""
    status = await get_latest_status(engine)

    parts = []
    for r in status.readings:
        if r.category == Category.AVAILABILITY:
            parts.append(f"{r.source.value.upper()}: {r.status.value}")
    if status.today_consumption:
        parts.append(f"Today: {_snapshot_summary(status.today_consumption)}")
    return {
        "title": "Current Status",
        **status.model_dump(mode="json"),
        "summary": " | ".join(parts) if parts else "No readings in the last hour",
    }


# ─── Tool 8: Raw readings ───────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def power_reading_history(
    hours: int = 24,
    limit: int = 1000,
    category: str = "",
    source: str = "",
    period: str = "",
    start: str = "",
    end: str = "",
    changes_filter: str = "",
) -> dict:
    """Raw scraped readings, newest first, with optional filters.

    Args:
        hours: Trailing window in hours when no start is given. Default 24.
        limit: Maximum number of readings. Default 1000.
        category: availability, consumption, meter_reading, balance or event.
        source: grid or dg.
        period: Period label, e.g. 'today' or 'current_month'.
        start: ISO datetime (UTC) lower bound; overrides hours.
        end: ISO datetime (UTC) upper bound.
        changes_filter: 'changes_only' keeps readings where a value changed,
            'no_duplicates' drops consecutive repeats per category and source.
    """
    if changes_filter not in ("", "changes_only", "no_duplicates"):
        raise ValueError("changes_filter must be 'changes_only' or 'no_duplicates'")

    readings = await get_reading_history(
        hours=hours,
        limit=limit,
        start=datetime.fromisoformat(start.replace("Z", "+00:00")) if start else None,
        end=datetime.fromisoformat(end.replace("Z", "+00:00")) if end else None,
        category=Category(category) if category else None,
        source=Source(source) if source else None,
        period=period or None,
        changes_filter=changes_filter or None,
    )
    return {
        "title": "Reading History",
        "count": len(readings),
        "readings": _readings_adapter.dump_python(readings, mode="json"),
    }


# ─── Tool 9: Ingestion ──────────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def power_ingest_readings(readings: list[dict]) -> dict:
    """Store readings produced by the portal scraper. Duplicates within a minute are ignored.

    Args:
        readings: Reading objects with category, source, timestamp and either
            status (availability) or value (consumption, meter_reading, balance).
    """
    try:
        parsed = _readings_adapter.validate_python(readings)
    except ValidationError as exc:
        return {"title": "Ingestion", "error": str(exc), "summary": "Readings rejected: invalid payload"}

    result = await ingest_readings(parsed)
    return {
        "title": "Ingestion",
        **result.model_dump(),
        "summary": f"{result.saved} new, {result.duplicates} duplicate, {result.rejected} rejected, "
                   f"{result.failed} failed, {result.events} event(s)",
    }


def main():
    """Entry point for the CLI command."""
    mcp.run()


if __name__ == "__main__":
    main()
