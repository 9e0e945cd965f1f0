"""Pytest configuration and fixtures.

Every test gets its own SQLite file under ``tmp_path`` so WAL mode and the
explicit BEGIN hooks behave exactly as they do against the real database.
"""

from __future__ import annotations

from typing import Iterable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from power_monitor import store
from power_monitor.consumption import ConsumptionEngine
from power_monitor.core.settings import ReconciliationSettings
from power_monitor.db import build_engine, create_tables
from power_monitor.events import StatusTracker


@pytest.fixture
def settings() -> ReconciliationSettings:
    return ReconciliationSettings()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh database with both tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def engine(session_factory, settings) -> ConsumptionEngine:
    return ConsumptionEngine(session_factory, settings)


@pytest.fixture
def tracker(session_factory) -> StatusTracker:
    return StatusTracker(session_factory)


@pytest.fixture
def seed(session_factory):
    """Append readings straight into the store, bypassing validation."""

    async def _seed(readings: Iterable) -> int:
        inserted = 0
        async with store.transaction(session_factory, "seed") as session:
            for reading in readings:
                if await store.append_reading(session, reading):
                    inserted += 1
        return inserted

    return _seed
