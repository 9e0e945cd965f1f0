"""SQLite database connection and schema management.

Data is stored in ~/.power-monitor/power_data.db by default.
WAL mode is enabled so the scraper can append readings while the
consumption engine and tool queries read.

pysqlite's implicit transaction handling is switched off and every
SQLAlchemy transaction emits an explicit BEGIN, so the several SELECTs
of one reconciliation run against a single snapshot.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.power-monitor")
DB_FILENAME = "power_data.db"


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed."""
    data_dir = Path(os.environ.get("DATA_DIR", DEFAULT_DATA_DIR))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_url() -> str:
    """Get the SQLite database URL."""
    db_path = get_data_dir() / DB_FILENAME
    return f"sqlite+aiosqlite:///{db_path}"


def _on_connect(dbapi_connection, connection_record):
    """Enable WAL mode and hand transaction control to SQLAlchemy."""
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _on_begin(conn):
    conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with the SQLite connection hooks installed."""
    engine = create_async_engine(url, echo=False)
    event.listen(engine.sync_engine, "connect", _on_connect)
    event.listen(engine.sync_engine, "begin", _on_begin)
    return engine


async def create_tables(engine: AsyncEngine) -> None:
    from .sqlmodels import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_db_url())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db():
    """Create all tables if they don't exist."""
    await create_tables(get_engine())
    logger.info("Database initialized at %s", get_data_dir() / DB_FILENAME)


async def close_db():
    """Close the database engine."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
