"""Database initialization and session management."""
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, insert, select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine
)

from healbridge.models import Base, Condition, DEFAULT_CONDITIONS
from healbridge.config import get_config


_engine = None
_session_factory = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _seed_conditions(connection) -> None:
    """Insert any default condition that is not there yet; existing rows are left alone."""
    existing = set(connection.execute(select(Condition.id)).scalars())
    missing = [row for row in DEFAULT_CONDITIONS if row["id"] not in existing]
    if missing:
        connection.execute(insert(Condition), missing)


async def init_database():
    """Initialize the database engine and create tables."""
    global _engine, _session_factory

    cfg = get_config()
    url = make_url(cfg.database.url)

    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    _engine = create_async_engine(
        cfg.database.url,
        echo=cfg.database.echo,
        pool_pre_ping=True,
    )
    if url.get_backend_name() == "sqlite":
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(_seed_conditions)

    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session; commit on success, roll back on error."""
    if _session_factory is None:
        await init_database()
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_database():
    """Gracefully close the database engine."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
