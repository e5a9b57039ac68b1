"""Database connection and session management."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from rentbill.models import Base

# Seconds a SQLite connection waits for the write lock before failing
SQLITE_BUSY_TIMEOUT = 30.0


def create_engine_from_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    Plain ``sqlite:///`` URLs are switched to the aiosqlite driver. In-memory SQLite
    uses StaticPool so every session sees the same database.
    """
    if database_url.startswith("sqlite:///"):
        database_url = database_url.replace("sqlite:///", "sqlite+aiosqlite:///")

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(database_url, echo=echo, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    # The sqlite driver opens transactions lazily and breaks SAVEPOINT, so emit BEGIN ourselves.
    # IMMEDIATE takes the write lock up front: concurrent writers queue on the busy
    # timeout instead of failing on a SHARED to RESERVED upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by the billing services."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables for all registered models."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "create_engine_from_url",
    "create_session_factory",
    "init_models",
]
