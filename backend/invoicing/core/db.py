"""
Async SQLAlchemy engine + session dependency.

Usage in FastAPI endpoints:
    async def my_endpoint(db: AsyncSession = Depends(get_db)):
        ...

SQLite engines (local runs, tests) are switched to BEGIN IMMEDIATE so that a
transaction holds the database write lock from its first statement. That is
the closest SQLite gets to SELECT ... FOR UPDATE.
"""
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from invoicing.core.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()


def configure_sqlite_locking(engine: AsyncEngine) -> None:
    """Make every transaction on a SQLite engine start with BEGIN IMMEDIATE."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # the driver would otherwise emit a deferred BEGIN on first DML
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"timeout": _settings.numbering_lock_timeout_ms / 1000})
        engine = create_async_engine(url, **kwargs)
        configure_sqlite_locking(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=2,
        pool_pre_ping=True,
        **kwargs,
    )


engine = build_engine(_settings.database_url, echo=_settings.is_development)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency — yields an async DB session."""
    async with AsyncSessionLocal() as session:
        yield session


async def check_db_connection() -> bool:
    """Return True if the database is reachable."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("Database health check failed: %s", exc)
        return False
