"""Async database engine and session management.

Provides:
    - get_session_factory: A sessionmaker bound to the lazily created engine.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

Services never open sessions on their own; the container hands them the
session factory and every mutation opens exactly one transaction inside
WorkflowService.unit_of_work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from secureshift.config import get_settings
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.pool import ConnectionPoolEntry

logger = get_logger(__name__)

# Module-level singletons (initialized lazily)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, **overrides: Any) -> AsyncEngine:
    """Create an async engine; pool settings apply to server databases only."""
    settings = get_settings()
    kwargs: dict[str, Any] = {"echo": settings.db_echo_sql}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
        )
    kwargs.update(overrides)
    engine = create_async_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        _take_sqlite_write_lock_on_begin(engine)
    return engine


def _take_sqlite_write_lock_on_begin(engine: AsyncEngine) -> None:
    """Start SQLite transactions with BEGIN IMMEDIATE.

    A deferred transaction that reads and then writes can deadlock against
    another writer and fail with "database is locked"; taking the write lock
    up front makes concurrent sessions queue on the busy timeout instead.
    """

    def _disable_driver_begin(
        dbapi_connection: Any, connection_record: ConnectionPoolEntry
    ) -> None:
        dbapi_connection.isolation_level = None

    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    event.listen(engine.sync_engine, "connect", _disable_driver_begin)
    event.listen(engine.sync_engine, "begin", _begin_immediate)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url)
        logger.info(
            "database.engine_created",
            sqlite=settings.is_sqlite,
            pool_size=None if settings.is_sqlite else settings.db_pool_size,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(_get_engine())
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    from secureshift.infrastructure.database.orm_models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize the database engine and create tables if they don't exist.

    Called during FastAPI's lifespan startup. Outside development the schema
    is owned by the Alembic migrations (``alembic upgrade head``).
    """
    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        await create_tables(engine)
        logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="schema managed by alembic")


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
