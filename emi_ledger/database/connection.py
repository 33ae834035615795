"""Database connection and session management."""
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from emi_ledger.config import get_settings
from emi_ledger.database.models import Base

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


class SchemaMismatchError(Exception):
    """Raised at startup when the database has not been migrated."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Database schema is missing: {', '.join(missing)}. "
            "Run 'alembic upgrade head' before starting the service."
        )
        self.missing = missing


def get_engine() -> AsyncEngine:
    """
    Get or create the database engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        engine_kwargs: dict[str, Any] = {
            "echo": settings.database_echo,
            "pool_pre_ping": True,
        }
        if not settings.is_sqlite:
            engine_kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_recycle=3600,
            )
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the session factory.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = build_session_factory(get_engine())
    return _async_session_factory


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the settings every caller in this service relies on."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, Any]:
    """
    Dependency for getting database sessions.

    Yields:
        AsyncSession: Database session

    Example:
        @router.get("/customers")
        async def list_customers(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Create all tables that don't exist yet.

    Development and test only; deployed databases are migrated with Alembic.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _missing_schema_objects(sync_conn: Any) -> list[str]:
    inspector = inspect(sync_conn)
    existing_tables = set(inspector.get_table_names())
    missing: list[str] = []
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            missing.append(table.name)
            continue
        existing_columns = {col["name"] for col in inspector.get_columns(table.name)}
        missing.extend(
            f"{table.name}.{col.name}" for col in table.columns if col.name not in existing_columns
        )
    return missing


async def verify_schema(engine: AsyncEngine | None = None) -> None:
    """
    Check once at startup that every mapped table and column exists.

    Raises:
        SchemaMismatchError: If the migration has not been applied
    """
    engine = engine or get_engine()
    async with engine.connect() as conn:
        missing = await conn.run_sync(_missing_schema_objects)
    if missing:
        logger.error("database_schema_mismatch", missing=missing)
        raise SchemaMismatchError(missing)
    logger.info("database_schema_verified")


async def close_db() -> None:
    """Close database connections and dispose of the engine."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
