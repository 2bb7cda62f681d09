"""
LedgerSeal - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async,
plus the unit of work every multi-step mutation runs in.
"""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from ledgerseal.config import settings

logger = logging.getLogger(__name__)


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def engine_options(database_url: str) -> Dict[str, Any]:
    """Engine keyword arguments for the given URL (SQLite has no sized pool)."""
    options: Dict[str, Any] = {
        "echo": settings.debug,  # Log SQL queries in debug mode
        "pool_pre_ping": True,   # Verify connections before use
    }
    if not database_url.startswith("sqlite"):
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return options


# Create async engine
engine = create_async_engine(
    settings.database_url_async,
    **engine_options(settings.database_url_async),
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncSession:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


class UnitOfWork:
    """
    Explicit transaction boundary.

    Commits when the block exits cleanly, rolls back and re-raises on any
    exception. Services open exactly one per public mutation and never nest
    them; private helpers run inside the caller's unit of work.

        async with UnitOfWork(db):
            ...
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def __aenter__(self) -> AsyncSession:
        return self.session

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            await self.session.commit()
            return False

        logger.error(f"Rolling back transaction after {exc_type.__name__}: {exc}")
        await self.session.rollback()
        return False


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    # Import models so every table is registered on the metadata
    import ledgerseal.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
