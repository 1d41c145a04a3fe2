"""Async database layer for LicitaRadar.

Uses SQLAlchemy 2.x async engine: asyncpg against Supabase PostgreSQL in
production, aiosqlite for local runs and tests. Tables are created on startup;
there is no migration tooling.
"""
import logging
from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from licitaradar.core.config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None

# JSONB on PostgreSQL, plain JSON everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


def normalize_database_url(url: str) -> str:
    # Supabase connection strings often start with postgres://
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def make_engine(url: Optional[str] = None) -> AsyncEngine:
    settings = get_settings()
    url = normalize_database_url(url or settings.database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


async def create_tables(engine: AsyncEngine) -> None:
    # Import so ORM models are registered with Base.metadata
    import licitaradar.models.db_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: Optional[str] = None) -> async_sessionmaker:
    """
    Create all tables (if they don't exist) and initialise the session factory.

    Connection errors are raised to the caller.
    """
    global _engine, _session_factory
    _engine = make_engine(url)
    await create_tables(_engine)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info("Database initialised successfully")
    return _session_factory


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialised, call init_db() first")
    return _session_factory


def db_ready() -> bool:
    return _session_factory is not None


async def close_db() -> None:
    """Dispose the engine on shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_session():
    """FastAPI dependency yielding one AsyncSession per request."""
    async with get_session_factory()() as session:
        yield session
