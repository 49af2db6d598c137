"""
Database engine and session factory.

The ranking cache opens one short session per read or write, so the session
factory is shared module state and the request-scoped ``get_db`` dependency
is only used by the health check.
"""
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import Settings, get_settings
from .models.base import Base

settings = get_settings()


def engine_options(config: Settings) -> dict[str, Any]:
    """Keyword arguments for create_async_engine, by database backend."""
    options: dict[str, Any] = {"echo": config.database_echo}

    if make_url(config.database_url).get_backend_name() == "sqlite":
        # Single-file database for local runs; no server pool to size
        return options

    options.update(
        pool_pre_ping=True,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=10,
        pool_recycle=3600,
    )
    # Enforce SSL for database connections in production
    if config.is_production:
        options["connect_args"] = {"ssl": "require"}
    return options


def create_engine(config: Settings) -> AsyncEngine:
    return create_async_engine(config.database_url, **engine_options(config))


engine = create_engine(settings)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the cache and tracking tables (development only; no migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
