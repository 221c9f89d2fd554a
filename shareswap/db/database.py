"""Async database connection and session management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)

from .models import Base


DEFAULT_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///./data/shareswap.db"

# One engine/session factory per database URL
_async_engines: dict[str, AsyncEngine] = {}
_async_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def get_async_engine(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> AsyncEngine:
    """Get or create asynchronous database engine."""
    engine = _async_engines.get(database_url)
    if engine is None:
        engine = create_async_engine(database_url, echo=False)
        _async_engines[database_url] = engine
    return engine


def get_async_session_factory(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> async_sessionmaker[AsyncSession]:
    """Get async session factory."""
    factory = _async_session_factories.get(database_url)
    if factory is None:
        factory = async_sessionmaker(
            bind=get_async_engine(database_url),
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )
        _async_session_factories[database_url] = factory
    return factory


@asynccontextmanager
async def get_session(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session as a context manager."""
    factory = get_async_session_factory(database_url)
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


async def init_db_async(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
    """Initialize the database asynchronously by creating all tables."""
    _ensure_sqlite_dir(database_url)
    engine = get_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_async() -> None:
    """Dispose every async engine. Useful between tests."""
    engines = list(_async_engines.values())
    _async_engines.clear()
    _async_session_factories.clear()
    for engine in engines:
        await engine.dispose()
