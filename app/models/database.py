"""Async database engine and session management."""

import asyncio
from contextlib import asynccontextmanager, nullcontext

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.models.tables import Base

# Lazy initialization: engine created on first use, not at import time,
# so tests can point PW_DATABASE_URL somewhere else and reset.
_engine = None
_async_session = None
_write_lock = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _get_engine():
    global _engine, _write_lock
    if _engine is None:
        settings = get_settings()
        if _is_sqlite(settings.database_url):
            # One shared connection so an in-memory database survives across
            # sessions. Transactions on it must not interleave.
            _engine = create_async_engine(
                settings.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False,
            )
            _write_lock = asyncio.Lock()
        else:
            _engine = create_async_engine(
                settings.database_url,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True,
                echo=False,
            )
            _write_lock = None
    return _engine


def _get_session_maker():
    global _async_session
    if _async_session is None:
        _async_session = async_sessionmaker(
            _get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session


@asynccontextmanager
async def session_scope():
    """One session, one transaction. Commits on exit, rolls back on error."""
    session_maker = _get_session_maker()
    async with _write_lock or nullcontext():
        async with session_maker() as session:
            async with session.begin():
                yield session


async def init_models():
    """Create all tables. Idempotent."""
    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    """Drop the engine (and with an in-memory database, all state)."""
    global _engine, _async_session, _write_lock
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session = None
    _write_lock = None
