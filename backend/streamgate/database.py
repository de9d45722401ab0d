"""
Database connection and session management.
Uses SQLAlchemy async with aiosqlite.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from fastapi import Request
from typing import AsyncGenerator

from .config import settings


def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    # WAL mode for better concurrency
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA cache_size=-32000")
    cursor.execute("PRAGMA temp_store=MEMORY")
    # Wait up to 5 seconds on a locked database
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying the sqlite pragmas when relevant."""
    new_engine = create_async_engine(url, echo=False, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine.sync_engine, "connect", set_sqlite_pragma)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a database session from the application's factory."""
    session_factory = getattr(request.app.state, "session_factory", AsyncSessionLocal)
    async with session_factory() as session:
        yield session


async def init_db(bind: AsyncEngine = engine):
    """Initialize database tables."""
    # Register every mapped class on Base.metadata
    from . import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine = engine):
    """Close database connections."""
    await bind.dispose()
