"""Database configuration and session management for the shortlink core.

This module provides SQLAlchemy async engine setup, session factories,
and database lifecycle operations using PostgreSQL (asyncpg) as the backend,
or SQLite (aiosqlite) for local development and tests.

Flow Diagram - Database Operations
=================================
::
    ┌─────────────┐
    │ ServiceManager│
    │ initialize() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_engine│
    │ + sessionmaker│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │
    │ create_all   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ One session  │
    │ per request  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    │ dispose      │
    └─────────────┘

How to Use
===========
**Step 1 - Create the engine once at start-up**::
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    await init_db(engine)

**Step 2 - Open a session per unit of work**::
    async with session_factory() as session:
        store = ShortURLStore(session)

**Step 3 - Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- The engine is owned by whoever creates it; there is no module-level engine.
- Pool sizing only applies to server databases, SQLite uses the default pool.
- Tables are created with ``Base.metadata.create_all``; no migrations.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Build an AsyncEngine from settings or a URL.
    create_session_factory():  Build an async_sessionmaker bound to an engine.
    init_db():  Creates all tables.
    close_db():  Disposes the engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings, url: str | None = None) -> AsyncEngine:
    database_url = url or settings.DATABASE_URL
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)

    return create_async_engine(
        database_url,
        echo=(settings.APP_ENV == "development"),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Register models on Base.metadata before create_all.
    import shortlink.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
