"""Async database engine and session management.

Uses SQLAlchemy 2.0 asyncio extension. PostgreSQL (asyncpg) in production,
SQLite (aiosqlite) for local development and tests.

Based on SQLAlchemy asyncio documentation:
https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(settings: Settings) -> AsyncEngine:
    """Create async engine from settings.

    In-memory SQLite URLs get a static pool so every session shares the
    same database.

    Args:
        settings: Application settings with database_url

    Returns:
        Configured AsyncEngine
    """
    url = settings.database_url
    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        return create_async_engine(
            url,
            echo=settings.database_echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=settings.database_echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory bound to engine.

    Args:
        engine: Async engine

    Returns:
        Session factory producing AsyncSession instances
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Import registers every model on Base.metadata
    from services.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")
