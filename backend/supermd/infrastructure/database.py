"""Async database engine and sessions for the document and memory stores.

The engine is created lazily: a process running both stores on the
in-memory backends never opens a connection.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from supermd.config import get_settings

logger = logging.getLogger("db")


class Base(DeclarativeBase):
    """Declarative base for the ``documents`` and ``agent_memory_*`` tables."""


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    options: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_disable_pooling:
        # Poolers such as pgbouncer in transaction mode own the pooling
        options["poolclass"] = NullPool
    else:
        options["pool_size"] = 5
        options["max_overflow"] = 10

    _engine = create_async_engine(settings.database_url, **options)
    logger.info(
        "Database engine created",
        extra={
            "service": "db",
            "metadata": {
                "database": settings._redact_url(settings.database_url),
                "pooling": not settings.database_disable_pooling,
            },
        },
    )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory handed to ``SqlDocumentStore`` and ``SqlMemoryStore``.

    Stores open one session per operation and manage their own transactions.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Session committed on success and rolled back on error.

    Usage:
        async with get_session_context() as session:
            ...
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_db() -> str | None:
    """Run ``SELECT 1``; returns an error description or ``None`` when healthy."""
    try:
        async with get_session_context() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return str(exc)
    return None


async def init_db() -> None:
    """Verify connectivity at startup.

    A failure is logged but does not stop the service: stores degrade to
    empty reads until the database comes back.
    """
    error = await ping_db()
    if error is not None:
        logger.error(
            "Database connection failed during init",
            extra={"service": "db", "error": error},
        )
        return
    logger.info("Database connection verified", extra={"service": "db"})


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connections closed", extra={"service": "db"})


__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "get_session_context",
    "ping_db",
    "init_db",
    "close_db",
]
