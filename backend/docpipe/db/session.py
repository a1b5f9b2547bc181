"""
Database engine and session factory.

The engine is created lazily on first use: with an empty DATABASE_URL the
service runs on in-memory stores and never imports a driver.

Transactions:
  Each store operation opens its own session and transaction through
  `session_scope()`. The job store relies on row locks held for the length
  of that transaction (SELECT … FOR UPDATE), so a session is never shared
  across operations.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docpipe.core.config import Settings, settings

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

_engine: AsyncEngine | None = None
_session_factory: SessionFactory | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def build_engine(config: Settings) -> AsyncEngine:
    return create_async_engine(
        config.database_url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=config.db_echo_sql,     # log SQL in dev; disable in prod
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not configured")
        _engine = build_engine(settings)
        logger.info("Database engine created | pool_size=%d", settings.db_pool_size)
    return _engine


def get_session_factory() -> SessionFactory:
    """Session factory — expire_on_commit=False keeps ORM objects usable after commit."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """One session, one transaction: commits on success, rolls back on error."""
    async with factory() as session:
        async with session.begin():
            yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /health endpoint."""
    if not settings.database_url:
        return {"status": "disabled"}
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
