"""
Async SQLAlchemy engine and session scopes.

One transaction per unit of work: an HTTP request (get_db), a scheduler
job or startup task (get_db_context), or one attempt of a sale event
(CommissionEngine opens its own sessions from the factory so the whole
attempt can be replayed after a serialization failure).

Services flush but never commit; the scope owning the session does.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from commission_engine.config import settings

logger = logging.getLogger(__name__)

# Connections are pooled outside the process (pgbouncer in transaction mode)
engine = create_async_engine(
    settings.database_url,
    poolclass=NullPool,
    echo=not settings.is_production,
    connect_args={"statement_cache_size": 0} if "+asyncpg" in settings.database_url else {},
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Commit when the block succeeds, roll back and re-raise otherwise."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session and transaction per request.

    Lifecycle endpoints that must keep a rejected-transition audit entry
    commit it themselves (api.deps.audited) before the error reaches here.
    """
    async with session_scope(AsyncSessionLocal) as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Session factory for components that manage their own transactions."""
    return AsyncSessionLocal


def get_db_context():
    """
    Session scope outside FastAPI (scheduler jobs, startup):

        async with get_db_context() as db:
            await TierProgressionTracker().rollover_periods(db, utcnow())
    """
    return session_scope(AsyncSessionLocal)
