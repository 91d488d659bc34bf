"""Database session helpers."""

from commission_engine.db.session import (
    AsyncSessionLocal,
    engine,
    get_db,
    get_db_context,
    get_session_factory,
    session_scope,
)

__all__ = [
    "AsyncSessionLocal",
    "engine",
    "get_db",
    "get_db_context",
    "get_session_factory",
    "session_scope",
]
