"""Shared API dependencies and helpers."""

from contextlib import asynccontextmanager

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commission_engine.db import get_session_factory
from commission_engine.services import (
    CommissionEngine,
    CommissionLedger,
    DisputeManager,
    PayoutBatchManager,
    TierProgressionTracker,
)
from commission_engine.services.errors import InvalidRecordStateError, PermissionDeniedError


def get_engine(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> CommissionEngine:
    return CommissionEngine(session_factory=session_factory)


def get_ledger() -> CommissionLedger:
    return CommissionLedger()


def get_payouts() -> PayoutBatchManager:
    return PayoutBatchManager()


def get_disputes() -> DisputeManager:
    return DisputeManager()


def get_tracker() -> TierProgressionTracker:
    return TierProgressionTracker()


@asynccontextmanager
async def audited(db: AsyncSession):
    """
    Keep rejected-transition audit entries when a lifecycle call fails.

    The ledger appends the rejection to the audit trail before raising;
    get_db would roll it back together with the failed request.
    """
    try:
        yield
    except (InvalidRecordStateError, PermissionDeniedError):
        await db.commit()
        raise


def page_count(total: int, per_page: int) -> int:
    return (total + per_page - 1) // per_page if total else 0
