"""Agent's own earnings, records and tier progress."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import get_ledger, get_tracker, page_count
from commission_engine.auth.dependencies import require_agent
from commission_engine.db import get_db
from commission_engine.models import AgentPermission, CommissionStatus, User
from commission_engine.schemas.ledger import (
    AgentSummaryResponse,
    CommissionRecordListResponse,
    CommissionRecordResponse,
)
from commission_engine.schemas.tier import TierProgressionResponse
from commission_engine.services import CommissionLedger, TierProgressionTracker, commission_config
from commission_engine.services.errors import NotFoundError
from commission_engine.services.money import utcnow

router = APIRouter()


async def resolve_organizer(db: AsyncSession, agent_id: int, organizer_id: Optional[int]) -> int:
    """The organizer the agent asked about, or the only one they sell for."""
    query = select(AgentPermission.organizer_id).where(AgentPermission.agent_id == agent_id)
    if organizer_id is not None:
        query = query.where(AgentPermission.organizer_id == organizer_id)
    organizers = list((await db.execute(query.order_by(AgentPermission.organizer_id))).scalars().all())
    if not organizers:
        raise NotFoundError("No commission permission found")
    return organizers[0]


@router.get("/summary", response_model=AgentSummaryResponse)
async def my_summary(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_agent),
    ledger: CommissionLedger = Depends(get_ledger),
    organizer_id: Optional[int] = Query(None),
):
    return await ledger.summary_for_agent(db, current_user.id, organizer_id=organizer_id)


@router.get("/records", response_model=CommissionRecordListResponse)
async def my_records(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_agent),
    ledger: CommissionLedger = Depends(get_ledger),
    status: Optional[CommissionStatus] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
):
    items, total = await ledger.list_records(
        db,
        agent_id=current_user.id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
    )
    return CommissionRecordListResponse(
        items=[CommissionRecordResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=page_count(total, per_page),
    )


@router.get("/progression", response_model=TierProgressionResponse)
async def my_progression(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_agent),
    tracker: TierProgressionTracker = Depends(get_tracker),
    organizer_id: Optional[int] = Query(None),
):
    organizer_id = await resolve_organizer(db, current_user.id, organizer_id)
    config = await commission_config.get_config(db, organizer_id)
    view = await tracker.progression_view(db, config, current_user.id, organizer_id, utcnow())
    return TierProgressionResponse.model_validate(view, from_attributes=True)
