"""Disputes raised by agents on their own records."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import audited, get_disputes
from commission_engine.auth.dependencies import agent_actor, require_agent
from commission_engine.db import get_db
from commission_engine.models import User
from commission_engine.schemas.ledger import DisputeCreate, DisputeResponse
from commission_engine.services import Actor, DisputeManager

router = APIRouter(prefix="/disputes")


@router.get("", response_model=List[DisputeResponse])
async def my_disputes(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_agent),
    disputes: DisputeManager = Depends(get_disputes),
):
    return await disputes.list_disputes(db, agent_id=current_user.id)


@router.post("", response_model=DisputeResponse, status_code=201)
async def open_dispute(
    data: DisputeCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(agent_actor),
    disputes: DisputeManager = Depends(get_disputes),
):
    """Open a dispute on one of the agent's own commission records."""
    async with audited(db):
        return await disputes.open(
            db,
            data.record_id,
            data.dispute_type,
            data.amount_disputed,
            actor,
            evidence=data.evidence,
            description=data.description,
        )
