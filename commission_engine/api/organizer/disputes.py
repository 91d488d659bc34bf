"""Organizer dispute handling."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import audited, get_disputes
from commission_engine.auth.dependencies import organizer_actor, require_organizer
from commission_engine.db import get_db
from commission_engine.models import DisputeStatus, User
from commission_engine.schemas.ledger import DisputeCreate, DisputeResolve, DisputeResponse
from commission_engine.services import Actor, DisputeManager

router = APIRouter(prefix="/disputes")


@router.get("", response_model=List[DisputeResponse])
async def list_disputes(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    disputes: DisputeManager = Depends(get_disputes),
    status: Optional[DisputeStatus] = Query(None),
    agent_id: Optional[int] = Query(None),
):
    return await disputes.list_disputes(db, organizer_id=current_user.id, agent_id=agent_id, status=status)


@router.post("", response_model=DisputeResponse, status_code=201)
async def open_dispute(
    data: DisputeCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(organizer_actor),
    disputes: DisputeManager = Depends(get_disputes),
):
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


@router.post("/{dispute_id}/investigate", response_model=DisputeResponse)
async def investigate_dispute(
    dispute_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    disputes: DisputeManager = Depends(get_disputes),
):
    return await disputes.mark_investigating(db, dispute_id, actor, organizer_id=current_user.id)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: int,
    data: DisputeResolve,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    disputes: DisputeManager = Depends(get_disputes),
):
    """
    Close a dispute as resolved_paid or resolved_rejected.

    A resolution_amount that differs from the record's net amount creates
    an adjustment record for the difference.
    """
    async with audited(db):
        return await disputes.resolve(
            db,
            dispute_id,
            data.outcome,
            actor,
            resolution_amount=data.resolution_amount,
            notes=data.notes,
            organizer_id=current_user.id,
        )
