"""Organizer payout batches."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import audited, get_payouts, page_count
from commission_engine.auth.dependencies import organizer_actor, require_organizer
from commission_engine.db import get_db
from commission_engine.models import PayoutBatchStatus, User
from commission_engine.schemas.ledger import (
    CommissionRecordResponse,
    PayoutBatchCancel,
    PayoutBatchCreate,
    PayoutBatchDetailResponse,
    PayoutBatchProcess,
    PayoutBatchResponse,
)
from commission_engine.services import Actor, PayoutBatchManager

router = APIRouter(prefix="/payouts")


async def batch_detail(db: AsyncSession, payouts: PayoutBatchManager, batch) -> PayoutBatchDetailResponse:
    records = await payouts.batch_records(db, batch.id)
    return PayoutBatchDetailResponse(
        **PayoutBatchResponse.model_validate(batch).model_dump(),
        records=[CommissionRecordResponse.model_validate(r) for r in records],
    )


@router.get("/eligible", response_model=List[CommissionRecordResponse])
async def eligible_records(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    payouts: PayoutBatchManager = Depends(get_payouts),
    agent_id: Optional[int] = Query(None),
    as_of: Optional[datetime] = Query(None),
):
    """Approved records past the hold period and not yet in a batch."""
    return await payouts.eligible_records(db, current_user.id, as_of=as_of, agent_id=agent_id)


@router.get("")
async def list_batches(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    payouts: PayoutBatchManager = Depends(get_payouts),
    status: Optional[PayoutBatchStatus] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    batches, total = await payouts.list_batches(db, current_user.id, status=status, page=page, per_page=per_page)
    return {
        "items": [PayoutBatchResponse.model_validate(b) for b in batches],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": page_count(total, per_page),
    }


@router.post("", response_model=PayoutBatchDetailResponse, status_code=201)
async def create_batch(
    data: PayoutBatchCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    payouts: PayoutBatchManager = Depends(get_payouts),
):
    batch = await payouts.create_batch(
        db,
        current_user.id,
        data.payment_method,
        data.record_ids,
        actor,
        batch_name=data.batch_name,
    )
    return await batch_detail(db, payouts, batch)


@router.get("/{batch_id}", response_model=PayoutBatchDetailResponse)
async def get_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    payouts: PayoutBatchManager = Depends(get_payouts),
):
    batch = await payouts.get_batch(db, batch_id, organizer_id=current_user.id)
    return await batch_detail(db, payouts, batch)


@router.post("/{batch_id}/process", response_model=PayoutBatchDetailResponse)
async def process_batch(
    batch_id: int,
    data: PayoutBatchProcess,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    payouts: PayoutBatchManager = Depends(get_payouts),
):
    """
    Pay every record in the batch.

    If any member is no longer payable (e.g. disputed after batching) the
    batch fails with 409 and blocking_record_ids; nothing is paid.
    """
    async with audited(db):
        batch = await payouts.process_batch(
            db,
            batch_id,
            actor,
            payment_reference=data.payment_reference,
            organizer_id=current_user.id,
        )
    return await batch_detail(db, payouts, batch)


@router.post("/{batch_id}/cancel", response_model=PayoutBatchResponse)
async def cancel_batch(
    batch_id: int,
    data: PayoutBatchCancel,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    payouts: PayoutBatchManager = Depends(get_payouts),
):
    """Fail a draft batch and release its records for a new batch."""
    async with audited(db):
        batch = await payouts.cancel_batch(
            db,
            batch_id,
            actor,
            reason=data.reason,
            organizer_id=current_user.id,
        )
    return batch
