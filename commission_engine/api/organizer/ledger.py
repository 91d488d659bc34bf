"""Organizer view of the commission ledger."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import audited, get_ledger, page_count
from commission_engine.auth.dependencies import organizer_actor, require_organizer
from commission_engine.db import get_db
from commission_engine.models import CommissionStatus, RecordKind, User
from commission_engine.schemas.ledger import (
    AgentSummaryResponse,
    AuditEntryResponse,
    CancelRequest,
    CommissionRecordDetailResponse,
    CommissionRecordListResponse,
    CommissionRecordResponse,
    MarkPaidRequest,
)
from commission_engine.services import Actor, CommissionLedger

router = APIRouter(prefix="/ledger")


@router.get("", response_model=CommissionRecordListResponse)
async def list_records(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    ledger: CommissionLedger = Depends(get_ledger),
    agent_id: Optional[int] = Query(None),
    status: Optional[CommissionStatus] = Query(None),
    kind: Optional[RecordKind] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
):
    items, total = await ledger.list_records(
        db,
        organizer_id=current_user.id,
        agent_id=agent_id,
        status=status,
        kind=kind,
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


@router.get("/agents/{agent_id}/summary", response_model=AgentSummaryResponse)
async def agent_summary(
    agent_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    ledger: CommissionLedger = Depends(get_ledger),
):
    return await ledger.summary_for_agent(db, agent_id, organizer_id=current_user.id)


@router.get("/{record_id}", response_model=CommissionRecordDetailResponse)
async def get_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    ledger: CommissionLedger = Depends(get_ledger),
):
    """Record with its full audit trail, rejected attempts included."""
    record = await ledger.get_record(db, record_id, organizer_id=current_user.id)
    trail = await ledger.audit_trail(db, record.id)
    return CommissionRecordDetailResponse(
        **CommissionRecordResponse.model_validate(record).model_dump(),
        audit_trail=[AuditEntryResponse.model_validate(e) for e in trail],
    )


@router.post("/{record_id}/approve", response_model=CommissionRecordResponse)
async def approve_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    ledger: CommissionLedger = Depends(get_ledger),
):
    async with audited(db):
        return await ledger.approve(db, record_id, actor, organizer_id=current_user.id)


@router.post("/{record_id}/cancel", response_model=CommissionRecordResponse)
async def cancel_record(
    record_id: int,
    data: CancelRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    ledger: CommissionLedger = Depends(get_ledger),
):
    async with audited(db):
        return await ledger.cancel(db, record_id, actor, reason=data.reason, organizer_id=current_user.id)


@router.post("/{record_id}/mark-paid", response_model=CommissionRecordResponse)
async def mark_record_paid(
    record_id: int,
    data: MarkPaidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    actor: Actor = Depends(organizer_actor),
    ledger: CommissionLedger = Depends(get_ledger),
):
    """Pay a single record outside a payout batch."""
    async with audited(db):
        return await ledger.mark_paid(
            db,
            record_id,
            actor,
            payment_method=data.payment_method,
            payment_reference=data.payment_reference,
            organizer_id=current_user.id,
        )
