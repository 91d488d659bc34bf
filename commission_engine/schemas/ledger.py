"""Ledger, payout and dispute schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from commission_engine.models.audit import AuditAction
from commission_engine.models.dispute import DisputeOutcome, DisputeStatus, DisputeType
from commission_engine.models.ledger import CommissionStatus, PaymentMethod, RateSource, RecordKind
from commission_engine.models.payout import PayoutBatchStatus


# ── Records ───────────────────────────────────────────


class CommissionRecordResponse(BaseModel):
    id: int
    kind: RecordKind
    organizer_id: int
    agent_id: int
    permission_id: int
    attribution_id: Optional[int]
    adjusts_record_id: Optional[int]
    sale_amount: Decimal
    currency: str
    commission_rate: Decimal
    rate_source: Optional[RateSource]
    commission_amount: Decimal
    bonus_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    was_clamped: bool
    limit_type: Optional[str]
    status: CommissionStatus
    earned_at: datetime
    approved_at: Optional[datetime]
    payout_batch_id: Optional[int]
    payment_method: Optional[PaymentMethod]
    paid_at: Optional[datetime]
    notes: Optional[str]

    model_config = {"from_attributes": True}


class AuditEntryResponse(BaseModel):
    id: int
    action: AuditAction
    performed_by: str
    performed_at: datetime
    succeeded: bool
    details: Optional[Dict[str, Any]]

    model_config = {"from_attributes": True}


class CommissionRecordDetailResponse(CommissionRecordResponse):
    audit_trail: List[AuditEntryResponse] = []


class CommissionRecordListResponse(BaseModel):
    items: List[CommissionRecordResponse]
    total: int
    page: int
    per_page: int
    pages: int


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class MarkPaidRequest(BaseModel):
    payment_method: PaymentMethod
    payment_reference: Optional[str] = Field(None, max_length=100)


class AgentSummaryResponse(BaseModel):
    agent_id: int
    total_earned: Decimal
    pending_amount: Decimal
    approved_amount: Decimal
    paid_amount: Decimal
    disputed_amount: Decimal
    commission_count: int
    average_commission: Decimal


# ── Payouts ───────────────────────────────────────────


class PayoutBatchCreate(BaseModel):
    payment_method: PaymentMethod
    record_ids: List[int] = Field(..., min_length=1)
    batch_name: Optional[str] = Field(None, max_length=200)


class PayoutBatchProcess(BaseModel):
    payment_reference: Optional[str] = Field(None, max_length=100)


class PayoutBatchCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class PayoutBatchResponse(BaseModel):
    id: int
    organizer_id: int
    batch_name: str
    payment_method: PaymentMethod
    period_start: datetime
    period_end: datetime
    total_amount: Decimal
    record_count: int
    status: PayoutBatchStatus
    processed_at: Optional[datetime]
    processing_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class PayoutBatchDetailResponse(PayoutBatchResponse):
    records: List[CommissionRecordResponse] = []


# ── Disputes ──────────────────────────────────────────


class DisputeCreate(BaseModel):
    record_id: int
    dispute_type: DisputeType
    amount_disputed: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(None, max_length=2000)
    evidence: Optional[List[str]] = None


class DisputeResolve(BaseModel):
    outcome: DisputeOutcome
    resolution_amount: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=2000)


class DisputeResponse(BaseModel):
    id: int
    record_id: int
    agent_id: int
    dispute_type: DisputeType
    description: Optional[str]
    amount_disputed: Decimal
    evidence: Optional[List[str]]
    status: DisputeStatus
    record_status_at_open: str
    outcome: Optional[DisputeOutcome]
    resolution_amount: Optional[Decimal]
    resolution_notes: Optional[str]
    adjustment_record_id: Optional[int]
    resolved_at: Optional[datetime]

    model_config = {"from_attributes": True}
