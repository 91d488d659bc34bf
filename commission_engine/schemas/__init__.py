"""Pydantic schemas for request/response validation."""

from commission_engine.schemas.auth import CurrentUserResponse, LoginRequest, LoginResponse
from commission_engine.schemas.commission import (
    CommissionConfigResponse,
    CommissionConfigUpdate,
    LinkCreate,
    LinkResponse,
    OverrideCreate,
    OverrideResponse,
    PermissionResponse,
    PermissionUpsert,
    TierInput,
    TierResponse,
    TierTableUpdate,
)
from commission_engine.schemas.ledger import (
    AgentSummaryResponse,
    AuditEntryResponse,
    CancelRequest,
    CommissionRecordDetailResponse,
    CommissionRecordListResponse,
    CommissionRecordResponse,
    DisputeCreate,
    DisputeResolve,
    DisputeResponse,
    MarkPaidRequest,
    PayoutBatchCancel,
    PayoutBatchCreate,
    PayoutBatchDetailResponse,
    PayoutBatchProcess,
    PayoutBatchResponse,
)
from commission_engine.schemas.sales import (
    RefundProcessedResponse,
    SaleCompletedEvent,
    SaleProcessedResponse,
    SaleRefundedEvent,
)
from commission_engine.schemas.tier import TierHistoryResponse, TierProgressionResponse

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "CurrentUserResponse",
    # Commission plan
    "CommissionConfigUpdate",
    "CommissionConfigResponse",
    "TierInput",
    "TierTableUpdate",
    "TierResponse",
    "OverrideCreate",
    "OverrideResponse",
    "PermissionUpsert",
    "PermissionResponse",
    "LinkCreate",
    "LinkResponse",
    # Sales
    "SaleCompletedEvent",
    "SaleRefundedEvent",
    "SaleProcessedResponse",
    "RefundProcessedResponse",
    # Ledger
    "CommissionRecordResponse",
    "CommissionRecordDetailResponse",
    "CommissionRecordListResponse",
    "AuditEntryResponse",
    "CancelRequest",
    "MarkPaidRequest",
    "AgentSummaryResponse",
    # Payouts
    "PayoutBatchCancel",
    "PayoutBatchCreate",
    "PayoutBatchProcess",
    "PayoutBatchResponse",
    "PayoutBatchDetailResponse",
    # Disputes
    "DisputeCreate",
    "DisputeResolve",
    "DisputeResponse",
    # Tiers
    "TierHistoryResponse",
    "TierProgressionResponse",
]
