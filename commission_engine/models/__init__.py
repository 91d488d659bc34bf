"""
Database models for the commission engine.

All models are exported here for convenient imports:
    from commission_engine.models import CommissionRecord, PayoutBatch, etc.
"""

from commission_engine.models.attribution import AttributionMethod, SalesAttribution
from commission_engine.models.audit import AuditAction, CommissionAuditEntry
from commission_engine.models.base import Base, TimestampMixin
from commission_engine.models.commission_config import (
    AgentCommissionOverride,
    CommissionConfig,
    CommissionTier,
    ConfigStatus,
    LimitBasis,
    PayoutFrequency,
)
from commission_engine.models.dispute import (
    DisputeOutcome,
    DisputeStatus,
    DisputeType,
    PaymentDispute,
)
from commission_engine.models.ledger import (
    PAYABLE_STATUSES,
    TERMINAL_STATUSES,
    CommissionRecord,
    CommissionStatus,
    PaymentMethod,
    RateSource,
    RecordKind,
)
from commission_engine.models.limit_counter import CommissionLimitCounter, LimitPeriod
from commission_engine.models.outbox import NotificationOutbox, NotificationType, OutboxStatus
from commission_engine.models.payout import PayoutBatch, PayoutBatchStatus
from commission_engine.models.permission import (
    AgentPermission,
    CommissionType,
    PermissionStatus,
    TrackableLink,
)
from commission_engine.models.tier import TierChangeType, TierHistoryEntry, TierProgression
from commission_engine.models.user import User, UserRole

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # User
    "User",
    "UserRole",
    # Config
    "CommissionConfig",
    "CommissionTier",
    "AgentCommissionOverride",
    "ConfigStatus",
    "LimitBasis",
    "PayoutFrequency",
    # Permission
    "AgentPermission",
    "CommissionType",
    "PermissionStatus",
    "TrackableLink",
    # Attribution
    "SalesAttribution",
    "AttributionMethod",
    # Ledger
    "CommissionRecord",
    "CommissionStatus",
    "PaymentMethod",
    "RateSource",
    "RecordKind",
    "PAYABLE_STATUSES",
    "TERMINAL_STATUSES",
    # Audit
    "CommissionAuditEntry",
    "AuditAction",
    # Payouts
    "PayoutBatch",
    "PayoutBatchStatus",
    # Disputes
    "PaymentDispute",
    "DisputeType",
    "DisputeStatus",
    "DisputeOutcome",
    # Tiers
    "TierProgression",
    "TierHistoryEntry",
    "TierChangeType",
    # Limits
    "CommissionLimitCounter",
    "LimitPeriod",
    # Outbox
    "NotificationOutbox",
    "NotificationType",
    "OutboxStatus",
]
