"""
Commission ledger model.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from commission_engine.models.attribution import SalesAttribution
    from commission_engine.models.audit import CommissionAuditEntry
    from commission_engine.models.payout import PayoutBatch
    from commission_engine.models.user import User


class CommissionStatus(str, Enum):
    """Lifecycle of a commission record."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    DISPUTED = "disputed"
    RESOLVED_PAID = "resolved_paid"
    RESOLVED_REJECTED = "resolved_rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    CommissionStatus.PAID,
    CommissionStatus.RESOLVED_REJECTED,
    CommissionStatus.CANCELLED,
})

# Records a payout batch may contain
PAYABLE_STATUSES = frozenset({
    CommissionStatus.APPROVED,
    CommissionStatus.RESOLVED_PAID,
})


class RecordKind(str, Enum):
    COMMISSION = "commission"
    ADJUSTMENT = "adjustment"


class RateSource(str, Enum):
    """Which rule produced the commission rate."""
    OVERRIDE = "override"
    TIER = "tier"
    DEFAULT = "default"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CHECK = "check"
    DIGITAL_WALLET = "digital_wallet"


class CommissionRecord(Base, TimestampMixin):
    """
    Payable unit of the commission ledger.

    Once paid, a record is never mutated again; corrections arrive as
    ADJUSTMENT records pointing back through adjusts_record_id.
    """

    __tablename__ = "commission_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[RecordKind] = mapped_column(
        SQLAlchemyEnum(
            RecordKind,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=RecordKind.COMMISSION,
        nullable=False,
    )
    organizer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("agent_permissions.id"),
        nullable=False,
    )
    attribution_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sales_attributions.id"),
        nullable=True,
        unique=True,
    )
    adjusts_record_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_records.id"),
        nullable=True,
        index=True,
    )

    # Amounts
    sale_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    rate_source: Mapped[Optional[RateSource]] = mapped_column(
        SQLAlchemyEnum(
            RateSource,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    bonus_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    was_clamped: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    limit_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    # Lifecycle
    status: Mapped[CommissionStatus] = mapped_column(
        SQLAlchemyEnum(
            CommissionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CommissionStatus.PENDING,
        nullable=False,
        index=True,
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    approved_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    payout_batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payout_batches.id"),
        nullable=True,
        index=True,
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLAlchemyEnum(
            PaymentMethod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Relationships
    agent: Mapped["User"] = relationship("User", foreign_keys=[agent_id])
    attribution: Mapped[Optional["SalesAttribution"]] = relationship("SalesAttribution")
    payout_batch: Mapped[Optional["PayoutBatch"]] = relationship(
        "PayoutBatch",
        back_populates="records",
    )
    audit_entries: Mapped[List["CommissionAuditEntry"]] = relationship(
        "CommissionAuditEntry",
        back_populates="record",
        order_by="CommissionAuditEntry.id",
    )

    @property
    def gross_amount(self) -> Decimal:
        return self.commission_amount + self.bonus_amount

    def __repr__(self) -> str:
        return (
            f"<CommissionRecord(id={self.id}, agent_id={self.agent_id}, "
            f"net={self.net_amount}, status={self.status})>"
        )
