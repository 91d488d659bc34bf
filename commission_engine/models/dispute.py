"""
PaymentDispute model.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from commission_engine.models.ledger import CommissionRecord


class DisputeType(str, Enum):
    AMOUNT_INCORRECT = "amount_incorrect"
    MISSING_SALES = "missing_sales"
    CALCULATION_ERROR = "calculation_error"
    PAYMENT_NOT_RECEIVED = "payment_not_received"
    OTHER = "other"


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class DisputeOutcome(str, Enum):
    """Resolution outcome, named after the record state it produces."""
    RESOLVED_PAID = "resolved_paid"
    RESOLVED_REJECTED = "resolved_rejected"


class PaymentDispute(Base, TimestampMixin):
    """Challenge against one commission record."""

    __tablename__ = "payment_disputes"

    id: Mapped[int] = mapped_column(primary_key=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("commission_records.id"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    dispute_type: Mapped[DisputeType] = mapped_column(
        SQLAlchemyEnum(
            DisputeType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    amount_disputed: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    evidence: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment="Evidence file references / notes",
    )
    status: Mapped[DisputeStatus] = mapped_column(
        SQLAlchemyEnum(
            DisputeStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=DisputeStatus.OPEN,
        nullable=False,
        index=True,
    )
    record_status_at_open: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    opened_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    outcome: Mapped[Optional[DisputeOutcome]] = mapped_column(
        SQLAlchemyEnum(
            DisputeOutcome,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    resolution_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    resolution_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    adjustment_record_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_records.id"),
        nullable=True,
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    record: Mapped["CommissionRecord"] = relationship(
        "CommissionRecord",
        foreign_keys=[record_id],
    )
    adjustment_record: Mapped[Optional["CommissionRecord"]] = relationship(
        "CommissionRecord",
        foreign_keys=[adjustment_record_id],
    )

    @property
    def is_open(self) -> bool:
        return self.status in (DisputeStatus.OPEN, DisputeStatus.INVESTIGATING)

    def __repr__(self) -> str:
        return f"<PaymentDispute(id={self.id}, record_id={self.record_id}, status={self.status})>"
