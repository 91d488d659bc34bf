"""
PayoutBatch model.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, TimestampMixin
from commission_engine.models.ledger import PaymentMethod

if TYPE_CHECKING:
    from commission_engine.models.ledger import CommissionRecord


class PayoutBatchStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutBatch(Base, TimestampMixin):
    """
    Group of approved records paid together.

    total_amount and record_count are fixed at creation; later disputes
    settle through adjustment records, never through the batch.
    """

    __tablename__ = "payout_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    organizer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    batch_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLAlchemyEnum(
            PaymentMethod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    record_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    status: Mapped[PayoutBatchStatus] = mapped_column(
        SQLAlchemyEnum(
            PayoutBatchStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=PayoutBatchStatus.DRAFT,
        nullable=False,
        index=True,
    )
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    processing_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    records: Mapped[List["CommissionRecord"]] = relationship(
        "CommissionRecord",
        back_populates="payout_batch",
        order_by="CommissionRecord.id",
    )

    def __repr__(self) -> str:
        return f"<PayoutBatch(id={self.id}, total={self.total_amount}, status={self.status})>"
