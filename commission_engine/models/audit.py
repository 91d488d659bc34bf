"""
Append-only audit trail for commission records.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, JSON, String, event
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base

if TYPE_CHECKING:
    from commission_engine.models.ledger import CommissionRecord


class AuditAction(str, Enum):
    """Types of auditable actions on a commission record."""
    RECORD_CREATED = "record_created"
    ADJUSTMENT_CREATED = "adjustment_created"
    APPROVED = "approved"
    MARKED_PAID = "marked_paid"
    DISPUTED = "disputed"
    DISPUTE_RESOLVED = "dispute_resolved"
    CANCELLED = "cancelled"
    ADDED_TO_BATCH = "added_to_batch"
    REMOVED_FROM_BATCH = "removed_from_batch"
    TRANSITION_REJECTED = "transition_rejected"


class CommissionAuditEntry(Base):
    """
    One immutable line of a record's audit trail.

    Entries are only ever inserted; the ORM refuses updates and deletes.
    """

    __tablename__ = "commission_audit_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("commission_records.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLAlchemyEnum(
            AuditAction,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    performed_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="user:<id> or system",
    )
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    succeeded: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    details: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Transition context (from/to state, amounts, references)",
    )
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
        comment="IPv4 or IPv6 address",
    )

    # Relationships
    record: Mapped["CommissionRecord"] = relationship(
        "CommissionRecord",
        back_populates="audit_entries",
    )

    def __repr__(self) -> str:
        return f"<CommissionAuditEntry(id={self.id}, record_id={self.record_id}, action={self.action})>"


@event.listens_for(CommissionAuditEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError("Audit entries are append-only")


@event.listens_for(CommissionAuditEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError("Audit entries are append-only")
