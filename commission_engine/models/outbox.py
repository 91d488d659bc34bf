"""
NotificationOutbox model for outgoing engine events.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Integer, JSON, String, Text, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base


class OutboxStatus(str, Enum):
    """Delivery status of an outgoing event."""
    PENDING = "pending"  # Waiting to be sent
    SENT = "sent"        # Successfully sent
    FAILED = "failed"    # Gave up after max attempts


class NotificationType(str, Enum):
    TIER_PROMOTED = "TierPromoted"
    PAYOUT_COMPLETED = "PayoutCompleted"
    DISPUTE_RESOLVED = "DisputeResolved"


class NotificationOutbox(Base):
    """
    Outgoing event queue for the notification subsystem.

    Rows are written in the same transaction as the ledger change that
    caused them and delivered later by the outbox worker, so delivery
    failures never touch ledger state.
    """

    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type: Mapped[NotificationType] = mapped_column(
        SQLAlchemyEnum(
            NotificationType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    status: Mapped[OutboxStatus] = mapped_column(
        SQLAlchemyEnum(
            OutboxStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=OutboxStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Error details if delivery failed",
    )
    recipient: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="user:<id> the event concerns",
    )
    claimed_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Delivery lease; other workers skip the row until it expires",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<NotificationOutbox(id={self.id}, type={self.event_type}, status={self.status})>"
