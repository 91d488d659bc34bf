"""
SalesAttribution model: which agent caused which order.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base

if TYPE_CHECKING:
    from commission_engine.models.permission import AgentPermission, TrackableLink


class AttributionMethod(str, Enum):
    TRACKABLE_LINK = "trackable_link"
    PROMO_CODE = "promo_code"
    MANUAL = "manual"


class SalesAttribution(Base):
    """
    Immutable link between one order and one agent permission.

    order_id is unique: it is the idempotency key for at-least-once
    delivery of sale events.
    """

    __tablename__ = "sales_attributions"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("agent_permissions.id"),
        nullable=False,
        index=True,
    )
    trackable_link_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("trackable_links.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    attribution_method: Mapped[AttributionMethod] = mapped_column(
        SQLAlchemyEnum(
            AttributionMethod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    referrer_data: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    sale_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    commission_rate_used: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
    )
    attributed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    permission: Mapped["AgentPermission"] = relationship("AgentPermission")
    trackable_link: Mapped[Optional["TrackableLink"]] = relationship("TrackableLink")

    def __repr__(self) -> str:
        return f"<SalesAttribution(id={self.id}, order_id='{self.order_id}')>"
