"""
Agent sales permissions and their trackable links.

Both are projections of records owned by agent-permission management; the
engine keeps a local copy so rates and caps resolve inside its own
transactions.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from commission_engine.models.user import User


class CommissionType(str, Enum):
    """How an agent's commission is computed."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    TIERED = "tiered"


class PermissionStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class AgentPermission(Base, TimestampMixin):
    """
    Authorisation for one agent to sell for one organizer.

    max_daily_sales / max_monthly_sales cap the commission payable
    within the day / calendar month, not the tickets sold.
    """

    __tablename__ = "agent_permissions"
    __table_args__ = (
        UniqueConstraint("organizer_id", "agent_id", name="uq_permission_organizer_agent"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
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
    status: Mapped[PermissionStatus] = mapped_column(
        SQLAlchemyEnum(
            PermissionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=PermissionStatus.ACTIVE,
        nullable=False,
    )
    commission_type: Mapped[CommissionType] = mapped_column(
        SQLAlchemyEnum(
            CommissionType,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CommissionType.PERCENTAGE,
        nullable=False,
    )
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Agent's own percentage; NULL falls back to the config default",
    )
    commission_fixed_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    max_daily_sales: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Daily commission cap",
    )
    max_monthly_sales: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Monthly commission cap",
    )

    # Relationships
    agent: Mapped["User"] = relationship(
        "User",
        back_populates="agent_permissions",
        foreign_keys=[agent_id],
    )
    organizer: Mapped["User"] = relationship(
        "User",
        foreign_keys=[organizer_id],
    )
    links: Mapped[List["TrackableLink"]] = relationship(
        "TrackableLink",
        back_populates="permission",
    )

    @property
    def is_active(self) -> bool:
        return self.status == PermissionStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<AgentPermission(id={self.id}, agent_id={self.agent_id}, "
            f"organizer_id={self.organizer_id}, type={self.commission_type})>"
        )


class TrackableLink(Base, TimestampMixin):
    """Referral link handed out by an agent; carries conversion counters."""

    __tablename__ = "trackable_links"

    id: Mapped[int] = mapped_column(primary_key=True)
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("agent_permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    link_code: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    title: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Counters, only ever incremented in SQL
    current_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue_generated: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    commission_earned: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    permission: Mapped["AgentPermission"] = relationship(
        "AgentPermission",
        back_populates="links",
    )

    def __repr__(self) -> str:
        return f"<TrackableLink(id={self.id}, code='{self.link_code}')>"
