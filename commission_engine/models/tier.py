"""
Tier progression state per (agent, organizer) and its history.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Date,
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
    from commission_engine.models.commission_config import CommissionTier


class TierChangeType(str, Enum):
    INITIAL = "initial"
    PROMOTION = "promotion"
    DEMOTION = "demotion"
    RETAINED = "retained"


class TierProgression(Base, TimestampMixin):
    """
    Current tier and rolling sales volume of one agent for one organizer.

    This row is locked (SELECT ... FOR UPDATE) by every sale that touches
    the agent's volume.
    """

    __tablename__ = "tier_progressions"
    __table_args__ = (
        UniqueConstraint("agent_id", "organizer_id", name="uq_progression_agent_organizer"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    agent_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    organizer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    current_tier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_tiers.id", ondelete="SET NULL"),
        nullable=True,
    )
    current_tier_since: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    rolling_sales_volume: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    current_tier: Mapped[Optional["CommissionTier"]] = relationship("CommissionTier")
    history: Mapped[List["TierHistoryEntry"]] = relationship(
        "TierHistoryEntry",
        back_populates="progression",
        order_by="TierHistoryEntry.id",
    )

    def __repr__(self) -> str:
        return (
            f"<TierProgression(agent_id={self.agent_id}, organizer_id={self.organizer_id}, "
            f"tier_id={self.current_tier_id}, volume={self.rolling_sales_volume})>"
        )


class TierHistoryEntry(Base):
    """Append-only log of tier assignments."""

    __tablename__ = "tier_history_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    progression_id: Mapped[int] = mapped_column(
        ForeignKey("tier_progressions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_tiers.id", ondelete="SET NULL"),
        nullable=True,
    )
    tier_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    change_type: Mapped[TierChangeType] = mapped_column(
        SQLAlchemyEnum(
            TierChangeType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    promoted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    sales_volume_at_promotion: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    previous_tier_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    previous_tier_duration_days: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    progression: Mapped["TierProgression"] = relationship(
        "TierProgression",
        back_populates="history",
    )

    def __repr__(self) -> str:
        return f"<TierHistoryEntry(tier='{self.tier_name}', change={self.change_type})>"
