"""
Commission configuration: per-organizer plan, volume tiers and agent overrides.
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
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from commission_engine.models.user import User


class ConfigStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PayoutFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class LimitBasis(str, Enum):
    """Which amount daily/monthly caps are measured against."""
    GROSS = "gross"
    NET = "net"


class CommissionConfig(Base, TimestampMixin):
    """
    Commission plan of one organizer.

    Created when the organizer opts into commission-based selling and
    mutated only by that organizer. Rates are percentages (6.5 == 6.5%).
    """

    __tablename__ = "commission_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organizer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="Standard Commission Plan",
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    default_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("5.00"),
    )
    tier_system_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    individual_overrides_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    status: Mapped[ConfigStatus] = mapped_column(
        SQLAlchemyEnum(
            ConfigStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ConfigStatus.ACTIVE,
        nullable=False,
    )

    # Payout settings
    payout_frequency: Mapped[PayoutFrequency] = mapped_column(
        SQLAlchemyEnum(
            PayoutFrequency,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=PayoutFrequency.BIWEEKLY,
        nullable=False,
    )
    minimum_payout: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )
    hold_period_days: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    tax_withholding_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    tax_withholding_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Flat withholding percentage applied to gross commission",
    )
    limit_basis: Mapped[LimitBasis] = mapped_column(
        SQLAlchemyEnum(
            LimitBasis,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=LimitBasis.GROSS,
        nullable=False,
    )

    # Relationships
    organizer: Mapped["User"] = relationship("User")
    tiers: Mapped[List["CommissionTier"]] = relationship(
        "CommissionTier",
        back_populates="config",
        order_by="CommissionTier.min_sales_volume",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CommissionConfig(id={self.id}, organizer_id={self.organizer_id})>"


class CommissionTier(Base):
    """
    Sales volume band [min_sales_volume, max_sales_volume).

    The highest tier has no upper bound (max_sales_volume is NULL).
    """

    __tablename__ = "commission_tiers"
    __table_args__ = (
        UniqueConstraint("config_id", "min_sales_volume", name="uq_tier_config_min"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    config_id: Mapped[int] = mapped_column(
        ForeignKey("commission_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    min_sales_volume: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    max_sales_volume: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
    )
    bonus_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )
    color: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    config: Mapped["CommissionConfig"] = relationship(
        "CommissionConfig",
        back_populates="tiers",
    )

    def contains(self, volume: Decimal) -> bool:
        if volume < self.min_sales_volume:
            return False
        return self.max_sales_volume is None or volume < self.max_sales_volume

    def __repr__(self) -> str:
        return f"<CommissionTier(id={self.id}, name='{self.name}', rate={self.commission_rate})>"


class AgentCommissionOverride(Base):
    """
    Explicit rate for one agent, optionally scoped to one event.

    Valid for [start_date, end_date); an open end_date never expires.
    """

    __tablename__ = "agent_commission_overrides"

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
    event_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    override_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AgentCommissionOverride(id={self.id}, agent_id={self.agent_id}, "
            f"event_id={self.event_id}, rate={self.override_rate})>"
        )
