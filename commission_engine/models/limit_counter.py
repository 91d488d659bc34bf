"""
Running commission totals used to enforce daily/monthly caps.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base, TimestampMixin


class LimitPeriod(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


class CommissionLimitCounter(Base, TimestampMixin):
    """
    Commission already recorded for an agent within one day or month.

    One row per (agent, organizer, period kind, period start); the row is
    the lock target for check-and-accumulate.
    """

    __tablename__ = "commission_limit_counters"
    __table_args__ = (
        UniqueConstraint(
            "agent_id",
            "organizer_id",
            "period",
            "period_start",
            name="uq_limit_counter_window",
        ),
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
    )
    period: Mapped[LimitPeriod] = mapped_column(
        SQLAlchemyEnum(
            LimitPeriod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<CommissionLimitCounter(agent_id={self.agent_id}, period={self.period}, "
            f"start={self.period_start}, total={self.total})>"
        )
