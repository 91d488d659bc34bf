"""
Daily and monthly commission caps.

A cap never rejects a sale; it only reduces the commission payable.
Check-and-accumulate happens on a locked running-total row per
(agent, organizer, period kind, period start), inside the caller's
transaction. The totals are a cache of the ledger: they are dropped
when the limit basis changes or a cap is lifted, and reseeded from the
ledger by the next capped sale.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AgentPermission,
    CommissionLimitCounter,
    CommissionRecord,
    LimitBasis,
    LimitPeriod,
    RecordKind,
)
from commission_engine.services.money import (
    ZERO,
    as_datetime,
    day_start,
    month_start,
    next_month_start,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass
class LimitResult:
    final_amount: Decimal
    was_clamped: bool = False
    limit_type: Optional[str] = None


def clamp(total: Decimal, proposed: Decimal, cap: Decimal) -> Decimal:
    """Largest amount that keeps total within cap (never negative)."""
    if total + proposed <= cap:
        return proposed
    return max(ZERO, cap - total)


def period_bounds(period: LimitPeriod, at: datetime) -> tuple[date, datetime, datetime]:
    if period == LimitPeriod.DAILY:
        start = day_start(at)
        return start, as_datetime(start), as_datetime(start + timedelta(days=1))
    start = month_start(at)
    return start, as_datetime(start), as_datetime(next_month_start(start))


class LimitEnforcer:
    """Clamps proposed commission against per-agent caps."""

    async def reset_counters(
        self,
        db: AsyncSession,
        organizer_id: int,
        agent_id: Optional[int] = None,
        periods: Optional[Sequence[LimitPeriod]] = None,
    ) -> int:
        """
        Drop running totals so the next capped sale reseeds them from the ledger.

        Needed whenever the totals stop describing the ledger: the limit
        basis changed, or a cap was lifted and sales went uncounted.
        """
        query = delete(CommissionLimitCounter).where(CommissionLimitCounter.organizer_id == organizer_id)
        if agent_id is not None:
            query = query.where(CommissionLimitCounter.agent_id == agent_id)
        if periods is not None:
            query = query.where(CommissionLimitCounter.period.in_(list(periods)))
        result = await db.execute(query)
        if result.rowcount:
            logger.info(
                f"Reset {result.rowcount} limit counters for organizer {organizer_id}"
                + (f" agent {agent_id}" if agent_id is not None else "")
            )
        return result.rowcount or 0

    async def _recorded_total(
        self,
        db: AsyncSession,
        permission: AgentPermission,
        window_start: datetime,
        window_end: datetime,
        basis: LimitBasis,
    ) -> Decimal:
        if basis == LimitBasis.NET:
            amount = CommissionRecord.net_amount
        else:
            amount = CommissionRecord.commission_amount + CommissionRecord.bonus_amount
        total = await db.scalar(
            select(func.coalesce(func.sum(amount), 0))
            .where(
                CommissionRecord.agent_id == permission.agent_id,
                CommissionRecord.organizer_id == permission.organizer_id,
                CommissionRecord.kind == RecordKind.COMMISSION,
                CommissionRecord.earned_at >= window_start,
                CommissionRecord.earned_at < window_end,
            )
        )
        return quantize(total or 0)

    async def _lock_counter(
        self,
        db: AsyncSession,
        permission: AgentPermission,
        period: LimitPeriod,
        at: datetime,
        basis: LimitBasis,
    ) -> CommissionLimitCounter:
        start, window_start, window_end = period_bounds(period, at)
        query = (
            select(CommissionLimitCounter)
            .where(
                CommissionLimitCounter.agent_id == permission.agent_id,
                CommissionLimitCounter.organizer_id == permission.organizer_id,
                CommissionLimitCounter.period == period,
                CommissionLimitCounter.period_start == start,
            )
            .with_for_update()
        )
        counter = (await db.execute(query)).scalar_one_or_none()
        if counter is not None:
            return counter

        # First sale in this window: seed from what the ledger already holds
        seeded = await self._recorded_total(db, permission, window_start, window_end, basis)
        try:
            async with db.begin_nested():
                counter = CommissionLimitCounter(
                    agent_id=permission.agent_id,
                    organizer_id=permission.organizer_id,
                    period=period,
                    period_start=start,
                    total=seeded,
                )
                db.add(counter)
                await db.flush()
        except IntegrityError:
            counter = (await db.execute(query)).scalar_one()
        return counter

    async def enforce(
        self,
        db: AsyncSession,
        permission: AgentPermission,
        proposed: Decimal,
        sale_timestamp: datetime,
        basis: LimitBasis = LimitBasis.GROSS,
    ) -> LimitResult:
        """
        Clamp proposed against the daily then monthly cap.

        Both caps are checked against their own running total; the smaller
        resulting amount wins and names the limit_type. The accepted amount
        is added to every capped window's running total.
        """
        proposed = to_decimal(proposed)
        caps = []
        if permission.max_daily_sales is not None:
            caps.append((LimitPeriod.DAILY, to_decimal(permission.max_daily_sales)))
        if permission.max_monthly_sales is not None:
            caps.append((LimitPeriod.MONTHLY, to_decimal(permission.max_monthly_sales)))

        if not caps:
            return LimitResult(final_amount=proposed)

        final = proposed
        limit_type = None
        counters = []
        for period, cap in caps:
            counter = await self._lock_counter(db, permission, period, sale_timestamp, basis)
            counters.append(counter)
            allowed = clamp(counter.total, proposed, cap)
            if allowed < final:
                final = allowed
                limit_type = period.value

        for counter in counters:
            counter.total = counter.total + final
        await db.flush()

        was_clamped = final < proposed
        if was_clamped:
            logger.warning(
                f"Commission clamped for agent {permission.agent_id}: "
                f"{proposed} -> {final} ({limit_type} cap)"
            )
        return LimitResult(final_amount=final, was_clamped=was_clamped, limit_type=limit_type)
