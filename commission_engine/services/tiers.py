"""
Tier progression tracking.

Rules:
- Rolling volume is the sum of attributed sales in the current calendar month
- Crossing a higher tier's min_sales_volume promotes immediately
- Demotion only happens at period rollover, never mid-period
- A tier table with gaps is an organizer misconfiguration and raises
  ConfigurationError instead of silently defaulting
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    CommissionConfig,
    CommissionTier,
    TierChangeType,
    TierHistoryEntry,
    TierProgression,
)
from commission_engine.services.errors import ConfigurationError
from commission_engine.services.money import (
    ZERO,
    ensure_utc,
    month_start,
    next_month_start,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass
class TierChange:
    """A tier assignment that was just recorded."""

    progression: TierProgression
    previous_tier: Optional[CommissionTier]
    new_tier: CommissionTier
    change_type: TierChangeType
    history_entry: TierHistoryEntry


@dataclass
class TierUpdate:
    """Outcome of recording a sale against an agent's volume."""

    progression: TierProgression
    tier: CommissionTier
    change: Optional[TierChange] = None

    @property
    def promoted(self) -> bool:
        return self.change is not None and self.change.change_type == TierChangeType.PROMOTION


def validate_tier_table(tiers: Sequence) -> None:
    """
    Check that tiers form contiguous half-open bands starting at zero.

    Works on ORM tiers and on request schemas alike (duck-typed on
    min_sales_volume / max_sales_volume).
    """
    if not tiers:
        raise ConfigurationError("Tier system enabled but no tiers are configured")

    ordered = sorted(tiers, key=lambda t: to_decimal(t.min_sales_volume))
    if to_decimal(ordered[0].min_sales_volume) != ZERO:
        raise ConfigurationError("Lowest tier must start at a sales volume of 0")

    for lower, upper in zip(ordered, ordered[1:]):
        if lower.max_sales_volume is None:
            raise ConfigurationError(f"Only the highest tier may be unbounded ('{lower.name}' is not highest)")
        if to_decimal(lower.max_sales_volume) != to_decimal(upper.min_sales_volume):
            raise ConfigurationError(
                f"Tiers '{lower.name}' and '{upper.name}' are not contiguous "
                f"({lower.max_sales_volume} != {upper.min_sales_volume})"
            )

    for tier in ordered:
        if tier.max_sales_volume is not None and to_decimal(tier.max_sales_volume) <= to_decimal(tier.min_sales_volume):
            raise ConfigurationError(f"Tier '{tier.name}' has an empty volume range")

    if ordered[-1].max_sales_volume is not None:
        raise ConfigurationError("Highest tier must have no upper bound")


def tier_for_volume(tiers: Sequence[CommissionTier], volume: Decimal) -> CommissionTier:
    """Find the tier whose [min, max) band contains volume."""
    for tier in tiers:
        if tier.contains(volume):
            return tier
    raise ConfigurationError(f"No commission tier covers a sales volume of {volume}")


class TierProgressionTracker:
    """Maintains each agent's current tier per organizer."""

    async def load_tiers(self, db: AsyncSession, config: CommissionConfig) -> List[CommissionTier]:
        result = await db.execute(
            select(CommissionTier)
            .where(CommissionTier.config_id == config.id)
            .order_by(CommissionTier.min_sales_volume)
        )
        tiers = list(result.scalars().all())
        if not tiers:
            raise ConfigurationError(f"Commission config #{config.id} has tiers enabled but no tiers")
        return tiers

    async def get_progression(
        self,
        db: AsyncSession,
        agent_id: int,
        organizer_id: int,
        lock: bool = False,
    ) -> Optional[TierProgression]:
        query = select(TierProgression).where(
            TierProgression.agent_id == agent_id,
            TierProgression.organizer_id == organizer_id,
        )
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_history(self, db: AsyncSession, progression: TierProgression) -> List[TierHistoryEntry]:
        result = await db.execute(
            select(TierHistoryEntry)
            .where(TierHistoryEntry.progression_id == progression.id)
            .order_by(TierHistoryEntry.id)
        )
        return list(result.scalars().all())

    async def _get_or_create(
        self,
        db: AsyncSession,
        agent_id: int,
        organizer_id: int,
        tiers: List[CommissionTier],
        at: datetime,
    ) -> TierProgression:
        progression = await self.get_progression(db, agent_id, organizer_id, lock=True)
        if progression:
            return progression

        initial = tier_for_volume(tiers, ZERO)
        try:
            async with db.begin_nested():
                progression = TierProgression(
                    agent_id=agent_id,
                    organizer_id=organizer_id,
                    current_tier_id=initial.id,
                    current_tier_since=at,
                    period_start=month_start(at),
                    rolling_sales_volume=ZERO,
                )
                db.add(progression)
                await db.flush()
                db.add(TierHistoryEntry(
                    progression_id=progression.id,
                    tier_id=initial.id,
                    tier_name=initial.name,
                    change_type=TierChangeType.INITIAL,
                    promoted_at=at,
                    sales_volume_at_promotion=ZERO,
                ))
                await db.flush()
        except IntegrityError:
            # Another transaction created it first
            progression = await self.get_progression(db, agent_id, organizer_id, lock=True)
            if progression is None:
                raise
        return progression

    async def tier_held_at(
        self,
        db: AsyncSession,
        progression: TierProgression,
        tiers: List[CommissionTier],
        at: datetime,
    ) -> CommissionTier:
        """Tier recorded in the history as in force at `at`."""
        entry = await db.scalar(
            select(TierHistoryEntry)
            .where(
                TierHistoryEntry.progression_id == progression.id,
                TierHistoryEntry.promoted_at <= at,
            )
            .order_by(TierHistoryEntry.promoted_at.desc(), TierHistoryEntry.id.desc())
            .limit(1)
        )
        tier = self._tier_by_id(tiers, entry.tier_id) if entry is not None else None
        return tier or tier_for_volume(tiers, ZERO)

    def _tier_by_id(self, tiers: List[CommissionTier], tier_id: Optional[int]) -> Optional[CommissionTier]:
        for tier in tiers:
            if tier.id == tier_id:
                return tier
        return None

    def _append_change(
        self,
        db: AsyncSession,
        progression: TierProgression,
        previous: Optional[CommissionTier],
        new_tier: CommissionTier,
        change_type: TierChangeType,
        at: datetime,
        volume: Decimal,
    ) -> TierChange:
        since = ensure_utc(progression.current_tier_since)
        entry = TierHistoryEntry(
            progression_id=progression.id,
            tier_id=new_tier.id,
            tier_name=new_tier.name,
            change_type=change_type,
            promoted_at=at,
            sales_volume_at_promotion=volume,
            previous_tier_name=previous.name if previous else None,
            previous_tier_duration_days=max((ensure_utc(at) - since).days, 0),
        )
        db.add(entry)
        progression.current_tier_id = new_tier.id
        progression.current_tier_since = at
        return TierChange(
            progression=progression,
            previous_tier=previous,
            new_tier=new_tier,
            change_type=change_type,
            history_entry=entry,
        )

    def tier_after_rollover(
        self,
        progression: TierProgression,
        tiers: List[CommissionTier],
        at: datetime,
    ) -> CommissionTier:
        """Tier the agent holds in at's period, given the last finished period."""
        new_period = month_start(at)
        if new_period == next_month_start(progression.period_start):
            finished_volume = progression.rolling_sales_volume
        else:
            # Skipped at least one whole month with no sales
            finished_volume = ZERO
        return tier_for_volume(tiers, finished_volume)

    def _rollover(
        self,
        db: AsyncSession,
        progression: TierProgression,
        tiers: List[CommissionTier],
        at: datetime,
    ) -> Optional[TierChange]:
        new_period = month_start(at)
        if progression.period_start >= new_period:
            return None

        finished_volume = progression.rolling_sales_volume
        current = self._tier_by_id(tiers, progression.current_tier_id)
        target = self.tier_after_rollover(progression, tiers, at)

        progression.period_start = new_period
        progression.rolling_sales_volume = ZERO

        if current is not None and current.id == target.id:
            return None

        if current is None or target.min_sales_volume > current.min_sales_volume:
            change_type = TierChangeType.PROMOTION
        else:
            change_type = TierChangeType.DEMOTION

        change = self._append_change(db, progression, current, target, change_type, at, finished_volume)
        logger.info(
            f"Tier rollover: agent {progression.agent_id} organizer {progression.organizer_id} "
            f"{current.name if current else '-'} -> {target.name} ({change_type.value})"
        )
        return change

    async def record_sale(
        self,
        db: AsyncSession,
        config: CommissionConfig,
        agent_id: int,
        organizer_id: int,
        sale_amount: Decimal,
        at: datetime,
    ) -> TierUpdate:
        """
        Add an attributed sale to the agent's rolling volume.

        Must run inside the same transaction as the attribution insert so
        a rolled-back sale never contributes to a promotion.
        """
        tiers = await self.load_tiers(db, config)
        progression = await self._get_or_create(db, agent_id, organizer_id, tiers, at)
        self._rollover(db, progression, tiers, at)

        if month_start(at) < progression.period_start:
            # Late delivery of a sale from a closed period
            tier = await self.tier_held_at(db, progression, tiers, at)
            logger.warning(
                f"Late sale for agent {agent_id} organizer {organizer_id} dated {at:%Y-%m-%d}: "
                f"period {progression.period_start} volume left unchanged, tier {tier.name}"
            )
            await db.flush()
            return TierUpdate(progression=progression, tier=tier, change=None)

        progression.rolling_sales_volume = progression.rolling_sales_volume + to_decimal(sale_amount)
        volume = progression.rolling_sales_volume

        current = self._tier_by_id(tiers, progression.current_tier_id)
        target = tier_for_volume(tiers, volume)

        change = None
        if current is None or target.min_sales_volume > current.min_sales_volume:
            change = self._append_change(
                db, progression, current, target, TierChangeType.PROMOTION, at, volume,
            )
            current = target
            logger.info(
                f"Tier promotion: agent {agent_id} organizer {organizer_id} -> {target.name} "
                f"at volume {volume}"
            )

        await db.flush()
        return TierUpdate(progression=progression, tier=current, change=change)

    async def record_refund(
        self,
        db: AsyncSession,
        config: CommissionConfig,
        agent_id: int,
        organizer_id: int,
        refund_amount: Decimal,
        sale_at: datetime,
        at: datetime,
    ) -> Optional[TierProgression]:
        """
        Remove refunded volume from the current period.

        Never demotes; a refund of a sale from an earlier period leaves the
        current period untouched.
        """
        progression = await self.get_progression(db, agent_id, organizer_id, lock=True)
        if progression is None:
            return None

        tiers = await self.load_tiers(db, config)
        self._rollover(db, progression, tiers, at)

        if month_start(sale_at) != progression.period_start:
            await db.flush()
            return progression

        remaining = progression.rolling_sales_volume - to_decimal(refund_amount)
        progression.rolling_sales_volume = max(remaining, ZERO)
        await db.flush()
        return progression

    async def current_tier(
        self,
        db: AsyncSession,
        config: CommissionConfig,
        agent_id: int,
        organizer_id: int,
        at: datetime,
    ) -> CommissionTier:
        """Tier in force for a sale at `at`, without mutating state."""
        tiers = await self.load_tiers(db, config)
        progression = await self.get_progression(db, agent_id, organizer_id)
        if progression is None:
            return tier_for_volume(tiers, ZERO)

        if progression.period_start < month_start(at):
            return self.tier_after_rollover(progression, tiers, at)
        if month_start(at) < progression.period_start:
            return await self.tier_held_at(db, progression, tiers, at)

        current = self._tier_by_id(tiers, progression.current_tier_id)
        if current is None:
            return tier_for_volume(tiers, progression.rolling_sales_volume)
        return current

    async def rollover_periods(self, db: AsyncSession, as_of: datetime) -> int:
        """
        Roll every stale progression into as_of's period.

        Idempotent: progressions already in the current period are skipped.
        """
        period = month_start(as_of)
        result = await db.execute(
            select(TierProgression)
            .where(TierProgression.period_start < period)
            .order_by(TierProgression.id)
            .with_for_update()
        )
        progressions = result.scalars().all()

        configs = {}
        rolled = 0
        for progression in progressions:
            config = configs.get(progression.organizer_id)
            if config is None:
                config = await db.scalar(
                    select(CommissionConfig).where(CommissionConfig.organizer_id == progression.organizer_id)
                )
                configs[progression.organizer_id] = config
            if config is None:
                logger.warning(f"Skipping rollover for progression {progression.id}: organizer has no config")
                continue

            tiers = await self.load_tiers(db, config)
            self._rollover(db, progression, tiers, as_of)
            rolled += 1

        await db.flush()
        logger.info(f"Tier rollover to {period}: {rolled} progressions rolled")
        return rolled

    async def progression_view(
        self,
        db: AsyncSession,
        config: CommissionConfig,
        agent_id: int,
        organizer_id: int,
        at: datetime,
    ) -> dict:
        """Current tier, next tier and progress towards it, as of `at`."""
        tiers = await self.load_tiers(db, config)
        progression = await self.get_progression(db, agent_id, organizer_id)

        if progression is None:
            current = tier_for_volume(tiers, ZERO)
            volume = ZERO
            history = []
        elif progression.period_start < month_start(at):
            current = self.tier_after_rollover(progression, tiers, at)
            volume = ZERO
            history = await self.get_history(db, progression)
        else:
            current = self._tier_by_id(tiers, progression.current_tier_id) or tier_for_volume(
                tiers, progression.rolling_sales_volume
            )
            volume = progression.rolling_sales_volume
            history = await self.get_history(db, progression)

        higher = [t for t in tiers if t.min_sales_volume > current.min_sales_volume]
        next_tier = higher[0] if higher else None

        if next_tier is None:
            progress = Decimal("100.00")
        else:
            span = next_tier.min_sales_volume - current.min_sales_volume
            progress = (volume - current.min_sales_volume) / span * 100
            progress = quantize(min(max(progress, ZERO), Decimal("100")))

        return {
            "agent_id": agent_id,
            "organizer_id": organizer_id,
            "current_tier": current,
            "next_tier": next_tier,
            "rolling_sales_volume": volume,
            "period_start": progression.period_start if progression else None,
            "current_tier_since": progression.current_tier_since if progression else None,
            "progress_to_next": progress,
            "history": history,
        }
