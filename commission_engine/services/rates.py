"""
Commission rate resolution.

Precedence for a single sale:
- Active agent override (event-scoped beats general, then newest)
- Current tier rate, with the tier bonus computed as a separate amount
- Permission / config default

Each commission_type has its own branch; fixed_amount permissions are a
contracted flat fee and never take the tier branch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AgentCommissionOverride,
    AgentPermission,
    CommissionConfig,
    CommissionTier,
    CommissionType,
    RateSource,
)
from commission_engine.services.errors import ConfigurationError
from commission_engine.services.money import (
    ZERO,
    cents_to_amount,
    ensure_utc,
    percentage_of_cents,
    quantize,
    to_cents,
    to_decimal,
)
from commission_engine.services.tiers import TierProgressionTracker

logger = logging.getLogger(__name__)


@dataclass
class RateResolution:
    """Effective rate for one sale and the amounts it produces."""

    rate: Decimal
    source: RateSource
    commission_amount: Decimal
    bonus_amount: Decimal = ZERO
    fixed_amount: Optional[Decimal] = None
    override_id: Optional[int] = None
    tier_details: Optional[dict] = field(default=None)

    @property
    def gross_amount(self) -> Decimal:
        return self.commission_amount + self.bonus_amount


def tier_details(tier: CommissionTier) -> dict:
    return {
        "tier_id": tier.id,
        "name": tier.name,
        "commission_rate": str(tier.commission_rate),
        "bonus_percentage": str(tier.bonus_percentage) if tier.bonus_percentage is not None else None,
    }


def select_override(
    overrides: List[AgentCommissionOverride],
    event_id: Optional[str],
    sale_timestamp: datetime,
) -> Optional[AgentCommissionOverride]:
    """
    Pick the override in force for a sale.

    Candidates must cover sale_timestamp with [start_date, end_date) and be
    either general or scoped to this event. Most specific wins, then the
    most recently created, then the highest id.
    """
    at = ensure_utc(sale_timestamp)
    matching = []
    for override in overrides:
        if ensure_utc(override.start_date) > at:
            continue
        if override.end_date is not None and ensure_utc(override.end_date) <= at:
            continue
        if override.event_id is not None and override.event_id != event_id:
            continue
        matching.append(override)

    if not matching:
        return None

    return max(
        matching,
        key=lambda o: (o.event_id is not None, ensure_utc(o.created_at), o.id),
    )


class RateResolver:
    """Determines the effective commission rate for a sale."""

    def __init__(self, tracker: Optional[TierProgressionTracker] = None):
        self.tracker = tracker or TierProgressionTracker()

    async def find_override(
        self,
        db: AsyncSession,
        permission: AgentPermission,
        event_id: Optional[str],
        sale_timestamp: datetime,
    ) -> Optional[AgentCommissionOverride]:
        query = select(AgentCommissionOverride).where(
            AgentCommissionOverride.organizer_id == permission.organizer_id,
            AgentCommissionOverride.agent_id == permission.agent_id,
        )
        if event_id is None:
            query = query.where(AgentCommissionOverride.event_id.is_(None))
        else:
            query = query.where(
                or_(
                    AgentCommissionOverride.event_id.is_(None),
                    AgentCommissionOverride.event_id == event_id,
                )
            )
        result = await db.execute(query)
        return select_override(list(result.scalars().all()), event_id, sale_timestamp)

    def uses_tiers(self, permission: AgentPermission, config: CommissionConfig) -> bool:
        if permission.commission_type == CommissionType.FIXED_AMOUNT:
            return False
        return config.tier_system_enabled or permission.commission_type == CommissionType.TIERED

    async def resolve(
        self,
        db: AsyncSession,
        permission: AgentPermission,
        config: CommissionConfig,
        sale_amount: Decimal,
        event_id: Optional[str],
        sale_timestamp: datetime,
        tier: Optional[CommissionTier] = None,
    ) -> RateResolution:
        """
        Resolve rate, source and unrounded-until-final amounts.

        `tier` is the tier already established for this sale (the engine
        passes the tier after counting the sale); when omitted it is looked
        up from the tracker without mutating progression state.
        """
        sale_cents = to_cents(sale_amount)

        # 1. Override
        if config.individual_overrides_enabled:
            override = await self.find_override(db, permission, event_id, sale_timestamp)
            if override is not None:
                return RateResolution(
                    rate=to_decimal(override.override_rate),
                    source=RateSource.OVERRIDE,
                    commission_amount=cents_to_amount(
                        percentage_of_cents(sale_cents, override.override_rate)
                    ),
                    override_id=override.id,
                )

        # 2. Tier
        if self.uses_tiers(permission, config):
            if tier is None:
                tier = await self.tracker.current_tier(
                    db, config, permission.agent_id, permission.organizer_id, sale_timestamp,
                )
            bonus = ZERO
            if tier.bonus_percentage:
                bonus = cents_to_amount(percentage_of_cents(sale_cents, tier.bonus_percentage))
            return RateResolution(
                rate=to_decimal(tier.commission_rate),
                source=RateSource.TIER,
                commission_amount=cents_to_amount(
                    percentage_of_cents(sale_cents, tier.commission_rate)
                ),
                bonus_amount=bonus,
                tier_details=tier_details(tier),
            )

        # 3. Default, one branch per commission type
        if permission.commission_type == CommissionType.FIXED_AMOUNT:
            if permission.commission_fixed_amount is None:
                raise ConfigurationError(
                    f"Permission #{permission.id} is fixed_amount but has no fixed amount"
                )
            fixed = quantize(permission.commission_fixed_amount)
            return RateResolution(
                rate=ZERO,
                source=RateSource.DEFAULT,
                commission_amount=fixed,
                fixed_amount=fixed,
            )

        if permission.commission_type == CommissionType.PERCENTAGE and permission.commission_rate is not None:
            rate = to_decimal(permission.commission_rate)
        else:
            rate = to_decimal(config.default_rate)

        return RateResolution(
            rate=rate,
            source=RateSource.DEFAULT,
            commission_amount=cents_to_amount(percentage_of_cents(sale_cents, rate)),
        )
