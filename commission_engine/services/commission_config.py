"""
Organizer-side commission configuration: plan, tier table, overrides,
agent permissions and trackable links.
"""

import logging
import secrets
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AgentCommissionOverride,
    AgentPermission,
    CommissionConfig,
    CommissionTier,
    LimitPeriod,
    TierProgression,
    TrackableLink,
    User,
    UserRole,
)
from commission_engine.schemas.commission import (
    CommissionConfigUpdate,
    LinkCreate,
    OverrideCreate,
    PermissionUpsert,
    TierInput,
)
from commission_engine.services.errors import ConfigurationError, NotFoundError
from commission_engine.services.limits import LimitEnforcer
from commission_engine.services.tiers import tier_for_volume, validate_tier_table

logger = logging.getLogger(__name__)


async def get_config(db: AsyncSession, organizer_id: int, lock: bool = False) -> CommissionConfig:
    query = select(CommissionConfig).where(CommissionConfig.organizer_id == organizer_id)
    if lock:
        query = query.with_for_update()
    config = (await db.execute(query)).scalar_one_or_none()
    if config is None:
        raise NotFoundError(f"Organizer {organizer_id} has no commission configuration")
    return config


async def list_tiers(db: AsyncSession, config: CommissionConfig) -> List[CommissionTier]:
    result = await db.execute(
        select(CommissionTier)
        .where(CommissionTier.config_id == config.id)
        .order_by(CommissionTier.min_sales_volume)
    )
    return list(result.scalars().all())


async def upsert_config(
    db: AsyncSession,
    organizer_id: int,
    data: CommissionConfigUpdate,
) -> CommissionConfig:
    """
    Create the organizer's plan on first call, update it afterwards.

    Enabling the tier system requires a valid tier table to exist already.
    """
    config = await db.scalar(
        select(CommissionConfig).where(CommissionConfig.organizer_id == organizer_id).with_for_update()
    )
    created = config is None
    if created:
        config = CommissionConfig(organizer_id=organizer_id)
        db.add(config)
    previous_basis = config.limit_basis

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(config, field, value)

    if config.tax_withholding_enabled and config.tax_withholding_rate is None:
        raise ConfigurationError("Tax withholding is enabled but no withholding rate is set")

    await db.flush()

    if not created and config.limit_basis != previous_basis:
        # Running totals were accumulated on the old basis
        await LimitEnforcer().reset_counters(db, organizer_id)

    if config.tier_system_enabled:
        validate_tier_table(await list_tiers(db, config))

    logger.info(f"Commission config {'created' if created else 'updated'} for organizer {organizer_id}")
    return config


async def replace_tiers(
    db: AsyncSession,
    config: CommissionConfig,
    tiers: Sequence[TierInput],
) -> List[CommissionTier]:
    """
    Replace the whole tier table after validating it is contiguous.

    Existing progressions are re-pointed to the new tier of the same name,
    or to the tier matching their rolling volume.
    """
    validate_tier_table(tiers)

    previous = {t.id: t.name for t in await list_tiers(db, config)}
    result = await db.execute(
        select(TierProgression).where(TierProgression.organizer_id == config.organizer_id).with_for_update()
    )
    progressions = result.scalars().all()
    previous_names = {p.id: previous.get(p.current_tier_id) for p in progressions}

    await db.execute(
        delete(CommissionTier)
        .where(CommissionTier.config_id == config.id)
        .execution_options(synchronize_session=False)
    )
    await db.flush()

    new_tiers = []
    for tier in sorted(tiers, key=lambda t: t.min_sales_volume):
        row = CommissionTier(config_id=config.id, **tier.model_dump())
        db.add(row)
        new_tiers.append(row)
    await db.flush()

    by_name = {t.name: t for t in new_tiers}
    for progression in progressions:
        match = by_name.get(previous_names[progression.id])
        if match is None:
            match = tier_for_volume(new_tiers, progression.rolling_sales_volume)
        progression.current_tier_id = match.id
    await db.flush()

    logger.info(f"Tier table replaced for organizer {config.organizer_id}: {len(new_tiers)} tiers")
    return new_tiers


async def get_permission(
    db: AsyncSession,
    organizer_id: int,
    agent_id: int,
) -> Optional[AgentPermission]:
    return await db.scalar(
        select(AgentPermission).where(
            AgentPermission.organizer_id == organizer_id,
            AgentPermission.agent_id == agent_id,
        )
    )


async def upsert_permission(
    db: AsyncSession,
    organizer_id: int,
    agent_id: int,
    data: PermissionUpsert,
) -> AgentPermission:
    agent = await db.get(User, agent_id)
    if agent is None or agent.role != UserRole.AGENT:
        raise NotFoundError(f"Agent {agent_id} not found")

    permission = await get_permission(db, organizer_id, agent_id)
    if permission is None:
        permission = AgentPermission(organizer_id=organizer_id, agent_id=agent_id)
        db.add(permission)

    for field, value in data.model_dump().items():
        setattr(permission, field, value)
    await db.flush()

    uncapped = [
        period
        for period, cap in (
            (LimitPeriod.DAILY, permission.max_daily_sales),
            (LimitPeriod.MONTHLY, permission.max_monthly_sales),
        )
        if cap is None
    ]
    if uncapped:
        # Sales are not counted while uncapped; a re-added cap reseeds from the ledger
        await LimitEnforcer().reset_counters(db, organizer_id, agent_id=agent_id, periods=uncapped)
    return permission


async def add_override(
    db: AsyncSession,
    organizer_id: int,
    data: OverrideCreate,
    created_by: int,
) -> AgentCommissionOverride:
    if await get_permission(db, organizer_id, data.agent_id) is None:
        raise NotFoundError(f"Agent {data.agent_id} does not sell for organizer {organizer_id}")

    override = AgentCommissionOverride(
        organizer_id=organizer_id,
        created_by=created_by,
        **data.model_dump(),
    )
    db.add(override)
    await db.flush()
    logger.info(
        f"Override #{override.id}: agent {data.agent_id} at {data.override_rate}% "
        f"(event {data.event_id or 'any'})"
    )
    return override


async def list_overrides(
    db: AsyncSession,
    organizer_id: int,
    agent_id: Optional[int] = None,
) -> List[AgentCommissionOverride]:
    query = select(AgentCommissionOverride).where(AgentCommissionOverride.organizer_id == organizer_id)
    if agent_id is not None:
        query = query.where(AgentCommissionOverride.agent_id == agent_id)
    result = await db.execute(query.order_by(AgentCommissionOverride.id.desc()))
    return list(result.scalars().all())


async def create_link(db: AsyncSession, organizer_id: int, data: LinkCreate) -> TrackableLink:
    permission = await db.get(AgentPermission, data.permission_id)
    if permission is None or permission.organizer_id != organizer_id:
        raise NotFoundError(f"Permission #{data.permission_id} not found")

    link = TrackableLink(
        permission_id=permission.id,
        event_id=data.event_id,
        title=data.title,
        expires_at=data.expires_at,
        link_code=secrets.token_urlsafe(8),
    )
    db.add(link)
    await db.flush()
    return link
