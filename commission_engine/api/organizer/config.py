"""Organizer commission plan: config, tier table, overrides, permissions, links."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.dependencies import require_organizer
from commission_engine.db import get_db
from commission_engine.models import User
from commission_engine.schemas.commission import (
    CommissionConfigResponse,
    CommissionConfigUpdate,
    LinkCreate,
    LinkResponse,
    OverrideCreate,
    OverrideResponse,
    PermissionResponse,
    PermissionUpsert,
    TierResponse,
    TierTableUpdate,
)
from commission_engine.services import commission_config
from commission_engine.services.exports import tier_table_csv

router = APIRouter()


@router.get("/config", response_model=CommissionConfigResponse)
async def get_config(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    return await commission_config.get_config(db, current_user.id)


@router.put("/config", response_model=CommissionConfigResponse)
async def update_config(
    data: CommissionConfigUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    """Create the commission plan on first call, patch it afterwards."""
    return await commission_config.upsert_config(db, current_user.id, data)


@router.get("/tiers", response_model=List[TierResponse])
async def get_tiers(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    config = await commission_config.get_config(db, current_user.id)
    return await commission_config.list_tiers(db, config)


@router.put("/tiers", response_model=List[TierResponse])
async def replace_tiers(
    data: TierTableUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    """
    Replace the tier table.

    The table must start at 0 and be contiguous, with only the top tier
    unbounded; otherwise 422.
    """
    config = await commission_config.get_config(db, current_user.id, lock=True)
    return await commission_config.replace_tiers(db, config, data.tiers)


@router.get("/tiers/export")
async def export_tiers(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    config = await commission_config.get_config(db, current_user.id)
    tiers = await commission_config.list_tiers(db, config)
    return Response(
        content=tier_table_csv(tiers),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="tiers.csv"'},
    )


@router.get("/overrides", response_model=List[OverrideResponse])
async def list_overrides(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    agent_id: Optional[int] = Query(None),
):
    return await commission_config.list_overrides(db, current_user.id, agent_id)


@router.post("/overrides", response_model=OverrideResponse, status_code=201)
async def add_override(
    data: OverrideCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    return await commission_config.add_override(db, current_user.id, data, created_by=current_user.id)


@router.put("/permissions/{agent_id}", response_model=PermissionResponse)
async def upsert_permission(
    agent_id: int,
    data: PermissionUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    """Project the agent's permission (rate, type, caps) into the engine."""
    return await commission_config.upsert_permission(db, current_user.id, agent_id, data)


@router.post("/links", response_model=LinkResponse, status_code=201)
async def create_link(
    data: LinkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
):
    return await commission_config.create_link(db, current_user.id, data)
