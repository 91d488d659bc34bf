"""Organizer view of agent tier progressions and the period rollover."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.api.deps import get_tracker
from commission_engine.auth.dependencies import require_organizer
from commission_engine.db import get_db
from commission_engine.models import User
from commission_engine.schemas.tier import TierProgressionResponse
from commission_engine.services import TierProgressionTracker, commission_config
from commission_engine.services.money import ensure_utc, utcnow

router = APIRouter()


@router.get("/progressions/{agent_id}", response_model=TierProgressionResponse)
async def agent_progression(
    agent_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    tracker: TierProgressionTracker = Depends(get_tracker),
):
    config = await commission_config.get_config(db, current_user.id)
    view = await tracker.progression_view(db, config, agent_id, current_user.id, utcnow())
    return TierProgressionResponse.model_validate(view, from_attributes=True)


@router.post("/rollover")
async def rollover_periods(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    tracker: TierProgressionTracker = Depends(get_tracker),
    as_of: Optional[datetime] = Query(None),
):
    """Run the monthly tier rollover now; safe to repeat."""
    as_of = ensure_utc(as_of) if as_of else utcnow()
    rolled = await tracker.rollover_periods(db, as_of)
    return {"success": True, "rolled": rolled, "as_of": as_of}
