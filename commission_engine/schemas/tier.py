"""Tier progression read model."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from commission_engine.models.tier import TierChangeType
from commission_engine.schemas.commission import TierResponse


class TierHistoryResponse(BaseModel):
    tier_name: str
    change_type: TierChangeType
    promoted_at: datetime
    sales_volume_at_promotion: Decimal
    previous_tier_name: Optional[str]
    previous_tier_duration_days: Optional[int]

    model_config = {"from_attributes": True}


class TierProgressionResponse(BaseModel):
    agent_id: int
    organizer_id: int
    current_tier: Optional[TierResponse] = None
    next_tier: Optional[TierResponse] = None
    rolling_sales_volume: Decimal
    period_start: Optional[date] = None
    current_tier_since: Optional[datetime] = None
    progress_to_next: Decimal
    history: List[TierHistoryResponse] = []
