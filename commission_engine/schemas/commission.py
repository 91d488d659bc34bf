"""Commission configuration schemas (organizer-managed)."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from commission_engine.models.commission_config import ConfigStatus, LimitBasis, PayoutFrequency
from commission_engine.models.permission import CommissionType, PermissionStatus


class CommissionConfigUpdate(BaseModel):
    """Create or update the organizer's commission plan."""

    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    default_rate: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    tier_system_enabled: Optional[bool] = None
    individual_overrides_enabled: Optional[bool] = None
    status: Optional[ConfigStatus] = None
    payout_frequency: Optional[PayoutFrequency] = None
    minimum_payout: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    hold_period_days: Optional[int] = Field(None, ge=0, le=365)
    tax_withholding_enabled: Optional[bool] = None
    tax_withholding_rate: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    limit_basis: Optional[LimitBasis] = None


class CommissionConfigResponse(BaseModel):
    id: int
    organizer_id: int
    name: str
    description: Optional[str]
    default_rate: Decimal
    tier_system_enabled: bool
    individual_overrides_enabled: bool
    status: ConfigStatus
    payout_frequency: PayoutFrequency
    minimum_payout: Decimal
    hold_period_days: int
    tax_withholding_enabled: bool
    tax_withholding_rate: Optional[Decimal]
    limit_basis: LimitBasis

    model_config = {"from_attributes": True}


class TierInput(BaseModel):
    """One band of the tier table."""

    name: str = Field(..., min_length=1, max_length=100)
    min_sales_volume: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    max_sales_volume: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    commission_rate: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)
    bonus_percentage: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    color: Optional[str] = Field(None, max_length=20)


class TierTableUpdate(BaseModel):
    """Full replacement of the tier table."""

    tiers: List[TierInput] = Field(..., min_length=1)


class TierResponse(BaseModel):
    id: int
    name: str
    min_sales_volume: Decimal
    max_sales_volume: Optional[Decimal]
    commission_rate: Decimal
    bonus_percentage: Optional[Decimal]
    color: Optional[str]

    model_config = {"from_attributes": True}


class OverrideCreate(BaseModel):
    agent_id: int
    event_id: Optional[str] = Field(None, max_length=64)
    override_rate: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)
    start_date: datetime
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def window_not_empty(self) -> "OverrideCreate":
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class OverrideResponse(BaseModel):
    id: int
    agent_id: int
    event_id: Optional[str]
    override_rate: Decimal
    reason: Optional[str]
    start_date: datetime
    end_date: Optional[datetime]
    created_by: int
    created_at: datetime

    model_config = {"from_attributes": True}


class PermissionUpsert(BaseModel):
    """Local projection of an agent permission."""

    status: PermissionStatus = PermissionStatus.ACTIVE
    commission_type: CommissionType = CommissionType.PERCENTAGE
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    commission_fixed_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    max_daily_sales: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    max_monthly_sales: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)

    @model_validator(mode="after")
    def fixed_amount_present(self) -> "PermissionUpsert":
        if self.commission_type == CommissionType.FIXED_AMOUNT and self.commission_fixed_amount is None:
            raise ValueError("commission_fixed_amount is required for fixed_amount permissions")
        return self


class PermissionResponse(BaseModel):
    id: int
    organizer_id: int
    agent_id: int
    status: PermissionStatus
    commission_type: CommissionType
    commission_rate: Optional[Decimal]
    commission_fixed_amount: Optional[Decimal]
    max_daily_sales: Optional[Decimal]
    max_monthly_sales: Optional[Decimal]

    model_config = {"from_attributes": True}


class LinkCreate(BaseModel):
    permission_id: int
    event_id: Optional[str] = Field(None, max_length=64)
    title: Optional[str] = Field(None, max_length=200)
    expires_at: Optional[datetime] = None


class LinkResponse(BaseModel):
    id: int
    permission_id: int
    event_id: Optional[str]
    link_code: str
    title: Optional[str]
    is_active: bool
    expires_at: Optional[datetime]
    current_uses: int
    conversion_count: int
    revenue_generated: Decimal
    commission_earned: Decimal

    model_config = {"from_attributes": True}
