"""Sale event schemas (order/checkout subsystem -> engine)."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from commission_engine.models.attribution import AttributionMethod
from commission_engine.models.ledger import RateSource


class _UpstreamEvent(BaseModel):
    # Upstream sends camelCase; snake_case is accepted as well
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("occurred_at", mode="after", check_fields=False)
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class SaleCompletedEvent(_UpstreamEvent):
    """A completed, paid sale; delivered at-least-once."""

    order_id: str = Field(..., min_length=1, max_length=64)
    agent_permission_id: int = Field(..., gt=0)
    sale_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    event_id: Optional[str] = Field(None, max_length=64)
    attribution_method: AttributionMethod
    link_id: Optional[int] = None
    referrer_data: Optional[Dict[str, Any]] = None
    occurred_at: datetime

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def link_required_for_link_attribution(self) -> "SaleCompletedEvent":
        if self.attribution_method == AttributionMethod.TRACKABLE_LINK and self.link_id is None:
            raise ValueError("link_id is required for trackable_link attribution")
        return self


class SaleRefundedEvent(_UpstreamEvent):
    """Refund of an attributed order; refund_amount defaults to the full sale."""

    order_id: str = Field(..., min_length=1, max_length=64)
    refund_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    occurred_at: Optional[datetime] = None


class SaleProcessedResponse(BaseModel):
    """Result of ingesting one sale event."""

    duplicate: bool = False
    order_id: str
    attribution_id: int
    record_id: Optional[int] = None
    status: Optional[str] = None
    rate: Optional[Decimal] = None
    rate_source: Optional[RateSource] = None
    commission_amount: Decimal
    bonus_amount: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    net_amount: Optional[Decimal] = None
    was_clamped: bool = False
    limit_type: Optional[str] = None
    tier: Optional[str] = None
    promoted: bool = False


class RefundProcessedResponse(BaseModel):
    order_id: str
    record_id: Optional[int] = None
    record_status: Optional[str] = None
    cancelled: bool
    rolling_sales_volume: Optional[Decimal] = None
