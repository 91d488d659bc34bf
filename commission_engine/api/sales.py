"""
Sale event ingest.

The order/checkout subsystem delivers completed and refunded sales here,
at least once, authenticated with the shared X-Ingest-Key.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from commission_engine.api.deps import get_engine
from commission_engine.auth.dependencies import require_ingest_key
from commission_engine.models import TierChangeType
from commission_engine.schemas.sales import RefundProcessedResponse, SaleProcessedResponse
from commission_engine.services import CommissionEngine
from commission_engine.services.engine import SaleResult, parse_refund_event, parse_sale_event

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sales",
    tags=["Sales ingest"],
    dependencies=[Depends(require_ingest_key)],
)


def sale_response(result: SaleResult) -> SaleProcessedResponse:
    attribution = result.attribution
    record = result.record
    response = SaleProcessedResponse(
        duplicate=result.duplicate,
        order_id=attribution.order_id,
        attribution_id=attribution.id,
        commission_amount=attribution.commission_amount,
        rate=attribution.commission_rate_used,
    )

    if record is not None:
        response.record_id = record.id
        response.status = record.status.value
        response.rate = record.commission_rate
        response.rate_source = record.rate_source
        response.commission_amount = record.commission_amount
        response.bonus_amount = record.bonus_amount
        response.tax_amount = record.tax_amount
        response.net_amount = record.net_amount
        response.was_clamped = record.was_clamped
        response.limit_type = record.limit_type

    if result.resolution is not None and result.resolution.tier_details:
        response.tier = result.resolution.tier_details["name"]
    change = result.tier_change
    if change is not None:
        response.tier = change.new_tier.name
        response.promoted = change.change_type == TierChangeType.PROMOTION
    return response


@router.post("/completed", response_model=SaleProcessedResponse)
async def sale_completed(
    payload: Dict[str, Any] = Body(...),
    engine: CommissionEngine = Depends(get_engine),
):
    """
    Attribute a completed sale and create its pending commission record.

    A redelivered order returns 200 with duplicate=true and the existing
    attribution; nothing is written.
    """
    event = parse_sale_event(payload)
    result = await engine.process_sale(event)
    if result.duplicate:
        logger.warning(f"Duplicate sale event for order {event.order_id}")
    return sale_response(result)


@router.post("/refunded", response_model=RefundProcessedResponse)
async def sale_refunded(
    payload: Dict[str, Any] = Body(...),
    engine: CommissionEngine = Depends(get_engine),
):
    event = parse_refund_event(payload)
    result = await engine.process_refund(event)
    return RefundProcessedResponse(
        order_id=event.order_id,
        record_id=result.record.id if result.record else None,
        record_status=result.record.status.value if result.record else None,
        cancelled=result.cancelled,
        rolling_sales_volume=result.progression.rolling_sales_volume if result.progression else None,
    )
