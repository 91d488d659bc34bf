"""
Sale attribution: links one order to the agent who caused it, exactly once.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AgentPermission,
    AttributionMethod,
    SalesAttribution,
    TrackableLink,
)
from commission_engine.services.errors import DuplicateAttributionError, InsufficientDataError
from commission_engine.services.money import ensure_utc, to_decimal

logger = logging.getLogger(__name__)


class AttributionRecorder:
    """Records which agent / trackable link caused a sale."""

    async def get_by_order(self, db: AsyncSession, order_id: str) -> Optional[SalesAttribution]:
        result = await db.execute(
            select(SalesAttribution).where(SalesAttribution.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def _check_link(
        self,
        db: AsyncSession,
        link_id: int,
        permission: AgentPermission,
        at: datetime,
    ) -> TrackableLink:
        link = await db.get(TrackableLink, link_id)
        if link is None or link.permission_id != permission.id:
            raise InsufficientDataError(
                f"Trackable link #{link_id} does not belong to permission #{permission.id}"
            )
        # The sale happened, so the link is still credited
        if not link.is_active:
            logger.warning(f"Sale attributed to inactive link {link.link_code}")
        elif link.expires_at is not None and ensure_utc(link.expires_at) <= ensure_utc(at):
            logger.warning(f"Sale attributed to expired link {link.link_code}")
        return link

    async def attribute(
        self,
        db: AsyncSession,
        order_id: str,
        permission: AgentPermission,
        sale_amount: Decimal,
        method: AttributionMethod,
        commission_amount: Decimal,
        commission_rate: Decimal,
        attributed_at: datetime,
        currency: str = "USD",
        event_id: Optional[str] = None,
        link_id: Optional[int] = None,
        referrer_data: Optional[dict] = None,
        link_commission: Optional[Decimal] = None,
    ) -> SalesAttribution:
        """
        Insert the attribution and bump the link counters.

        The unique constraint on order_id is the only duplicate check: the
        insert runs in a savepoint and a violation raises
        DuplicateAttributionError carrying the existing attribution.
        """
        if link_id is not None:
            await self._check_link(db, link_id, permission, attributed_at)

        attribution = SalesAttribution(
            order_id=order_id,
            permission_id=permission.id,
            trackable_link_id=link_id,
            event_id=event_id,
            attribution_method=method,
            referrer_data=referrer_data,
            sale_amount=to_decimal(sale_amount),
            currency=currency,
            commission_amount=to_decimal(commission_amount),
            commission_rate_used=to_decimal(commission_rate),
            attributed_at=attributed_at,
        )
        try:
            async with db.begin_nested():
                db.add(attribution)
                await db.flush()
        except IntegrityError:
            existing = await self.get_by_order(db, order_id)
            if existing is None:
                raise
            logger.warning(f"Duplicate attribution for order {order_id} (existing #{existing.id})")
            raise DuplicateAttributionError(existing)

        if link_id is not None:
            await db.execute(
                update(TrackableLink)
                .where(TrackableLink.id == link_id)
                .values(
                    current_uses=TrackableLink.current_uses + 1,
                    conversion_count=TrackableLink.conversion_count + 1,
                    revenue_generated=TrackableLink.revenue_generated + to_decimal(sale_amount),
                    commission_earned=TrackableLink.commission_earned + to_decimal(
                        link_commission if link_commission is not None else commission_amount
                    ),
                )
                .execution_options(synchronize_session=False)
            )

        logger.info(
            f"Attributed order {order_id} to agent {permission.agent_id} "
            f"(permission #{permission.id}, {method.value}, commission {commission_amount})"
        )
        return attribution
