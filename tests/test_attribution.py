"""
Tests for sale attribution and trackable link counters.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from conftest import SALE_AT
from commission_engine.models import AttributionMethod, TrackableLink
from commission_engine.services.attribution import AttributionRecorder
from commission_engine.services.errors import DuplicateAttributionError, InsufficientDataError


@pytest_asyncio.fixture
async def link(db_session, permission):
    link = TrackableLink(permission_id=permission.id, link_code="abc123", event_id="concert-42")
    db_session.add(link)
    await db_session.flush()
    return link


async def _attribute(db, permission, order_id="order-1", link_id=None, amount="100.00"):
    return await AttributionRecorder().attribute(
        db,
        order_id=order_id,
        permission=permission,
        sale_amount=Decimal(amount),
        method=AttributionMethod.TRACKABLE_LINK if link_id else AttributionMethod.PROMO_CODE,
        commission_amount=Decimal("5.00"),
        commission_rate=Decimal("5.00"),
        attributed_at=SALE_AT,
        link_id=link_id,
        link_commission=Decimal("5.50"),
    )


class TestAttributionRecorder:
    @pytest.mark.asyncio
    async def test_attribute_creates_row(self, db_session, permission):
        attribution = await _attribute(db_session, permission)

        assert attribution.id is not None
        assert attribution.permission_id == permission.id
        assert attribution.commission_rate_used == Decimal("5.00")
        assert attribution.currency == "USD"

        found = await AttributionRecorder().get_by_order(db_session, "order-1")
        assert found is attribution

    @pytest.mark.asyncio
    async def test_link_counters_bumped(self, db_session, permission, link):
        await _attribute(db_session, permission, link_id=link.id)
        await db_session.refresh(link)

        assert link.current_uses == 1
        assert link.conversion_count == 1
        assert link.revenue_generated == Decimal("100.00")
        assert link.commission_earned == Decimal("5.50")

    @pytest.mark.asyncio
    async def test_duplicate_order_raises_with_existing(self, db_session, permission, link):
        first = await _attribute(db_session, permission, link_id=link.id)

        with pytest.raises(DuplicateAttributionError) as exc_info:
            await _attribute(db_session, permission, link_id=link.id)

        assert exc_info.value.existing.id == first.id
        await db_session.refresh(link)
        assert link.current_uses == 1
        assert link.conversion_count == 1

    @pytest.mark.asyncio
    async def test_link_of_other_permission_rejected(self, db_session, permission, link):
        link.permission_id = permission.id + 100
        with pytest.raises(InsufficientDataError):
            await _attribute(db_session, permission, link_id=link.id)

    @pytest.mark.asyncio
    async def test_inactive_link_still_credited(self, db_session, permission, link):
        link.is_active = False
        await db_session.flush()

        await _attribute(db_session, permission, link_id=link.id)
        await db_session.refresh(link)
        assert link.conversion_count == 1
