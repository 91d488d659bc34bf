"""
Tests for the accounting CSV exports.
"""

import csv
import io
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import SALE_AT, make_record
from commission_engine.models import PaymentMethod
from commission_engine.services.exports import (
    PAYMENT_HISTORY_COLUMNS,
    TIER_TABLE_COLUMNS,
    payment_history_csv,
    tier_table_csv,
)
from commission_engine.services.ledger import Actor, CommissionLedger


def _rows(text):
    return list(csv.reader(io.StringIO(text)))


class TestPaymentHistory:
    @pytest.mark.asyncio
    async def test_header_and_rows(self, db_session, organizer, permission, record):
        ledger = CommissionLedger()
        actor = Actor.organizer(organizer.id)
        await ledger.approve(db_session, record.id, actor)
        await ledger.mark_paid(db_session, record.id, actor, PaymentMethod.PAYPAL, "PP-1")

        rows = _rows(await payment_history_csv(db_session, organizer.id))

        assert rows[0] == PAYMENT_HISTORY_COLUMNS
        assert len(rows) == 2
        agent_name, period, sales, commission, net, status, method, paid_date = rows[1]
        assert agent_name == "Test Agent"
        assert period == "2024-05"
        assert sales == "1000.00"
        assert commission == "50.00"
        assert net == "50.00"
        assert status == "paid"
        assert method == "paypal"
        assert paid_date != ""

    @pytest.mark.asyncio
    async def test_date_range_filter(self, db_session, organizer, permission, record):
        await make_record(db_session, permission, "order-2", earned_at=SALE_AT + timedelta(days=40))

        rows = _rows(await payment_history_csv(
            db_session, organizer.id,
            start_date=SALE_AT + timedelta(days=30),
        ))

        assert len(rows) == 2
        assert rows[1][1] == "2024-06"
        assert rows[1][7] == ""

    @pytest.mark.asyncio
    async def test_other_organizer_sees_header_only(self, db_session, organizer, record):
        rows = _rows(await payment_history_csv(db_session, organizer.id + 100))
        assert rows == [PAYMENT_HISTORY_COLUMNS]


class TestTierTable:
    @pytest.mark.asyncio
    async def test_open_ended_top_tier(self, tiers):
        rows = _rows(tier_table_csv(tiers))

        assert rows[0] == TIER_TABLE_COLUMNS
        assert rows[1] == ["Bronze", "0.00", "2500.00", "5.00", ""]
        assert rows[2] == ["Silver", "2500.00", "", "6.50", "0.50"]

    def test_empty_table(self):
        assert _rows(tier_table_csv([])) == [TIER_TABLE_COLUMNS]
