"""
Tests for commission rate resolution.

Covers:
- Override selection (event-scoped vs general, tie-break, time window)
- Precedence override > tier > default
- One branch per commission type (percentage, fixed_amount, tiered)
- Half-up rounding on the final amount only
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio

from conftest import SALE_AT
from commission_engine.models import AgentCommissionOverride, CommissionType, RateSource
from commission_engine.services.errors import ConfigurationError
from commission_engine.services.money import cents_to_amount, percentage_of_cents, to_cents
from commission_engine.services.rates import RateResolver, select_override


def _override(id, event_id=None, start=None, end=None, created=None, rate="10.00"):
    return SimpleNamespace(
        id=id,
        event_id=event_id,
        start_date=start or SALE_AT - timedelta(days=10),
        end_date=end,
        created_at=created or SALE_AT - timedelta(days=10),
        override_rate=Decimal(rate),
    )


# ── select_override ──────────────────────────────────────


class TestSelectOverride:
    def test_no_overrides(self):
        assert select_override([], "evt-1", SALE_AT) is None

    def test_event_scoped_beats_general(self):
        general = _override(1, created=SALE_AT - timedelta(days=1))
        scoped = _override(2, event_id="evt-1", created=SALE_AT - timedelta(days=5))
        assert select_override([general, scoped], "evt-1", SALE_AT) is scoped

    def test_scoped_to_other_event_ignored(self):
        general = _override(1)
        other = _override(2, event_id="evt-2")
        assert select_override([general, other], "evt-1", SALE_AT) is general

    def test_newest_wins_between_equally_specific(self):
        older = _override(1, created=SALE_AT - timedelta(days=5))
        newer = _override(2, created=SALE_AT - timedelta(days=1))
        assert select_override([older, newer], None, SALE_AT) is newer

    def test_highest_id_breaks_identical_timestamps(self):
        first = _override(1)
        second = _override(2)
        assert select_override([second, first], None, SALE_AT) is second

    def test_not_started_yet(self):
        future = _override(1, start=SALE_AT + timedelta(hours=1))
        assert select_override([future], None, SALE_AT) is None

    def test_end_date_is_exclusive(self):
        ended = _override(1, end=SALE_AT)
        assert select_override([ended], None, SALE_AT) is None

    def test_naive_timestamps_treated_as_utc(self):
        naive = _override(1, start=datetime(2024, 5, 1), end=datetime(2024, 6, 1))
        assert select_override([naive], None, SALE_AT) is naive


# ── Money rounding ───────────────────────────────────────


class TestRounding:
    def test_half_up_on_final_amount(self):
        # 10.10 * 5% = 0.505 -> 0.51
        assert cents_to_amount(percentage_of_cents(to_cents("10.10"), Decimal("5"))) == Decimal("0.51")

    def test_fractional_rate(self):
        assert cents_to_amount(percentage_of_cents(to_cents("200"), Decimal("6.5"))) == Decimal("13.00")


# ── RateResolver ─────────────────────────────────────────


@pytest_asyncio.fixture
async def general_override(db_session, organizer, agent, permission):
    override = AgentCommissionOverride(
        organizer_id=organizer.id,
        agent_id=agent.id,
        override_rate=Decimal("12.00"),
        start_date=SALE_AT - timedelta(days=30),
        created_by=organizer.id,
    )
    db_session.add(override)
    await db_session.flush()
    return override


class TestRateResolver:
    @pytest.mark.asyncio
    async def test_default_rate(self, db_session, config, permission):
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("200.00"), None, SALE_AT,
        )
        assert resolution.source == RateSource.DEFAULT
        assert resolution.rate == Decimal("5.00")
        assert resolution.commission_amount == Decimal("10.00")
        assert resolution.bonus_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_permission_rate_beats_config_default(self, db_session, config, permission):
        permission.commission_rate = Decimal("7.50")
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("100.00"), None, SALE_AT,
        )
        assert resolution.rate == Decimal("7.50")
        assert resolution.commission_amount == Decimal("7.50")

    @pytest.mark.asyncio
    async def test_tier_rate_with_separate_bonus(self, db_session, config, tiers, permission):
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("200.00"), None, SALE_AT, tier=tiers[1],
        )
        assert resolution.source == RateSource.TIER
        assert resolution.rate == Decimal("6.50")
        assert resolution.commission_amount == Decimal("13.00")
        assert resolution.bonus_amount == Decimal("1.00")
        assert resolution.tier_details["name"] == "Silver"

    @pytest.mark.asyncio
    async def test_tier_looked_up_without_progression(self, db_session, config, tiers, permission):
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("100.00"), None, SALE_AT,
        )
        assert resolution.tier_details["name"] == "Bronze"
        assert resolution.commission_amount == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_override_beats_tier(self, db_session, config, tiers, permission, general_override):
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("100.00"), None, SALE_AT, tier=tiers[1],
        )
        assert resolution.source == RateSource.OVERRIDE
        assert resolution.override_id == general_override.id
        assert resolution.commission_amount == Decimal("12.00")
        assert resolution.bonus_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_event_override_beats_general(self, db_session, organizer, agent, config, permission, general_override):
        scoped = AgentCommissionOverride(
            organizer_id=organizer.id,
            agent_id=agent.id,
            event_id="concert-42",
            override_rate=Decimal("15.00"),
            start_date=SALE_AT - timedelta(days=1),
            created_by=organizer.id,
        )
        db_session.add(scoped)
        await db_session.flush()

        resolver = RateResolver()
        for_event = await resolver.resolve(
            db_session, permission, config, Decimal("100.00"), "concert-42", SALE_AT,
        )
        other_event = await resolver.resolve(
            db_session, permission, config, Decimal("100.00"), "theatre-7", SALE_AT,
        )
        assert for_event.override_id == scoped.id
        assert other_event.override_id == general_override.id

    @pytest.mark.asyncio
    async def test_overrides_disabled(self, db_session, config, permission, general_override):
        config.individual_overrides_enabled = False
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("100.00"), None, SALE_AT,
        )
        assert resolution.source == RateSource.DEFAULT

    @pytest.mark.asyncio
    async def test_fixed_amount_ignores_tiers(self, db_session, config, tiers, permission):
        permission.commission_type = CommissionType.FIXED_AMOUNT
        permission.commission_fixed_amount = Decimal("4.00")
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("999.00"), None, SALE_AT,
        )
        assert resolution.source == RateSource.DEFAULT
        assert resolution.rate == Decimal("0.00")
        assert resolution.commission_amount == Decimal("4.00")
        assert resolution.fixed_amount == Decimal("4.00")

    @pytest.mark.asyncio
    async def test_fixed_amount_without_amount_is_misconfiguration(self, db_session, config, permission):
        permission.commission_type = CommissionType.FIXED_AMOUNT
        with pytest.raises(ConfigurationError):
            await RateResolver().resolve(
                db_session, permission, config, Decimal("10.00"), None, SALE_AT,
            )

    @pytest.mark.asyncio
    async def test_tiered_permission_uses_tiers_when_config_flag_off(self, db_session, config, tiers, permission):
        config.tier_system_enabled = False
        permission.commission_type = CommissionType.TIERED
        resolution = await RateResolver().resolve(
            db_session, permission, config, Decimal("100.00"), None, SALE_AT,
        )
        assert resolution.source == RateSource.TIER
