"""
Tests for payout batches.

Covers:
- Batch total equals the sum of member net amounts at creation
- Only approved / resolved_paid, unbatched records are accepted
- All-or-nothing processing, blocked by a member disputed after batching
- Hold period and minimum payout
- Cancelling a stuck draft batch releases its records for a new batch
"""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from conftest import SALE_AT, make_record
from commission_engine.models import (
    AuditAction,
    CommissionStatus,
    DisputeOutcome,
    DisputeType,
    NotificationOutbox,
    NotificationType,
    PaymentMethod,
    PayoutBatchStatus,
)
from commission_engine.services.disputes import DisputeManager
from commission_engine.services.errors import InsufficientDataError, InvalidRecordStateError
from commission_engine.services.ledger import Actor, CommissionLedger
from commission_engine.services.payouts import PayoutBatchManager


@pytest_asyncio.fixture
async def approved(db_session, permission):
    """Two approved records of 50.00 and 30.00."""
    ledger = CommissionLedger()
    actor = Actor.organizer(permission.organizer_id)
    records = [
        await make_record(db_session, permission, "order-1", net="50.00"),
        await make_record(db_session, permission, "order-2", net="30.00"),
    ]
    for r in records:
        await ledger.approve(db_session, r.id, actor)
    return records


class TestCreateBatch:
    @pytest.mark.asyncio
    async def test_total_is_sum_of_net_amounts(self, db_session, organizer, approved):
        batch = await PayoutBatchManager().create_batch(
            db_session, organizer.id, PaymentMethod.BANK_TRANSFER,
            [r.id for r in approved], Actor.organizer(organizer.id),
        )

        assert batch.total_amount == Decimal("80.00")
        assert batch.record_count == 2
        assert batch.status == PayoutBatchStatus.DRAFT
        assert all(r.payout_batch_id == batch.id for r in approved)

    @pytest.mark.asyncio
    async def test_pending_record_blocks_creation(self, db_session, organizer, permission, approved):
        pending = await make_record(db_session, permission, "order-3")

        with pytest.raises(InvalidRecordStateError) as exc_info:
            await PayoutBatchManager().create_batch(
                db_session, organizer.id, PaymentMethod.PAYPAL,
                [approved[0].id, pending.id], Actor.organizer(organizer.id),
            )
        assert exc_info.value.record_ids == [pending.id]
        assert exc_info.value.current_states == {pending.id: "pending"}

    @pytest.mark.asyncio
    async def test_record_cannot_join_two_batches(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        await manager.create_batch(db_session, organizer.id, PaymentMethod.PAYPAL, [approved[0].id], actor)

        with pytest.raises(InvalidRecordStateError):
            await manager.create_batch(db_session, organizer.id, PaymentMethod.PAYPAL, [approved[0].id], actor)

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, db_session, organizer):
        with pytest.raises(InsufficientDataError):
            await PayoutBatchManager().create_batch(
                db_session, organizer.id, PaymentMethod.PAYPAL, [], Actor.organizer(organizer.id),
            )

    @pytest.mark.asyncio
    async def test_below_minimum_payout(self, db_session, organizer, config, approved):
        config.minimum_payout = Decimal("100.00")
        await db_session.flush()

        with pytest.raises(InvalidRecordStateError, match="minimum payout"):
            await PayoutBatchManager().create_batch(
                db_session, organizer.id, PaymentMethod.PAYPAL,
                [r.id for r in approved], Actor.organizer(organizer.id),
            )


class TestEligibleRecords:
    @pytest.mark.asyncio
    async def test_hold_period_excludes_recent_records(self, db_session, organizer, config, approved):
        config.hold_period_days = 7
        await db_session.flush()
        manager = PayoutBatchManager()

        assert await manager.eligible_records(db_session, organizer.id, as_of=SALE_AT + timedelta(days=3)) == []
        eligible = await manager.eligible_records(db_session, organizer.id, as_of=SALE_AT + timedelta(days=8))
        assert {r.id for r in eligible} == {r.id for r in approved}

    @pytest.mark.asyncio
    async def test_batched_records_not_eligible(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        await manager.create_batch(
            db_session, organizer.id, PaymentMethod.CHECK, [approved[0].id], Actor.organizer(organizer.id),
        )
        eligible = await manager.eligible_records(db_session, organizer.id, as_of=SALE_AT + timedelta(days=1))
        assert [r.id for r in eligible] == [approved[1].id]


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_all_members_paid(self, db_session, organizer, agent, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.BANK_TRANSFER, [r.id for r in approved], actor,
        )

        await manager.process_batch(db_session, batch.id, actor, payment_reference="WIRE-1")

        assert batch.status == PayoutBatchStatus.COMPLETED
        assert batch.processed_at is not None
        for r in approved:
            assert r.status == CommissionStatus.PAID
            assert r.payment_method == PaymentMethod.BANK_TRANSFER
            assert r.payment_reference == "WIRE-1"

        outbox = (await db_session.execute(select(NotificationOutbox))).scalars().all()
        assert [m.event_type for m in outbox] == [NotificationType.PAYOUT_COMPLETED]
        assert outbox[0].payload["agent_id"] == agent.id
        assert outbox[0].payload["amount"] == "80.00"

    @pytest.mark.asyncio
    async def test_disputed_member_blocks_whole_batch(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [r.id for r in approved], actor,
        )
        await DisputeManager().open(
            db_session, approved[1].id, DisputeType.AMOUNT_INCORRECT, Decimal("30.00"),
            Actor.agent(approved[1].agent_id),
        )

        with pytest.raises(InvalidRecordStateError) as exc_info:
            await manager.process_batch(db_session, batch.id, actor)

        assert exc_info.value.record_ids == [approved[1].id]
        assert exc_info.value.current_states == {approved[1].id: "disputed"}
        assert approved[0].status == CommissionStatus.APPROVED
        assert batch.status == PayoutBatchStatus.DRAFT
        assert batch.total_amount == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_completed_batch_cannot_be_reprocessed(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [r.id for r in approved], actor,
        )
        await manager.process_batch(db_session, batch.id, actor)

        with pytest.raises(InvalidRecordStateError):
            await manager.process_batch(db_session, batch.id, actor)


class TestCancelBatch:
    @pytest.mark.asyncio
    async def test_blocked_batch_releases_healthy_members(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        disputes = DisputeManager()
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [r.id for r in approved], actor,
        )
        dispute = await disputes.open(
            db_session, approved[1].id, DisputeType.AMOUNT_INCORRECT, Decimal("30.00"),
            Actor.agent(approved[1].agent_id),
        )
        await disputes.resolve(db_session, dispute.id, DisputeOutcome.RESOLVED_REJECTED, actor)

        with pytest.raises(InvalidRecordStateError):
            await manager.process_batch(db_session, batch.id, actor)

        cancelled = await manager.cancel_batch(db_session, batch.id, actor, reason="Member rejected in dispute")

        assert cancelled.status == PayoutBatchStatus.FAILED
        assert cancelled.processing_notes == "Member rejected in dispute"
        assert cancelled.total_amount == Decimal("80.00")
        assert cancelled.record_count == 2
        assert all(r.payout_batch_id is None for r in approved)
        assert approved[0].status == CommissionStatus.APPROVED
        assert approved[1].status == CommissionStatus.RESOLVED_REJECTED

        eligible = await manager.eligible_records(db_session, organizer.id, as_of=SALE_AT + timedelta(days=1))
        assert [r.id for r in eligible] == [approved[0].id]

        retry = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [approved[0].id], actor,
        )
        await manager.process_batch(db_session, retry.id, actor)
        assert approved[0].status == CommissionStatus.PAID
        assert approved[0].payout_batch_id == retry.id

    @pytest.mark.asyncio
    async def test_release_is_audited_per_record(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.CHECK, [r.id for r in approved], actor,
        )
        await manager.cancel_batch(db_session, batch.id, actor)

        for record in approved:
            trail = await CommissionLedger().audit_trail(db_session, record.id)
            assert trail[-1].action == AuditAction.REMOVED_FROM_BATCH
            assert trail[-1].details["payout_batch_id"] == batch.id

    @pytest.mark.asyncio
    async def test_only_draft_batches_can_be_cancelled(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [r.id for r in approved], actor,
        )
        await manager.process_batch(db_session, batch.id, actor)

        with pytest.raises(InvalidRecordStateError):
            await manager.cancel_batch(db_session, batch.id, actor)
        assert batch.status == PayoutBatchStatus.COMPLETED
        assert all(r.payout_batch_id == batch.id for r in approved)

    @pytest.mark.asyncio
    async def test_cancelled_batch_cannot_be_processed(self, db_session, organizer, approved):
        manager = PayoutBatchManager()
        actor = Actor.organizer(organizer.id)
        batch = await manager.create_batch(
            db_session, organizer.id, PaymentMethod.PAYPAL, [approved[0].id], actor,
        )
        await manager.cancel_batch(db_session, batch.id, actor)

        with pytest.raises(InvalidRecordStateError):
            await manager.process_batch(db_session, batch.id, actor)
        assert approved[0].status == CommissionStatus.APPROVED
