"""
Tests for the commission ledger state machine and audit trail.

Covers:
- Allowed / forbidden transitions and who may perform them
- Every attempt, accepted or rejected, lands in the audit trail
- Adjustment records for corrections
- Per-agent earnings summary
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import make_record
from commission_engine.models import (
    AuditAction,
    CommissionStatus,
    PaymentMethod,
    RecordKind,
)
from commission_engine.services.errors import (
    InvalidRecordStateError,
    NotFoundError,
    PermissionDeniedError,
)
from commission_engine.services.ledger import (
    Actor,
    ActorRole,
    CommissionLedger,
    transition_error,
)


def _organizer(record):
    return Actor.organizer(record.organizer_id, "10.0.0.1")


# ── transition_error ─────────────────────────────────────


class TestTransitionTable:
    def _record(self, status):
        return SimpleNamespace(id=1, status=status)

    def test_organizer_approves_pending(self):
        assert transition_error(self._record(CommissionStatus.PENDING), CommissionStatus.APPROVED,
                                Actor.organizer(1)) is None

    def test_agent_cannot_approve(self):
        error = transition_error(self._record(CommissionStatus.PENDING), CommissionStatus.APPROVED, Actor.agent(2))
        assert isinstance(error, PermissionDeniedError)

    def test_pending_cannot_be_paid(self):
        error = transition_error(self._record(CommissionStatus.PENDING), CommissionStatus.PAID, Actor.organizer(1))
        assert isinstance(error, InvalidRecordStateError)
        assert error.current_states == {1: "pending"}

    def test_only_dispute_manager_enters_disputed(self):
        record = self._record(CommissionStatus.APPROVED)
        assert isinstance(
            transition_error(record, CommissionStatus.DISPUTED, Actor.organizer(1)),
            PermissionDeniedError,
        )
        manager = Actor.organizer(1).acting_as(ActorRole.DISPUTE_MANAGER)
        assert transition_error(record, CommissionStatus.DISPUTED, manager) is None

    def test_disputed_cannot_be_cancelled(self):
        error = transition_error(self._record(CommissionStatus.DISPUTED), CommissionStatus.CANCELLED,
                                 Actor.organizer(1))
        assert isinstance(error, InvalidRecordStateError)

    def test_terminal_states_are_final(self):
        for status in (CommissionStatus.PAID, CommissionStatus.RESOLVED_REJECTED, CommissionStatus.CANCELLED):
            for target in CommissionStatus:
                assert transition_error(self._record(status), target, Actor.organizer(1)) is not None

    def test_system_may_cancel(self):
        assert transition_error(self._record(CommissionStatus.APPROVED), CommissionStatus.CANCELLED,
                                Actor.system()) is None


# ── CommissionLedger ─────────────────────────────────────


class TestCommissionLedger:
    @pytest.mark.asyncio
    async def test_create_record_is_pending_and_audited(self, db_session, record):
        ledger = CommissionLedger()
        assert record.status == CommissionStatus.PENDING
        assert record.kind == RecordKind.COMMISSION
        assert record.net_amount == Decimal("50.00")

        trail = await ledger.audit_trail(db_session, record.id)
        assert [e.action for e in trail] == [AuditAction.RECORD_CREATED]
        assert trail[0].performed_by == "system"
        assert trail[0].details["order_id"] == "order-1"

    @pytest.mark.asyncio
    async def test_approve_then_mark_paid(self, db_session, record):
        ledger = CommissionLedger()
        actor = _organizer(record)

        await ledger.approve(db_session, record.id, actor)
        assert record.status == CommissionStatus.APPROVED
        assert record.approved_by == record.organizer_id
        assert record.approved_at is not None

        await ledger.mark_paid(db_session, record.id, actor, PaymentMethod.PAYPAL, "PP-123")
        assert record.status == CommissionStatus.PAID
        assert record.payment_method == PaymentMethod.PAYPAL
        assert record.payment_reference == "PP-123"
        assert record.paid_at is not None

        trail = await ledger.audit_trail(db_session, record.id)
        assert [e.action for e in trail] == [
            AuditAction.RECORD_CREATED,
            AuditAction.APPROVED,
            AuditAction.MARKED_PAID,
        ]
        assert trail[1].ip_address == "10.0.0.1"
        assert trail[1].details == {"from": "pending", "to": "approved"}

    @pytest.mark.asyncio
    async def test_rejected_transition_is_audited(self, db_session, record):
        ledger = CommissionLedger()

        with pytest.raises(InvalidRecordStateError) as exc_info:
            await ledger.mark_paid(db_session, record.id, _organizer(record))

        assert exc_info.value.record_ids == [record.id]
        assert record.status == CommissionStatus.PENDING

        trail = await ledger.audit_trail(db_session, record.id)
        rejected = trail[-1]
        assert rejected.action == AuditAction.TRANSITION_REJECTED
        assert rejected.succeeded is False
        assert rejected.details["to"] == "paid"

    @pytest.mark.asyncio
    async def test_agent_approval_denied_and_audited(self, db_session, record):
        ledger = CommissionLedger()

        with pytest.raises(PermissionDeniedError):
            await ledger.approve(db_session, record.id, Actor.agent(record.agent_id))

        trail = await ledger.audit_trail(db_session, record.id)
        assert trail[-1].action == AuditAction.TRANSITION_REJECTED
        assert trail[-1].details["role"] == "agent"

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, db_session, record):
        ledger = CommissionLedger()
        await ledger.cancel(db_session, record.id, _organizer(record), reason="Fraudulent order")

        assert record.status == CommissionStatus.CANCELLED
        assert record.notes == "Fraudulent order"

    @pytest.mark.asyncio
    async def test_other_organizer_cannot_see_record(self, db_session, record):
        with pytest.raises(NotFoundError):
            await CommissionLedger().approve(
                db_session, record.id, Actor.organizer(999), organizer_id=999,
            )

    @pytest.mark.asyncio
    async def test_adjustment_is_separate_approved_record(self, db_session, record):
        ledger = CommissionLedger()
        adjustment = await ledger.create_adjustment(
            db_session, record, Decimal("-15"), _organizer(record), notes="Correction",
        )

        assert adjustment.kind == RecordKind.ADJUSTMENT
        assert adjustment.status == CommissionStatus.APPROVED
        assert adjustment.adjusts_record_id == record.id
        assert adjustment.net_amount == Decimal("-15.00")
        assert record.net_amount == Decimal("50.00")

        trail = await ledger.audit_trail(db_session, adjustment.id)
        assert trail[0].action == AuditAction.ADJUSTMENT_CREATED

    @pytest.mark.asyncio
    async def test_list_records_filters_and_paginates(self, db_session, permission, record):
        ledger = CommissionLedger()
        for i in range(2, 5):
            await make_record(db_session, permission, f"order-{i}")
        await ledger.approve(db_session, record.id, _organizer(record))

        records, total = await ledger.list_records(
            db_session, organizer_id=permission.organizer_id, per_page=2,
        )
        assert total == 4
        assert len(records) == 2

        approved, total = await ledger.list_records(
            db_session, organizer_id=permission.organizer_id, status=CommissionStatus.APPROVED,
        )
        assert total == 1
        assert approved[0].id == record.id

    @pytest.mark.asyncio
    async def test_summary_for_agent(self, db_session, permission, record):
        ledger = CommissionLedger()
        second = await make_record(db_session, permission, "order-2", net="30.00")
        await ledger.approve(db_session, second.id, _organizer(second))

        summary = await ledger.summary_for_agent(db_session, permission.agent_id, permission.organizer_id)

        assert summary["pending_amount"] == Decimal("50.00")
        assert summary["approved_amount"] == Decimal("30.00")
        assert summary["paid_amount"] == Decimal("0.00")
        assert summary["total_earned"] == Decimal("80.00")
        assert summary["commission_count"] == 2
        assert summary["average_commission"] == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_audit_entries_are_append_only(self, db_session, record):
        trail = await CommissionLedger().audit_trail(db_session, record.id)
        trail[0].performed_by = "someone-else"

        with pytest.raises(ValueError, match="append-only"):
            await db_session.flush()
