"""
Tests for the notification outbox.

Covers:
- Events queued in the caller's transaction
- Delivery marks rows sent; failures only touch the outbox row
- Rows give up after MAX_ATTEMPTS
- No webhook configured -> rows stay pending
- Rows are leased and committed before the webhook is called
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import aiohttp
import pytest
from sqlalchemy import select

from commission_engine.config import settings
from commission_engine.models import NotificationOutbox, NotificationType, OutboxStatus
from commission_engine.services.notifier import (
    MAX_ATTEMPTS,
    WebhookNotifier,
    claim_pending,
    dispatch_pending,
    enqueue_notification,
    process_outbox_message,
    record_outcome,
)


class RecordingNotifier(WebhookNotifier):
    """Collects sent messages instead of POSTing them."""

    def __init__(self, fail_with=None):
        super().__init__(url="http://hooks.test/commissions")
        self.sent = []
        self.fail_with = fail_with

    async def send(self, session, message):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((message.event_type.value, message.payload))


def _message(**kwargs):
    defaults = {
        "id": 1,
        "event_type": NotificationType.PAYOUT_COMPLETED,
        "payload": {"amount": "80.00"},
        "recipient": "user:2",
        "status": OutboxStatus.PENDING,
        "attempts": 0,
        "error_message": None,
        "sent_at": None,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


# ── process_outbox_message ───────────────────────────────


class TestProcessOutboxMessage:
    @pytest.mark.asyncio
    async def test_success_marks_sent(self):
        message = _message()
        notifier = RecordingNotifier()

        assert await process_outbox_message(message, notifier, session=None)
        assert message.status == OutboxStatus.SENT
        assert message.attempts == 1
        assert message.sent_at is not None
        assert notifier.sent == [("PayoutCompleted", {"amount": "80.00"})]

    @pytest.mark.asyncio
    async def test_client_error_keeps_pending(self):
        message = _message()
        notifier = RecordingNotifier(fail_with=aiohttp.ClientConnectionError("connection refused"))

        assert not await process_outbox_message(message, notifier, session=None)
        assert message.status == OutboxStatus.PENDING
        assert message.attempts == 1
        assert "connection refused" in message.error_message

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        message = _message(attempts=MAX_ATTEMPTS - 1)
        notifier = RecordingNotifier(fail_with=TimeoutError())

        assert not await process_outbox_message(message, notifier, session=None)
        assert message.status == OutboxStatus.FAILED


# ── claim / dispatch ─────────────────────────────────────


async def _queued(db, *events):
    for event_type, payload in events:
        enqueue_notification(db, event_type, payload, "user:2")
    await db.commit()


async def _rows(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(NotificationOutbox).order_by(NotificationOutbox.id))
        return list(result.scalars().all())


class LeaseCheckingNotifier(RecordingNotifier):
    """Looks at the outbox from a separate session while a delivery is in flight."""

    def __init__(self, session_factory):
        super().__init__()
        self.session_factory = session_factory
        self.seen_claims = []
        self.reclaimed = None

    async def send(self, session, message):
        async with self.session_factory() as db:
            row = await db.get(NotificationOutbox, message.id)
            self.seen_claims.append(row.claimed_until)
            self.reclaimed = await claim_pending(db, limit=10)
            await db.rollback()
        await super().send(session, message)


class TestDispatchPending:
    @pytest.mark.asyncio
    async def test_delivers_pending_rows(self, db_session, session_factory):
        await _queued(
            db_session,
            (NotificationType.TIER_PROMOTED, {"tier_name": "Silver"}),
            (NotificationType.DISPUTE_RESOLVED, {"dispute_id": 7}),
        )

        notifier = RecordingNotifier()
        sent = await dispatch_pending(session_factory, notifier=notifier)

        assert sent == 2
        assert [event for event, _ in notifier.sent] == ["TierPromoted", "DisputeResolved"]
        rows = await _rows(session_factory)
        assert {r.status for r in rows} == {OutboxStatus.SENT}
        assert all(r.claimed_until is None for r in rows)
        assert all(r.attempts == 1 for r in rows)

    @pytest.mark.asyncio
    async def test_claim_is_committed_before_delivery(self, db_session, session_factory):
        await _queued(db_session, (NotificationType.PAYOUT_COMPLETED, {"amount": "80.00"}))

        notifier = LeaseCheckingNotifier(session_factory)
        sent = await dispatch_pending(session_factory, notifier=notifier)

        assert sent == 1
        assert notifier.seen_claims[0] is not None
        assert notifier.reclaimed == []

    @pytest.mark.asyncio
    async def test_no_webhook_leaves_rows_pending(self, db_session, session_factory):
        await _queued(db_session, (NotificationType.PAYOUT_COMPLETED, {"amount": str(Decimal("1"))}))

        sent = await dispatch_pending(session_factory, notifier=WebhookNotifier(url=""))

        assert sent == 0
        [row] = await _rows(session_factory)
        assert row.status == OutboxStatus.PENDING
        assert row.attempts == 0
        assert row.claimed_until is None

    @pytest.mark.asyncio
    async def test_failed_delivery_recorded_on_row(self, db_session, session_factory):
        await _queued(db_session, (NotificationType.PAYOUT_COMPLETED, {"amount": "5.00"}))

        notifier = RecordingNotifier(fail_with=aiohttp.ClientError("502 Bad Gateway"))
        sent = await dispatch_pending(session_factory, notifier=notifier)

        assert sent == 0
        [row] = await _rows(session_factory)
        assert row.status == OutboxStatus.PENDING
        assert row.attempts == 1
        assert row.error_message
        assert row.claimed_until is None


class TestClaimPending:
    @pytest.mark.asyncio
    async def test_leased_rows_are_skipped_until_expiry(self, db_session):
        enqueue_notification(db_session, NotificationType.TIER_PROMOTED, {"tier_name": "Silver"})
        await db_session.flush()
        now = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

        first = await claim_pending(db_session, limit=10, now=now)
        assert len(first) == 1
        assert first[0].claimed_until > now

        assert await claim_pending(db_session, limit=10, now=now + timedelta(seconds=30)) == []

        expired = now + timedelta(seconds=settings.notification_claim_seconds + 1)
        assert [m.id for m in await claim_pending(db_session, limit=10, now=expired)] == [first[0].id]

    @pytest.mark.asyncio
    async def test_lost_lease_does_not_overwrite(self, db_session):
        message = enqueue_notification(db_session, NotificationType.TIER_PROMOTED, {"tier_name": "Silver"})
        await db_session.flush()
        now = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
        [claimed] = await claim_pending(db_session, limit=10, now=now)
        stale_lease = claimed.claimed_until - timedelta(minutes=10)

        message.status = OutboxStatus.SENT
        assert not await record_outcome(db_session, message, stale_lease)
        assert await record_outcome(db_session, message, claimed.claimed_until)
