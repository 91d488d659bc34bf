"""
Outgoing notifications: TierPromoted, PayoutCompleted, DisputeResolved.

Events are written to the outbox in the same transaction as the ledger
change and delivered later by the outbox worker. A delivery failure only
marks the outbox row; it never touches ledger state.

Delivery runs in three steps: claim a batch of rows under a short lease
and commit, POST them with no transaction open, then record each outcome.
Rows whose lease expired (worker crashed mid-delivery) are claimed again.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

import aiohttp
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commission_engine.config import settings
from commission_engine.db.session import session_scope
from commission_engine.models import NotificationOutbox, NotificationType, OutboxStatus
from commission_engine.services.money import utcnow

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5


def enqueue_notification(
    db: AsyncSession,
    event_type: NotificationType,
    payload: dict,
    recipient: Optional[str] = None,
) -> NotificationOutbox:
    """Queue an event; commit happens with the caller's transaction."""
    message = NotificationOutbox(
        event_type=event_type,
        payload=payload,
        recipient=recipient,
        status=OutboxStatus.PENDING,
        attempts=0,
    )
    db.add(message)
    return message


class WebhookNotifier:
    """
    POSTs outbox events to the configured webhook.
    If no URL is set, delivery is skipped and rows stay pending.
    """

    def __init__(self, url: Optional[str] = None, timeout_seconds: float = 10.0):
        self.url = url if url is not None else settings.notification_webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def send(self, session: aiohttp.ClientSession, message: NotificationOutbox) -> None:
        body = {
            "id": message.id,
            "type": message.event_type.value,
            "recipient": message.recipient,
            "payload": message.payload,
        }
        async with session.post(self.url, json=body) as response:
            await response.read()
            response.raise_for_status()


async def process_outbox_message(
    message: NotificationOutbox,
    notifier: WebhookNotifier,
    session: aiohttp.ClientSession,
) -> bool:
    """
    Deliver a single outbox message.

    Returns:
        True if the message was delivered
    """
    message.attempts += 1
    try:
        await notifier.send(session, message)
    except (aiohttp.ClientError, TimeoutError) as e:
        message.error_message = str(e)
        if message.attempts >= MAX_ATTEMPTS:
            message.status = OutboxStatus.FAILED
            logger.error(f"Outbox message {message.id} failed after {message.attempts} attempts: {e}")
        else:
            logger.warning(f"Outbox message {message.id} delivery error (attempt {message.attempts}): {e}")
        return False

    message.status = OutboxStatus.SENT
    message.sent_at = utcnow()
    message.error_message = None
    logger.info(f"Outbox message {message.id} ({message.event_type.value}) sent")
    return True


async def claim_pending(
    db: AsyncSession,
    limit: int,
    now: Optional[datetime] = None,
) -> List[NotificationOutbox]:
    """Lease a batch of pending rows to this worker."""
    now = now or utcnow()
    result = await db.execute(
        select(NotificationOutbox)
        .where(
            NotificationOutbox.status == OutboxStatus.PENDING,
            or_(
                NotificationOutbox.claimed_until.is_(None),
                NotificationOutbox.claimed_until < now,
            ),
        )
        .order_by(NotificationOutbox.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    messages = list(result.scalars().all())

    lease = now + timedelta(seconds=settings.notification_claim_seconds)
    for message in messages:
        message.claimed_until = lease
    await db.flush()
    return messages


async def record_outcome(db: AsyncSession, message: NotificationOutbox, lease: datetime) -> bool:
    """
    Write a delivery outcome back and release the lease.

    Skipped when the lease was lost to another worker after expiry.
    """
    result = await db.execute(
        update(NotificationOutbox)
        .where(
            NotificationOutbox.id == message.id,
            NotificationOutbox.claimed_until == lease,
        )
        .values(
            status=message.status,
            attempts=message.attempts,
            error_message=message.error_message,
            sent_at=message.sent_at,
            claimed_until=None,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        logger.warning(f"Outbox message {message.id}: lease lost before outcome was recorded")
        return False
    return True


async def dispatch_pending(
    session_factory: async_sessionmaker,
    notifier: Optional[WebhookNotifier] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Deliver one batch of pending outbox messages.

    Each step owns its transaction, so no row lock is held while the
    webhook is being called.

    Returns:
        Number of messages delivered
    """
    notifier = notifier or WebhookNotifier()
    if not notifier.url:
        logger.debug("No notification webhook configured, outbox left pending")
        return 0

    async with session_scope(session_factory) as db:
        messages = await claim_pending(db, limit or settings.notification_batch_size)
    if not messages:
        return 0
    leases = {message.id: message.claimed_until for message in messages}

    sent = 0
    async with aiohttp.ClientSession(timeout=notifier.timeout) as session:
        for message in messages:
            if await process_outbox_message(message, notifier, session):
                sent += 1

    async with session_scope(session_factory) as db:
        for message in messages:
            await record_outcome(db, message, leases[message.id])
    return sent
