"""
Payout batches.

A batch is created from approved records, its total fixed at creation,
and processed in one transaction: either every member record becomes
paid or none does.

A draft batch that cannot be paid is cancelled instead: it is marked
failed and its records are released for a later batch.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    PAYABLE_STATUSES,
    AuditAction,
    CommissionConfig,
    CommissionRecord,
    CommissionStatus,
    NotificationType,
    PaymentMethod,
    PayoutBatch,
    PayoutBatchStatus,
)
from commission_engine.services.errors import (
    InsufficientDataError,
    InvalidRecordStateError,
    NotFoundError,
)
from commission_engine.services.ledger import Actor, ActorRole, CommissionLedger, transition_error
from commission_engine.services.money import ZERO, ensure_utc, utcnow
from commission_engine.services.notifier import enqueue_notification
from commission_engine.utils.audit import actor_label, log_action

logger = logging.getLogger(__name__)


class PayoutBatchManager:
    """Groups approved ledger records into batches and pays them."""

    def __init__(self, ledger: Optional[CommissionLedger] = None):
        self.ledger = ledger or CommissionLedger()

    async def eligible_records(
        self,
        db: AsyncSession,
        organizer_id: int,
        as_of: Optional[datetime] = None,
        agent_id: Optional[int] = None,
    ) -> List[CommissionRecord]:
        """Payable records not yet batched and past the organizer's hold period."""
        as_of = as_of or utcnow()
        hold_days = await db.scalar(
            select(CommissionConfig.hold_period_days).where(CommissionConfig.organizer_id == organizer_id)
        )
        cutoff = as_of - timedelta(days=hold_days or 0)

        query = (
            select(CommissionRecord)
            .where(
                CommissionRecord.organizer_id == organizer_id,
                CommissionRecord.status.in_(PAYABLE_STATUSES),
                CommissionRecord.payout_batch_id.is_(None),
                CommissionRecord.earned_at <= cutoff,
            )
            .order_by(CommissionRecord.agent_id, CommissionRecord.earned_at)
        )
        if agent_id is not None:
            query = query.where(CommissionRecord.agent_id == agent_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def _load_members(
        self,
        db: AsyncSession,
        organizer_id: int,
        record_ids: Sequence[int],
    ) -> List[CommissionRecord]:
        result = await db.execute(
            select(CommissionRecord)
            .where(
                CommissionRecord.id.in_(record_ids),
                CommissionRecord.organizer_id == organizer_id,
            )
            .order_by(CommissionRecord.id)
            .with_for_update()
        )
        records = list(result.scalars().all())
        missing = set(record_ids) - {r.id for r in records}
        if missing:
            raise NotFoundError(f"Commission records not found: {sorted(missing)}")
        return records

    async def create_batch(
        self,
        db: AsyncSession,
        organizer_id: int,
        payment_method: PaymentMethod,
        record_ids: Sequence[int],
        actor: Actor,
        batch_name: Optional[str] = None,
    ) -> PayoutBatch:
        """
        Create a draft batch from approved records.

        Raises InvalidRecordStateError listing every record that is not
        payable or already batched.
        """
        record_ids = list(dict.fromkeys(record_ids))
        if not record_ids:
            raise InsufficientDataError("A payout batch needs at least one record")

        records = await self._load_members(db, organizer_id, record_ids)

        blocked = {
            r.id: r.status.value
            for r in records
            if r.status not in PAYABLE_STATUSES or r.payout_batch_id is not None
        }
        if blocked:
            raise InvalidRecordStateError(
                f"Records not payable: {sorted(blocked)}",
                record_ids=sorted(blocked),
                current_states=blocked,
            )

        total = sum((r.net_amount for r in records), ZERO)
        minimum = await db.scalar(
            select(CommissionConfig.minimum_payout).where(CommissionConfig.organizer_id == organizer_id)
        )
        if minimum is not None and total < minimum:
            raise InvalidRecordStateError(
                f"Batch total {total} is below the minimum payout of {minimum}",
                record_ids=record_ids,
            )

        earned = [ensure_utc(r.earned_at) for r in records]
        now = utcnow()
        batch = PayoutBatch(
            organizer_id=organizer_id,
            batch_name=batch_name or f"Payout {now:%Y-%m-%d %H:%M}",
            payment_method=payment_method,
            period_start=min(earned),
            period_end=max(earned),
            total_amount=total,
            record_count=len(records),
            status=PayoutBatchStatus.DRAFT,
            created_by=actor.user_id,
        )
        db.add(batch)
        await db.flush()

        for record in records:
            record.payout_batch_id = batch.id
            log_action(
                db,
                record.id,
                AuditAction.ADDED_TO_BATCH,
                actor.performed_by,
                details={"payout_batch_id": batch.id},
                ip_address=actor.ip_address,
            )
        await db.flush()

        logger.info(f"Payout batch #{batch.id} created: {len(records)} records, total {total}")
        return batch

    async def get_batch(
        self,
        db: AsyncSession,
        batch_id: int,
        organizer_id: Optional[int] = None,
        lock: bool = False,
    ) -> PayoutBatch:
        query = select(PayoutBatch).where(PayoutBatch.id == batch_id)
        if organizer_id is not None:
            query = query.where(PayoutBatch.organizer_id == organizer_id)
        if lock:
            query = query.with_for_update()
        batch = (await db.execute(query)).scalar_one_or_none()
        if batch is None:
            raise NotFoundError(f"Payout batch #{batch_id} not found")
        return batch

    async def batch_records(self, db: AsyncSession, batch_id: int) -> List[CommissionRecord]:
        result = await db.execute(
            select(CommissionRecord)
            .where(CommissionRecord.payout_batch_id == batch_id)
            .order_by(CommissionRecord.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def list_batches(
        self,
        db: AsyncSession,
        organizer_id: int,
        status: Optional[PayoutBatchStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[PayoutBatch], int]:
        query = select(PayoutBatch).where(PayoutBatch.organizer_id == organizer_id)
        if status is not None:
            query = query.where(PayoutBatch.status == status)
        total = await db.scalar(select(func.count()).select_from(query.subquery()))
        query = query.order_by(PayoutBatch.id.desc()).offset((page - 1) * per_page).limit(per_page)
        result = await db.execute(query)
        return list(result.scalars().all()), total or 0

    async def process_batch(
        self,
        db: AsyncSession,
        batch_id: int,
        actor: Actor,
        payment_reference: Optional[str] = None,
        organizer_id: Optional[int] = None,
    ) -> PayoutBatch:
        """
        Mark every member record paid and complete the batch.

        All members are validated before anything is mutated; if any is
        blocked (e.g. disputed since batching) the whole batch fails with
        InvalidRecordStateError naming the blocking records.
        The batch stays draft for a retry; cancel_batch releases its records
        instead.
        """
        batch = await self.get_batch(db, batch_id, organizer_id, lock=True)
        if batch.status != PayoutBatchStatus.DRAFT:
            raise InvalidRecordStateError(
                f"Payout batch #{batch.id} is already {batch.status.value}"
            )

        records = await self.batch_records(db, batch.id)
        payer = actor.acting_as(ActorRole.PAYOUT)

        blocked = []
        for record in records:
            error = transition_error(record, CommissionStatus.PAID, payer)
            if error is not None:
                blocked.append((record, error))

        if blocked:
            for record, error in blocked:
                self.ledger.reject(db, record, CommissionStatus.PAID, payer, error)
            await db.flush()
            states = {record.id: record.status.value for record, _ in blocked}
            logger.warning(f"Payout batch #{batch.id} blocked by records {sorted(states)}")
            raise InvalidRecordStateError(
                f"Payout batch #{batch.id} blocked by records {sorted(states)}",
                record_ids=sorted(states),
                current_states=states,
            )

        paid_at = utcnow()
        per_agent = defaultdict(lambda: {"amount": ZERO, "record_count": 0})
        for record in records:
            await self.ledger.pay(
                db,
                record,
                payer,
                payment_method=batch.payment_method,
                payment_reference=payment_reference,
                paid_at=paid_at,
                batch_id=batch.id,
            )
            per_agent[record.agent_id]["amount"] += record.net_amount
            per_agent[record.agent_id]["record_count"] += 1

        batch.status = PayoutBatchStatus.COMPLETED
        batch.processed_at = paid_at
        batch.payment_reference = payment_reference

        for agent_id, totals in per_agent.items():
            enqueue_notification(
                db,
                NotificationType.PAYOUT_COMPLETED,
                {
                    "payout_batch_id": batch.id,
                    "agent_id": agent_id,
                    "amount": str(totals["amount"]),
                    "record_count": totals["record_count"],
                    "payment_method": batch.payment_method.value,
                    "processed_at": paid_at.isoformat(),
                },
                recipient=actor_label(agent_id),
            )
        await db.flush()

        logger.info(f"Payout batch #{batch.id} completed: {len(records)} records paid")
        return batch

    async def cancel_batch(
        self,
        db: AsyncSession,
        batch_id: int,
        actor: Actor,
        reason: Optional[str] = None,
        organizer_id: Optional[int] = None,
    ) -> PayoutBatch:
        """
        Mark a draft batch failed and release its records.

        Released records keep their status; the payable ones become
        eligible for a new batch. The batch keeps its original total and
        record count, and each release is recorded on the record's audit
        trail.
        """
        batch = await self.get_batch(db, batch_id, organizer_id, lock=True)
        if batch.status != PayoutBatchStatus.DRAFT:
            raise InvalidRecordStateError(
                f"Payout batch #{batch.id} is already {batch.status.value}"
            )

        records = await self.batch_records(db, batch.id)
        for record in records:
            record.payout_batch_id = None
            log_action(
                db,
                record.id,
                AuditAction.REMOVED_FROM_BATCH,
                actor.performed_by,
                details={"payout_batch_id": batch.id, "reason": reason},
                ip_address=actor.ip_address,
            )

        batch.status = PayoutBatchStatus.FAILED
        batch.processing_notes = reason
        await db.flush()

        logger.info(f"Payout batch #{batch.id} cancelled: {len(records)} records released")
        return batch
