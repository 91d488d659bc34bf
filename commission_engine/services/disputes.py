"""
Payment disputes against commission records.

A dispute may be opened while a record is pending, approved or paid.
Pre-paid records move to `disputed`; paid records keep their state and
any correction settles through an adjustment record.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AuditAction,
    CommissionRecord,
    CommissionStatus,
    DisputeOutcome,
    DisputeStatus,
    DisputeType,
    NotificationType,
    PaymentDispute,
)
from commission_engine.services.errors import (
    InvalidRecordStateError,
    NotFoundError,
    PermissionDeniedError,
)
from commission_engine.services.ledger import Actor, ActorRole, CommissionLedger
from commission_engine.services.money import quantize, utcnow
from commission_engine.services.notifier import enqueue_notification
from commission_engine.utils.audit import actor_label, log_action

logger = logging.getLogger(__name__)

DISPUTABLE_STATUSES = frozenset({
    CommissionStatus.PENDING,
    CommissionStatus.APPROVED,
    CommissionStatus.PAID,
})


class DisputeManager:
    """Opens and resolves disputes; the only actor that moves records in and out of `disputed`."""

    def __init__(self, ledger: Optional[CommissionLedger] = None):
        self.ledger = ledger or CommissionLedger()

    async def get_dispute(
        self,
        db: AsyncSession,
        dispute_id: int,
        organizer_id: Optional[int] = None,
        lock: bool = False,
    ) -> PaymentDispute:
        query = select(PaymentDispute).where(PaymentDispute.id == dispute_id)
        if organizer_id is not None:
            query = query.join(
                CommissionRecord, CommissionRecord.id == PaymentDispute.record_id
            ).where(CommissionRecord.organizer_id == organizer_id)
        if lock:
            query = query.with_for_update()
        dispute = (await db.execute(query)).scalar_one_or_none()
        if dispute is None:
            raise NotFoundError(f"Dispute #{dispute_id} not found")
        return dispute

    async def list_disputes(
        self,
        db: AsyncSession,
        organizer_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        status: Optional[DisputeStatus] = None,
    ) -> List[PaymentDispute]:
        query = select(PaymentDispute)
        if organizer_id is not None:
            query = query.join(
                CommissionRecord, CommissionRecord.id == PaymentDispute.record_id
            ).where(CommissionRecord.organizer_id == organizer_id)
        if agent_id is not None:
            query = query.where(PaymentDispute.agent_id == agent_id)
        if status is not None:
            query = query.where(PaymentDispute.status == status)
        result = await db.execute(query.order_by(PaymentDispute.id.desc()))
        return list(result.scalars().all())

    async def open(
        self,
        db: AsyncSession,
        record_id: int,
        dispute_type: DisputeType,
        amount_disputed: Decimal,
        actor: Actor,
        evidence: Optional[list] = None,
        description: Optional[str] = None,
    ) -> PaymentDispute:
        record = await self.ledger.get_record(db, record_id, lock=True)

        if actor.role == ActorRole.AGENT and record.agent_id != actor.user_id:
            raise PermissionDeniedError(f"Record #{record.id} belongs to another agent")
        if actor.role == ActorRole.ORGANIZER and record.organizer_id != actor.user_id:
            raise NotFoundError(f"Commission record #{record_id} not found")

        manager = actor.acting_as(ActorRole.DISPUTE_MANAGER)

        if record.status not in DISPUTABLE_STATUSES:
            error = InvalidRecordStateError(
                f"Record #{record.id} cannot be disputed while {record.status.value}",
                record_ids=[record.id],
                current_states={record.id: record.status.value},
            )
            self.ledger.reject(db, record, CommissionStatus.DISPUTED, manager, error)
            await db.flush()
            raise error

        already_open = await db.scalar(
            select(PaymentDispute.id).where(
                PaymentDispute.record_id == record.id,
                PaymentDispute.status.in_([DisputeStatus.OPEN, DisputeStatus.INVESTIGATING]),
            )
        )
        if already_open:
            raise InvalidRecordStateError(
                f"Record #{record.id} already has open dispute #{already_open}",
                record_ids=[record.id],
                current_states={record.id: record.status.value},
            )

        status_at_open = record.status
        if record.status == CommissionStatus.PAID:
            # Paid records are immutable; the dispute runs alongside them
            log_action(
                db,
                record.id,
                AuditAction.DISPUTED,
                manager.performed_by,
                details={"record_status": record.status.value, "dispute_type": dispute_type.value},
                ip_address=manager.ip_address,
            )
        else:
            await self.ledger.transition(
                db, record, CommissionStatus.DISPUTED, manager,
                details={"dispute_type": dispute_type.value},
            )

        dispute = PaymentDispute(
            record_id=record.id,
            agent_id=record.agent_id,
            dispute_type=dispute_type,
            description=description,
            amount_disputed=quantize(amount_disputed),
            evidence=evidence,
            status=DisputeStatus.OPEN,
            record_status_at_open=status_at_open.value,
            opened_by=actor.performed_by,
        )
        db.add(dispute)
        await db.flush()

        logger.info(f"Dispute #{dispute.id} opened on record #{record.id} ({dispute_type.value})")
        return dispute

    async def mark_investigating(
        self,
        db: AsyncSession,
        dispute_id: int,
        actor: Actor,
        organizer_id: Optional[int] = None,
    ) -> PaymentDispute:
        dispute = await self.get_dispute(db, dispute_id, organizer_id, lock=True)
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidRecordStateError(
                f"Dispute #{dispute.id} is {dispute.status.value}, not open",
                record_ids=[dispute.record_id],
            )
        dispute.status = DisputeStatus.INVESTIGATING
        await db.flush()
        logger.info(f"Dispute #{dispute.id} under investigation by {actor.performed_by}")
        return dispute

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: int,
        outcome: DisputeOutcome,
        actor: Actor,
        resolution_amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        organizer_id: Optional[int] = None,
    ) -> PaymentDispute:
        """
        Close a dispute.

        resolved_paid with a resolution_amount that differs from the
        record's net amount creates an adjustment record for the delta.
        """
        dispute = await self.get_dispute(db, dispute_id, organizer_id, lock=True)
        if not dispute.is_open:
            raise InvalidRecordStateError(
                f"Dispute #{dispute.id} is already {dispute.status.value}",
                record_ids=[dispute.record_id],
            )

        record = await self.ledger.get_record(db, dispute.record_id, lock=True)
        manager = actor.acting_as(ActorRole.DISPUTE_MANAGER)
        details = {"dispute_id": dispute.id, "outcome": outcome.value}

        if outcome == DisputeOutcome.RESOLVED_PAID:
            target = CommissionStatus.RESOLVED_PAID
            dispute.status = DisputeStatus.RESOLVED
        else:
            target = CommissionStatus.RESOLVED_REJECTED
            dispute.status = DisputeStatus.REJECTED

        if record.status == CommissionStatus.DISPUTED:
            await self.ledger.transition(db, record, target, manager, details=details)
        else:
            log_action(
                db,
                record.id,
                AuditAction.DISPUTE_RESOLVED,
                manager.performed_by,
                details={**details, "record_status": record.status.value},
                ip_address=manager.ip_address,
            )

        adjustment = None
        if outcome == DisputeOutcome.RESOLVED_PAID and resolution_amount is not None:
            resolution_amount = quantize(resolution_amount)
            delta = resolution_amount - record.net_amount
            if delta != 0:
                adjustment = await self.ledger.create_adjustment(
                    db, record, delta, manager,
                    notes=f"Dispute #{dispute.id} resolution",
                )
                dispute.adjustment_record_id = adjustment.id

        dispute.outcome = outcome
        dispute.resolution_amount = resolution_amount
        dispute.resolution_notes = notes
        dispute.resolved_by = actor.performed_by
        dispute.resolved_at = utcnow()

        enqueue_notification(
            db,
            NotificationType.DISPUTE_RESOLVED,
            {
                "dispute_id": dispute.id,
                "record_id": record.id,
                "agent_id": record.agent_id,
                "outcome": outcome.value,
                "resolution_amount": str(resolution_amount) if resolution_amount is not None else None,
                "adjustment_record_id": adjustment.id if adjustment else None,
            },
            recipient=actor_label(record.agent_id),
        )
        await db.flush()

        logger.info(f"Dispute #{dispute.id} resolved: {outcome.value}")
        return dispute
