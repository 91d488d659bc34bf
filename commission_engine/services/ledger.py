"""
Commission ledger: authoritative store of commission records.

State machine:
    pending  -> approved -> paid
    pending | approved -> disputed -> resolved_paid | resolved_rejected
    pending | approved | resolved_paid -> cancelled
    resolved_paid -> paid (through a payout batch)

Terminal: paid, resolved_rejected, cancelled.
Only organizers approve, cancel and mark paid; only the dispute manager
enters or leaves `disputed`. Every attempt, accepted or rejected, is
appended to the record's audit trail.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import (
    AgentPermission,
    AuditAction,
    CommissionAuditEntry,
    CommissionRecord,
    CommissionStatus,
    PaymentMethod,
    RateSource,
    RecordKind,
    SalesAttribution,
)
from commission_engine.services.errors import (
    InvalidRecordStateError,
    NotFoundError,
    PermissionDeniedError,
)
from commission_engine.services.money import ZERO, quantize, utcnow
from commission_engine.utils.audit import SYSTEM_ACTOR, actor_label, log_action

logger = logging.getLogger(__name__)


class ActorRole(str, Enum):
    """Capacity in which a transition is attempted."""
    ORGANIZER = "organizer"
    AGENT = "agent"
    SYSTEM = "system"
    DISPUTE_MANAGER = "dispute_manager"
    PAYOUT = "payout"


@dataclass
class Actor:
    role: ActorRole
    performed_by: str = SYSTEM_ACTOR
    user_id: Optional[int] = None
    ip_address: Optional[str] = None

    @classmethod
    def organizer(cls, user_id: int, ip_address: Optional[str] = None) -> "Actor":
        return cls(ActorRole.ORGANIZER, actor_label(user_id), user_id, ip_address)

    @classmethod
    def agent(cls, user_id: int, ip_address: Optional[str] = None) -> "Actor":
        return cls(ActorRole.AGENT, actor_label(user_id), user_id, ip_address)

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorRole.SYSTEM)

    def acting_as(self, role: ActorRole) -> "Actor":
        """Same identity, different capacity (e.g. an organizer resolving a dispute)."""
        return Actor(role, self.performed_by, self.user_id, self.ip_address)


S = CommissionStatus
R = ActorRole

# (from, to) -> roles allowed to perform it
TRANSITIONS: Dict[Tuple[CommissionStatus, CommissionStatus], FrozenSet[ActorRole]] = {
    (S.PENDING, S.APPROVED): frozenset({R.ORGANIZER}),
    (S.APPROVED, S.PAID): frozenset({R.ORGANIZER, R.PAYOUT}),
    (S.RESOLVED_PAID, S.PAID): frozenset({R.ORGANIZER, R.PAYOUT}),
    (S.PENDING, S.DISPUTED): frozenset({R.DISPUTE_MANAGER}),
    (S.APPROVED, S.DISPUTED): frozenset({R.DISPUTE_MANAGER}),
    (S.DISPUTED, S.RESOLVED_PAID): frozenset({R.DISPUTE_MANAGER}),
    (S.DISPUTED, S.RESOLVED_REJECTED): frozenset({R.DISPUTE_MANAGER}),
    (S.PENDING, S.CANCELLED): frozenset({R.ORGANIZER, R.SYSTEM}),
    (S.APPROVED, S.CANCELLED): frozenset({R.ORGANIZER, R.SYSTEM}),
    (S.RESOLVED_PAID, S.CANCELLED): frozenset({R.ORGANIZER, R.SYSTEM}),
}

TRANSITION_ACTIONS = {
    S.APPROVED: AuditAction.APPROVED,
    S.PAID: AuditAction.MARKED_PAID,
    S.DISPUTED: AuditAction.DISPUTED,
    S.RESOLVED_PAID: AuditAction.DISPUTE_RESOLVED,
    S.RESOLVED_REJECTED: AuditAction.DISPUTE_RESOLVED,
    S.CANCELLED: AuditAction.CANCELLED,
}


def transition_error(record: CommissionRecord, target: CommissionStatus, actor: Actor):
    """Return the error a transition would raise, or None if it is allowed."""
    allowed_roles = TRANSITIONS.get((record.status, target))
    if allowed_roles is None:
        return InvalidRecordStateError(
            f"Record #{record.id} cannot move from {record.status.value} to {target.value}",
            record_ids=[record.id],
            current_states={record.id: record.status.value},
        )
    if actor.role not in allowed_roles:
        return PermissionDeniedError(
            f"{actor.role.value} may not move record #{record.id} "
            f"from {record.status.value} to {target.value}"
        )
    return None


@dataclass
class CommissionAmounts:
    """Final payable split of one commission."""

    commission_amount: Decimal
    bonus_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    was_clamped: bool = False
    limit_type: Optional[str] = None

    @property
    def net_amount(self) -> Decimal:
        return self.commission_amount + self.bonus_amount - self.tax_amount


class CommissionLedger:
    """Creates commission records and moves them through their lifecycle."""

    async def get_record(
        self,
        db: AsyncSession,
        record_id: int,
        organizer_id: Optional[int] = None,
        lock: bool = False,
    ) -> CommissionRecord:
        query = select(CommissionRecord).where(CommissionRecord.id == record_id)
        if organizer_id is not None:
            query = query.where(CommissionRecord.organizer_id == organizer_id)
        if lock:
            query = query.with_for_update()
        record = (await db.execute(query)).scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Commission record #{record_id} not found")
        return record

    async def get_by_attribution(self, db: AsyncSession, attribution_id: int) -> Optional[CommissionRecord]:
        return await db.scalar(
            select(CommissionRecord).where(CommissionRecord.attribution_id == attribution_id)
        )

    async def create_record(
        self,
        db: AsyncSession,
        attribution: SalesAttribution,
        permission: AgentPermission,
        rate: Decimal,
        rate_source: RateSource,
        amounts: CommissionAmounts,
        details: Optional[dict] = None,
    ) -> CommissionRecord:
        record = CommissionRecord(
            kind=RecordKind.COMMISSION,
            organizer_id=permission.organizer_id,
            agent_id=permission.agent_id,
            permission_id=permission.id,
            attribution_id=attribution.id,
            sale_amount=attribution.sale_amount,
            currency=attribution.currency,
            commission_rate=rate,
            rate_source=rate_source,
            commission_amount=amounts.commission_amount,
            bonus_amount=amounts.bonus_amount,
            tax_amount=amounts.tax_amount,
            net_amount=amounts.net_amount,
            was_clamped=amounts.was_clamped,
            limit_type=amounts.limit_type,
            status=CommissionStatus.PENDING,
            earned_at=attribution.attributed_at,
        )
        db.add(record)
        await db.flush()

        log_action(
            db,
            record.id,
            AuditAction.RECORD_CREATED,
            SYSTEM_ACTOR,
            details={
                "order_id": attribution.order_id,
                "rate": str(rate),
                "rate_source": rate_source.value,
                "commission_amount": str(record.commission_amount),
                "bonus_amount": str(record.bonus_amount),
                "net_amount": str(record.net_amount),
                "was_clamped": record.was_clamped,
                **(details or {}),
            },
        )
        await db.flush()
        return record

    async def create_adjustment(
        self,
        db: AsyncSession,
        original: CommissionRecord,
        delta: Decimal,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> CommissionRecord:
        """
        Settle a correction as a new approved record for the delta.

        The original record and any batch it belongs to stay untouched.
        """
        delta = quantize(delta)
        adjustment = CommissionRecord(
            kind=RecordKind.ADJUSTMENT,
            organizer_id=original.organizer_id,
            agent_id=original.agent_id,
            permission_id=original.permission_id,
            adjusts_record_id=original.id,
            sale_amount=ZERO,
            currency=original.currency,
            commission_rate=ZERO,
            commission_amount=delta,
            bonus_amount=ZERO,
            tax_amount=ZERO,
            net_amount=delta,
            status=CommissionStatus.APPROVED,
            earned_at=utcnow(),
            approved_at=utcnow(),
            approved_by=actor.user_id,
            notes=notes,
        )
        db.add(adjustment)
        await db.flush()

        log_action(
            db,
            adjustment.id,
            AuditAction.ADJUSTMENT_CREATED,
            actor.performed_by,
            details={"adjusts_record_id": original.id, "delta": str(delta)},
            ip_address=actor.ip_address,
        )
        await db.flush()
        logger.info(f"Adjustment #{adjustment.id} of {delta} created for record #{original.id}")
        return adjustment

    def reject(
        self,
        db: AsyncSession,
        record: CommissionRecord,
        target: CommissionStatus,
        actor: Actor,
        error: Exception,
    ) -> None:
        """Audit a refused transition attempt."""
        log_action(
            db,
            record.id,
            AuditAction.TRANSITION_REJECTED,
            actor.performed_by,
            details={
                "from": record.status.value,
                "to": target.value,
                "role": actor.role.value,
                "reason": str(error),
            },
            succeeded=False,
            ip_address=actor.ip_address,
        )
        logger.warning(f"Rejected transition: {error}")

    async def transition(
        self,
        db: AsyncSession,
        record: CommissionRecord,
        target: CommissionStatus,
        actor: Actor,
        details: Optional[dict] = None,
    ) -> CommissionRecord:
        error = transition_error(record, target, actor)
        if error is not None:
            self.reject(db, record, target, actor, error)
            await db.flush()
            raise error

        previous = record.status
        record.status = target
        log_action(
            db,
            record.id,
            TRANSITION_ACTIONS[target],
            actor.performed_by,
            details={"from": previous.value, "to": target.value, **(details or {})},
            ip_address=actor.ip_address,
        )
        await db.flush()
        logger.info(f"Record #{record.id}: {previous.value} -> {target.value} by {actor.performed_by}")
        return record

    async def approve(
        self,
        db: AsyncSession,
        record_id: int,
        actor: Actor,
        organizer_id: Optional[int] = None,
    ) -> CommissionRecord:
        record = await self.get_record(db, record_id, organizer_id, lock=True)
        await self.transition(db, record, CommissionStatus.APPROVED, actor)
        record.approved_at = utcnow()
        record.approved_by = actor.user_id
        await db.flush()
        return record

    async def mark_paid(
        self,
        db: AsyncSession,
        record_id: int,
        actor: Actor,
        payment_method: Optional[PaymentMethod] = None,
        payment_reference: Optional[str] = None,
        organizer_id: Optional[int] = None,
    ) -> CommissionRecord:
        record = await self.get_record(db, record_id, organizer_id, lock=True)
        return await self.pay(db, record, actor, payment_method, payment_reference)

    async def pay(
        self,
        db: AsyncSession,
        record: CommissionRecord,
        actor: Actor,
        payment_method: Optional[PaymentMethod] = None,
        payment_reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        batch_id: Optional[int] = None,
    ) -> CommissionRecord:
        details = {}
        if payment_method is not None:
            details["payment_method"] = payment_method.value
        if batch_id is not None:
            details["payout_batch_id"] = batch_id
        await self.transition(db, record, CommissionStatus.PAID, actor, details=details)
        record.paid_at = paid_at or utcnow()
        if payment_method is not None:
            record.payment_method = payment_method
        if payment_reference is not None:
            record.payment_reference = payment_reference
        await db.flush()
        return record

    async def cancel(
        self,
        db: AsyncSession,
        record_id: int,
        actor: Actor,
        reason: Optional[str] = None,
        organizer_id: Optional[int] = None,
    ) -> CommissionRecord:
        record = await self.get_record(db, record_id, organizer_id, lock=True)
        await self.transition(
            db, record, CommissionStatus.CANCELLED, actor,
            details={"reason": reason} if reason else None,
        )
        if reason:
            record.notes = reason
            await db.flush()
        return record

    async def list_records(
        self,
        db: AsyncSession,
        organizer_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        status: Optional[CommissionStatus] = None,
        kind: Optional[RecordKind] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[CommissionRecord], int]:
        query = select(CommissionRecord)
        if organizer_id is not None:
            query = query.where(CommissionRecord.organizer_id == organizer_id)
        if agent_id is not None:
            query = query.where(CommissionRecord.agent_id == agent_id)
        if status is not None:
            query = query.where(CommissionRecord.status == status)
        if kind is not None:
            query = query.where(CommissionRecord.kind == kind)
        if start_date:
            query = query.where(CommissionRecord.earned_at >= start_date)
        if end_date:
            query = query.where(CommissionRecord.earned_at <= end_date)

        total = await db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(CommissionRecord.earned_at.desc(), CommissionRecord.id.desc())
        query = query.offset((page - 1) * per_page).limit(per_page)
        result = await db.execute(query)
        return list(result.scalars().all()), total or 0

    async def audit_trail(self, db: AsyncSession, record_id: int) -> List[CommissionAuditEntry]:
        result = await db.execute(
            select(CommissionAuditEntry)
            .where(CommissionAuditEntry.record_id == record_id)
            .order_by(CommissionAuditEntry.id)
        )
        return list(result.scalars().all())

    async def summary_for_agent(
        self,
        db: AsyncSession,
        agent_id: int,
        organizer_id: Optional[int] = None,
    ) -> dict:
        """Earnings per lifecycle bucket, in net amounts."""

        def bucket(*statuses):
            return func.coalesce(
                func.sum(
                    case(
                        (CommissionRecord.status.in_(statuses), CommissionRecord.net_amount),
                        else_=0,
                    )
                ),
                0,
            )

        query = select(
            bucket(S.PENDING).label("pending"),
            bucket(S.APPROVED, S.RESOLVED_PAID).label("approved"),
            bucket(S.PAID).label("paid"),
            bucket(S.DISPUTED).label("disputed"),
            func.count(
                case((CommissionRecord.kind == RecordKind.COMMISSION, CommissionRecord.id))
            ).label("commission_count"),
        ).where(CommissionRecord.agent_id == agent_id)
        if organizer_id is not None:
            query = query.where(CommissionRecord.organizer_id == organizer_id)
        row = (await db.execute(query)).one()

        pending = quantize(row.pending)
        approved = quantize(row.approved)
        paid = quantize(row.paid)
        disputed = quantize(row.disputed)
        total_earned = pending + approved + paid + disputed
        count = row.commission_count or 0

        return {
            "agent_id": agent_id,
            "total_earned": total_earned,
            "pending_amount": pending,
            "approved_amount": approved,
            "paid_amount": paid,
            "disputed_amount": disputed,
            "commission_count": count,
            "average_commission": quantize(total_earned / count) if count else ZERO,
        }
