"""
Commission engine: turns a completed sale into a pending ledger record.

One sale is one transaction:
    tier volume -> rate -> cap -> attribution -> ledger record -> outbox

The transaction is retried a bounded number of times with exponential
backoff when PostgreSQL reports a serialization failure or deadlock.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commission_engine.config import settings
from commission_engine.db.session import session_scope
from commission_engine.models import (
    AgentPermission,
    CommissionConfig,
    CommissionRecord,
    CommissionStatus,
    CommissionType,
    ConfigStatus,
    LimitBasis,
    NotificationType,
    SalesAttribution,
    TierProgression,
)
from commission_engine.schemas.sales import SaleCompletedEvent, SaleRefundedEvent
from commission_engine.services.attribution import AttributionRecorder
from commission_engine.services.errors import (
    ConfigurationError,
    DuplicateAttributionError,
    InsufficientDataError,
    NotFoundError,
    SerializationConflictError,
)
from commission_engine.services.ledger import Actor, CommissionAmounts, CommissionLedger
from commission_engine.services.limits import LimitEnforcer, LimitResult
from commission_engine.services.money import (
    HUNDRED,
    ZERO,
    ensure_utc,
    quantize,
    to_decimal,
    utcnow,
)
from commission_engine.services.notifier import enqueue_notification
from commission_engine.services.rates import RateResolution, RateResolver
from commission_engine.services.tiers import TierChange, TierProgressionTracker
from commission_engine.utils.audit import actor_label

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

PRE_PAID_STATUSES = frozenset({
    CommissionStatus.PENDING,
    CommissionStatus.APPROVED,
    CommissionStatus.RESOLVED_PAID,
})


def is_serialization_failure(exc: DBAPIError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code in RETRYABLE_SQLSTATES


def parse_sale_event(payload: dict) -> SaleCompletedEvent:
    """Validate an upstream payload; malformed events are not retried."""
    try:
        return SaleCompletedEvent.model_validate(payload)
    except ValidationError as e:
        raise InsufficientDataError(f"Malformed sale event: {e.errors(include_url=False)}") from e


def parse_refund_event(payload: dict) -> SaleRefundedEvent:
    try:
        return SaleRefundedEvent.model_validate(payload)
    except ValidationError as e:
        raise InsufficientDataError(f"Malformed refund event: {e.errors(include_url=False)}") from e


def payable_amounts(
    resolution: RateResolution,
    config: CommissionConfig,
    limit: Optional[LimitResult] = None,
) -> CommissionAmounts:
    """
    Split the payable into commission, bonus and withheld tax.

    A clamp reduces the commission first and the bonus second. With a net
    limit basis the clamped amount is the net, and gross is scaled to match.
    """
    tax_rate = ZERO
    if config.tax_withholding_enabled and config.tax_withholding_rate:
        tax_rate = to_decimal(config.tax_withholding_rate)

    gross = resolution.gross_amount
    tax = quantize(gross * tax_rate / HUNDRED)

    if limit is None or not limit.was_clamped:
        return CommissionAmounts(
            commission_amount=resolution.commission_amount,
            bonus_amount=resolution.bonus_amount,
            tax_amount=tax,
        )

    if config.limit_basis == LimitBasis.NET:
        final_net = limit.final_amount
        net = gross - tax
        final_gross = quantize(gross * final_net / net) if net > 0 else ZERO
        final_gross = max(final_gross, final_net)
        final_tax = final_gross - final_net
    else:
        final_gross = limit.final_amount
        final_tax = quantize(final_gross * tax_rate / HUNDRED)

    commission = min(resolution.commission_amount, final_gross)
    return CommissionAmounts(
        commission_amount=commission,
        bonus_amount=final_gross - commission,
        tax_amount=final_tax,
        was_clamped=True,
        limit_type=limit.limit_type,
    )


@dataclass
class SaleResult:
    attribution: SalesAttribution
    record: Optional[CommissionRecord]
    resolution: Optional[RateResolution] = None
    limit: Optional[LimitResult] = None
    tier_change: Optional[TierChange] = None
    duplicate: bool = False


@dataclass
class RefundResult:
    attribution: SalesAttribution
    record: Optional[CommissionRecord]
    cancelled: bool
    progression: Optional[TierProgression] = None


class CommissionEngine:
    """Coordinates the components for sale and refund events."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff_ms: Optional[int] = None,
    ):
        if session_factory is None:
            from commission_engine.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.retry_attempts = retry_attempts or settings.serialization_retry_attempts
        self.retry_backoff_ms = (
            retry_backoff_ms if retry_backoff_ms is not None else settings.serialization_retry_backoff_ms
        )

        self.tracker = TierProgressionTracker()
        self.resolver = RateResolver(self.tracker)
        self.limits = LimitEnforcer()
        self.attribution = AttributionRecorder()
        self.ledger = CommissionLedger()

    async def _with_retry(self, label: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with session_scope(self.session_factory) as db:
                    return await work(db)
            except DBAPIError as e:
                if not is_serialization_failure(e):
                    raise
                if attempt == self.retry_attempts:
                    logger.error(f"{label}: serialization conflict after {attempt} attempts")
                    raise SerializationConflictError(
                        f"{label} kept conflicting after {attempt} attempts"
                    ) from e
                delay = self.retry_backoff_ms * (2 ** (attempt - 1)) / 1000
                logger.warning(f"{label}: serialization conflict, retry {attempt} in {delay:.3f}s")
                await asyncio.sleep(delay)

        raise SerializationConflictError(f"{label} was not attempted")

    async def _load_context(self, db: AsyncSession, permission_id: int):
        permission = await db.get(AgentPermission, permission_id)
        if permission is None:
            raise InsufficientDataError(f"Unknown agent permission #{permission_id}")
        if not permission.is_active:
            raise InsufficientDataError(
                f"Agent permission #{permission_id} is {permission.status.value}"
            )

        config = await db.scalar(
            select(CommissionConfig).where(CommissionConfig.organizer_id == permission.organizer_id)
        )
        if config is None:
            raise ConfigurationError(
                f"Organizer {permission.organizer_id} has no commission configuration"
            )
        if config.status != ConfigStatus.ACTIVE:
            raise ConfigurationError(
                f"Commission configuration of organizer {permission.organizer_id} is inactive"
            )
        return permission, config

    def tracks_volume(self, permission: AgentPermission, config: CommissionConfig) -> bool:
        return config.tier_system_enabled or permission.commission_type == CommissionType.TIERED

    async def _process_sale(self, db: AsyncSession, event: SaleCompletedEvent) -> SaleResult:
        existing = await self.attribution.get_by_order(db, event.order_id)
        if existing is not None:
            raise DuplicateAttributionError(existing)

        permission, config = await self._load_context(db, event.agent_permission_id)
        occurred_at = ensure_utc(event.occurred_at)
        sale_amount = quantize(event.sale_amount)

        tier_update = None
        if self.tracks_volume(permission, config):
            tier_update = await self.tracker.record_sale(
                db, config, permission.agent_id, permission.organizer_id, sale_amount, occurred_at,
            )

        resolution = await self.resolver.resolve(
            db,
            permission,
            config,
            sale_amount,
            event.event_id,
            occurred_at,
            tier=tier_update.tier if tier_update else None,
        )

        unclamped = payable_amounts(resolution, config)
        proposed = unclamped.net_amount if config.limit_basis == LimitBasis.NET else resolution.gross_amount
        limit = await self.limits.enforce(db, permission, proposed, occurred_at, config.limit_basis)
        amounts = payable_amounts(resolution, config, limit)

        attribution = await self.attribution.attribute(
            db,
            order_id=event.order_id,
            permission=permission,
            sale_amount=sale_amount,
            method=event.attribution_method,
            commission_amount=amounts.commission_amount,
            commission_rate=resolution.rate,
            attributed_at=occurred_at,
            currency=event.currency,
            event_id=event.event_id,
            link_id=event.link_id,
            referrer_data=event.referrer_data,
            link_commission=amounts.commission_amount + amounts.bonus_amount,
        )

        details = {}
        if resolution.tier_details:
            details["tier"] = resolution.tier_details
        if resolution.override_id:
            details["override_id"] = resolution.override_id
        if limit.was_clamped:
            details["proposed_amount"] = str(proposed)
            details["limit_type"] = limit.limit_type

        record = await self.ledger.create_record(
            db,
            attribution,
            permission,
            rate=resolution.rate,
            rate_source=resolution.source,
            amounts=amounts,
            details=details,
        )

        tier_change = tier_update.change if tier_update else None
        if tier_update is not None and tier_update.promoted:
            change = tier_update.change
            enqueue_notification(
                db,
                NotificationType.TIER_PROMOTED,
                {
                    "agent_id": permission.agent_id,
                    "organizer_id": permission.organizer_id,
                    "tier_id": change.new_tier.id,
                    "tier_name": change.new_tier.name,
                    "previous_tier": change.previous_tier.name if change.previous_tier else None,
                    "sales_volume": str(change.history_entry.sales_volume_at_promotion),
                    "promoted_at": occurred_at.isoformat(),
                },
                recipient=actor_label(permission.agent_id),
            )
            await db.flush()

        logger.info(
            f"Sale {event.order_id}: record #{record.id} {record.net_amount} "
            f"({resolution.source.value} {resolution.rate}%)"
        )
        return SaleResult(
            attribution=attribution,
            record=record,
            resolution=resolution,
            limit=limit,
            tier_change=tier_change,
        )

    async def process_sale(self, event: SaleCompletedEvent) -> SaleResult:
        """
        Attribute a completed sale and create its pending commission record.

        Redelivery of an already attributed order rolls the transaction
        back and returns the existing attribution with duplicate=True.
        """
        try:
            return await self._with_retry(
                f"sale {event.order_id}",
                lambda db: self._process_sale(db, event),
            )
        except DuplicateAttributionError:
            async with self.session_factory() as db:
                existing = await self.attribution.get_by_order(db, event.order_id)
                record = await self.ledger.get_by_attribution(db, existing.id)
            return SaleResult(attribution=existing, record=record, duplicate=True)

    async def _process_refund(self, db: AsyncSession, event: SaleRefundedEvent) -> RefundResult:
        attribution = await self.attribution.get_by_order(db, event.order_id)
        if attribution is None:
            raise NotFoundError(f"No attribution for order {event.order_id}")

        refund_amount = quantize(event.refund_amount) if event.refund_amount is not None else attribution.sale_amount
        if refund_amount <= 0 or refund_amount > attribution.sale_amount:
            raise InsufficientDataError(
                f"Refund of {refund_amount} is outside (0, {attribution.sale_amount}]"
            )

        permission = await db.get(AgentPermission, attribution.permission_id)
        config = await db.scalar(
            select(CommissionConfig).where(CommissionConfig.organizer_id == permission.organizer_id)
        )
        refunded_at = ensure_utc(event.occurred_at) if event.occurred_at else utcnow()

        progression = None
        if config is not None and self.tracks_volume(permission, config):
            progression = await self.tracker.record_refund(
                db,
                config,
                permission.agent_id,
                permission.organizer_id,
                refund_amount,
                sale_at=ensure_utc(attribution.attributed_at),
                at=refunded_at,
            )

        record = await self.ledger.get_by_attribution(db, attribution.id)
        cancelled = False
        full_refund = refund_amount == attribution.sale_amount
        if record is not None and full_refund and record.status in PRE_PAID_STATUSES:
            await self.ledger.transition(
                db,
                record,
                CommissionStatus.CANCELLED,
                Actor.system(),
                details={"reason": "refund", "refund_amount": str(refund_amount)},
            )
            record.notes = f"Cancelled: order {event.order_id} refunded"
            await db.flush()
            cancelled = True
        elif record is not None:
            logger.warning(
                f"Refund of order {event.order_id} left record #{record.id} "
                f"({record.status.value}) in place"
            )

        return RefundResult(
            attribution=attribution,
            record=record,
            cancelled=cancelled,
            progression=progression,
        )

    async def process_refund(self, event: SaleRefundedEvent) -> RefundResult:
        """Lower rolling volume and cancel the not-yet-paid record on a full refund."""
        return await self._with_retry(
            f"refund {event.order_id}",
            lambda db: self._process_refund(db, event),
        )
