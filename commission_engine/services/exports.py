"""
CSV exports for accounting.
"""

import csv
import io
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models import CommissionRecord, CommissionTier, User
from commission_engine.services.money import ensure_utc

PAYMENT_HISTORY_COLUMNS = [
    "Agent",
    "Period",
    "Sales",
    "Commission",
    "Net Amount",
    "Status",
    "Payment Method",
    "Paid Date",
]

TIER_TABLE_COLUMNS = [
    "Tier Name",
    "Min Sales Volume",
    "Max Sales Volume",
    "Commission Rate",
    "Bonus Rate",
]


async def payment_history_csv(
    db: AsyncSession,
    organizer_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    agent_id: Optional[int] = None,
) -> str:
    """One row per ledger record, oldest first."""
    query = (
        select(CommissionRecord, User.display_name)
        .join(User, User.id == CommissionRecord.agent_id)
        .where(CommissionRecord.organizer_id == organizer_id)
    )
    if start_date:
        query = query.where(CommissionRecord.earned_at >= start_date)
    if end_date:
        query = query.where(CommissionRecord.earned_at <= end_date)
    if agent_id is not None:
        query = query.where(CommissionRecord.agent_id == agent_id)
    query = query.order_by(CommissionRecord.earned_at, CommissionRecord.id)

    rows = (await db.execute(query)).all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(PAYMENT_HISTORY_COLUMNS)
    for record, agent_name in rows:
        paid_at = ensure_utc(record.paid_at)
        writer.writerow([
            agent_name,
            ensure_utc(record.earned_at).strftime("%Y-%m"),
            f"{record.sale_amount:.2f}",
            f"{record.commission_amount + record.bonus_amount:.2f}",
            f"{record.net_amount:.2f}",
            record.status.value,
            record.payment_method.value if record.payment_method else "",
            paid_at.strftime("%Y-%m-%d") if paid_at else "",
        ])
    return output.getvalue()


def tier_table_csv(tiers: Sequence[CommissionTier]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(TIER_TABLE_COLUMNS)
    for tier in tiers:
        writer.writerow([
            tier.name,
            f"{tier.min_sales_volume:.2f}",
            f"{tier.max_sales_volume:.2f}" if tier.max_sales_volume is not None else "",
            f"{tier.commission_rate:.2f}",
            f"{tier.bonus_percentage:.2f}" if tier.bonus_percentage is not None else "",
        ])
    return output.getvalue()
