"""
Seed demo data for the commission engine.

Usage:
    python scripts/seed_test_data.py

Or with custom DATABASE_URL:
    DATABASE_URL="postgresql://..." python scripts/seed_test_data.py

This script creates:
- Demo organizer and agent accounts (if not exists)
- A commission plan with Bronze / Silver / Gold tiers
- The agent's permission for the organizer
- A few sales pushed through the engine, one of them crossing into Silver
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from commission_engine.db import AsyncSessionLocal
from commission_engine.models import AttributionMethod, CommissionType, User, UserRole
from commission_engine.schemas.commission import (
    CommissionConfigUpdate,
    PermissionUpsert,
    TierInput,
)
from commission_engine.schemas.sales import SaleCompletedEvent
from commission_engine.services import CommissionEngine, commission_config
from commission_engine.utils.password import hash_password


DEMO_TIERS = [
    TierInput(name="Bronze", min_sales_volume=Decimal("0"), max_sales_volume=Decimal("2500"),
              commission_rate=Decimal("5.00"), color="#cd7f32"),
    TierInput(name="Silver", min_sales_volume=Decimal("2500"), max_sales_volume=Decimal("10000"),
              commission_rate=Decimal("6.50"), bonus_percentage=Decimal("0.50"), color="#c0c0c0"),
    TierInput(name="Gold", min_sales_volume=Decimal("10000"),
              commission_rate=Decimal("8.00"), bonus_percentage=Decimal("1.00"), color="#ffd700"),
]

DEMO_SALES = [Decimal("1200.00"), Decimal("1200.00"), Decimal("200.00")]


async def get_or_create_user(db, username: str, role: UserRole, display_name: str) -> User:
    user = await db.scalar(select(User).where(User.username == username))
    if user:
        print(f"{role.value} already exists: {username} (id={user.id})")
        return user

    user = User(
        username=username,
        password_hash=hash_password("demo1234"),
        role=role,
        display_name=display_name,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    print(f"Created {role.value}: {username} / demo1234")
    return user


async def seed_all():
    print("\n=== Creating demo data ===\n")

    async with AsyncSessionLocal() as db:
        organizer = await get_or_create_user(db, "demo_organizer", UserRole.ORGANIZER, "Demo Events")
        agent = await get_or_create_user(db, "demo_agent", UserRole.AGENT, "Demo Agent")

        config = await commission_config.upsert_config(
            db,
            organizer.id,
            CommissionConfigUpdate(name="Demo plan", default_rate=Decimal("5.00")),
        )
        await commission_config.replace_tiers(db, config, DEMO_TIERS)
        await commission_config.upsert_config(
            db, organizer.id, CommissionConfigUpdate(tier_system_enabled=True),
        )
        permission = await commission_config.upsert_permission(
            db,
            organizer.id,
            agent.id,
            PermissionUpsert(commission_type=CommissionType.TIERED, max_daily_sales=Decimal("500")),
        )
        await db.commit()
        print(f"Commission plan #{config.id} with {len(DEMO_TIERS)} tiers, permission #{permission.id}")

    engine = CommissionEngine()
    started = datetime.now(timezone.utc) - timedelta(minutes=len(DEMO_SALES))
    for i, amount in enumerate(DEMO_SALES, start=1):
        result = await engine.process_sale(SaleCompletedEvent(
            order_id=f"demo-{permission.id}-{i}",
            agent_permission_id=permission.id,
            sale_amount=amount,
            event_id="demo-event",
            attribution_method=AttributionMethod.PROMO_CODE,
            occurred_at=started + timedelta(minutes=i),
        ))
        if result.duplicate:
            print(f"Sale demo-{permission.id}-{i} already recorded")
            continue
        record = result.record
        print(
            f"Sale {amount}: record #{record.id} commission {record.commission_amount} "
            f"+ bonus {record.bonus_amount} ({result.resolution.source.value} {record.commission_rate}%)"
        )

    print("\n" + "=" * 50)
    print("DEMO DATA CREATED")
    print("=" * 50)
    print("Login as demo_organizer / demo1234 or demo_agent / demo1234")


if __name__ == "__main__":
    asyncio.run(seed_all())
