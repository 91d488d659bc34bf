"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INGEST_API_KEY", "test-ingest-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from commission_engine.models import (
    AgentPermission,
    AttributionMethod,
    Base,
    CommissionConfig,
    CommissionTier,
    CommissionType,
    RateSource,
    User,
    UserRole,
)
from commission_engine.services.attribution import AttributionRecorder
from commission_engine.services.ledger import CommissionAmounts, CommissionLedger
from commission_engine.utils.password import hash_password


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Mid-month so day/month windows are unambiguous
SALE_AT = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

TEST_PASSWORD = "password123"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory with the same options as the application's."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


# ── Domain fixtures ───────────────────────────────────────


async def make_user(db, username: str, role: UserRole) -> User:
    user = User(
        username=username,
        password_hash=TEST_PASSWORD_HASH,
        role=role,
        display_name=username.replace("_", " ").title(),
        is_active=True,
    )
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def organizer(db_session):
    return await make_user(db_session, "test_organizer", UserRole.ORGANIZER)


@pytest_asyncio.fixture
async def agent(db_session):
    return await make_user(db_session, "test_agent", UserRole.AGENT)


@pytest_asyncio.fixture
async def config(db_session, organizer):
    config = CommissionConfig(
        organizer_id=organizer.id,
        name="Test plan",
        default_rate=Decimal("5.00"),
    )
    db_session.add(config)
    await db_session.flush()
    return config


@pytest_asyncio.fixture
async def tiers(db_session, config):
    """Bronze [0, 2500) at 5%, Silver [2500, inf) at 6.5% + 0.5% bonus."""
    bronze = CommissionTier(
        config_id=config.id,
        name="Bronze",
        min_sales_volume=Decimal("0"),
        max_sales_volume=Decimal("2500"),
        commission_rate=Decimal("5.00"),
    )
    silver = CommissionTier(
        config_id=config.id,
        name="Silver",
        min_sales_volume=Decimal("2500"),
        max_sales_volume=None,
        commission_rate=Decimal("6.50"),
        bonus_percentage=Decimal("0.50"),
    )
    db_session.add_all([bronze, silver])
    config.tier_system_enabled = True
    await db_session.flush()
    return [bronze, silver]


@pytest_asyncio.fixture
async def permission(db_session, organizer, agent, config):
    permission = AgentPermission(
        organizer_id=organizer.id,
        agent_id=agent.id,
        commission_type=CommissionType.PERCENTAGE,
    )
    db_session.add(permission)
    await db_session.flush()
    return permission


async def make_record(db, permission, order_id: str, net: str = "50.00", sale: str = "1000.00", earned_at=SALE_AT):
    """Attribute an order and create its pending commission record."""
    attribution = await AttributionRecorder().attribute(
        db,
        order_id=order_id,
        permission=permission,
        sale_amount=Decimal(sale),
        method=AttributionMethod.PROMO_CODE,
        commission_amount=Decimal(net),
        commission_rate=Decimal("5.00"),
        attributed_at=earned_at,
    )
    return await CommissionLedger().create_record(
        db,
        attribution,
        permission,
        rate=Decimal("5.00"),
        rate_source=RateSource.DEFAULT,
        amounts=CommissionAmounts(commission_amount=Decimal(net)),
    )


@pytest_asyncio.fixture
async def record(db_session, permission):
    return await make_record(db_session, permission, "order-1")
