"""
Health check endpoint tests.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import TEST_PASSWORD, TEST_PASSWORD_HASH
from commission_engine.db import get_db
from commission_engine.main import app


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "commission-engine"}


@pytest.mark.asyncio
async def test_readiness_checks_database(client):
    response = await client.get("/api/health/ready")
    assert response.json() == {"status": "ready", "database": "connected"}


@pytest.mark.asyncio
async def test_liveness(client):
    response = await client.get("/api/health/live")
    assert response.json()["status"] == "alive"


def test_password_hashing():
    """Test password hashing utility."""
    from commission_engine.utils.password import verify_password

    # Hash should be different from original
    assert TEST_PASSWORD_HASH != TEST_PASSWORD

    # Verification should work
    assert verify_password(TEST_PASSWORD, TEST_PASSWORD_HASH)

    # Wrong password should fail
    assert not verify_password("wrong_password", TEST_PASSWORD_HASH)

    # Malformed hash never authenticates
    assert not verify_password(TEST_PASSWORD, "not-a-bcrypt-hash")
    assert not verify_password(TEST_PASSWORD, "")


def test_password_problems():
    from commission_engine.utils.password import password_problems

    assert password_problems("s3cure-pass") == []
    assert "must mix letters and digits" in password_problems("12345678")
    assert any("at least" in p for p in password_problems("ab1"))
