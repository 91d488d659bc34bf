"""
HTTP-level tests: sale ingest, organizer and agent routes, auth.

Requests run against the in-memory database through dependency overrides.
Each test commits its seed data first; the request handlers open their own
sessions on the shared connection.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import SALE_AT, TEST_PASSWORD, make_user
from commission_engine.auth.jwt import COOKIE_NAME, create_access_token
from commission_engine.db import get_db, get_session_factory
from commission_engine.main import app
from commission_engine.models import UserRole

INGEST_HEADERS = {"X-Ingest-Key": "test-ingest-key"}


def auth_headers(user) -> dict:
    token = create_access_token(user.id, user.role.value)
    return {"Cookie": f"{COOKIE_NAME}={token}"}


def sale_payload(permission, order_id="web-1", amount="200.00"):
    return {
        "orderId": order_id,
        "agentPermissionId": permission.id,
        "saleAmount": amount,
        "attributionMethod": "promo_code",
        "occurredAt": SALE_AT.isoformat(),
    }


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def seeded(db_session, organizer, agent, permission):
    """Commit the organizer, agent, plan and permission; db_session is not used afterwards."""
    await db_session.commit()
    return permission


async def ingest(client, permission, order_id="web-1", amount="200.00"):
    response = await client.post(
        "/api/sales/completed",
        json=sale_payload(permission, order_id, amount),
        headers=INGEST_HEADERS,
    )
    assert response.status_code == 200, response.text
    return response.json()


# ── Sale ingest ──────────────────────────────────────────


class TestSaleIngest:
    @pytest.mark.asyncio
    async def test_requires_ingest_key(self, client, seeded):
        response = await client.post("/api/sales/completed", json=sale_payload(seeded))
        assert response.status_code == 401

        response = await client.post(
            "/api/sales/completed", json=sale_payload(seeded), headers={"X-Ingest-Key": "wrong"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_completed_sale_creates_pending_record(self, client, seeded):
        body = await ingest(client, seeded)

        assert body["duplicate"] is False
        assert body["order_id"] == "web-1"
        assert body["status"] == "pending"
        assert body["rate_source"] == "default"
        assert Decimal(body["commission_amount"]) == Decimal("10.00")
        assert Decimal(body["net_amount"]) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(self, client, seeded):
        first = await ingest(client, seeded)
        second = await ingest(client, seeded)

        assert second["duplicate"] is True
        assert second["attribution_id"] == first["attribution_id"]
        assert Decimal(second["commission_amount"]) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_malformed_event(self, client, seeded):
        payload = sale_payload(seeded)
        del payload["saleAmount"]

        response = await client.post("/api/sales/completed", json=payload, headers=INGEST_HEADERS)

        assert response.status_code == 400
        assert "Malformed sale event" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_permission(self, client, seeded):
        payload = sale_payload(seeded)
        payload["agentPermissionId"] = seeded.id + 100

        response = await client.post("/api/sales/completed", json=payload, headers=INGEST_HEADERS)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_full_refund_cancels(self, client, seeded):
        await ingest(client, seeded)

        response = await client.post(
            "/api/sales/refunded",
            json={"orderId": "web-1", "occurredAt": SALE_AT.isoformat()},
            headers=INGEST_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["cancelled"] is True
        assert body["record_status"] == "cancelled"


# ── Route protection ─────────────────────────────────────


class TestRouteProtection:
    @pytest.mark.asyncio
    async def test_no_cookie(self, client, seeded):
        response = await client.get("/api/organizer/ledger")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_agent_on_organizer_route(self, client, seeded, agent):
        response = await client.get("/api/organizer/ledger", headers=auth_headers(agent))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_organizer_on_agent_route(self, client, seeded, organizer):
        response = await client.get("/api/agent/summary", headers=auth_headers(organizer))
        assert response.status_code == 403


# ── Organizer ledger and payouts ─────────────────────────


class TestOrganizerLedger:
    @pytest.mark.asyncio
    async def test_approve_and_list(self, client, seeded, organizer):
        sale = await ingest(client, seeded)

        response = await client.post(
            f"/api/organizer/ledger/{sale['record_id']}/approve", headers=auth_headers(organizer),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        listing = await client.get(
            "/api/organizer/ledger", params={"status": "approved"}, headers=auth_headers(organizer),
        )
        assert listing.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_rejected_transition_kept_in_audit_trail(self, client, seeded, organizer):
        sale = await ingest(client, seeded)
        headers = auth_headers(organizer)

        await client.post(f"/api/organizer/ledger/{sale['record_id']}/cancel", json={}, headers=headers)
        response = await client.post(f"/api/organizer/ledger/{sale['record_id']}/approve", headers=headers)

        assert response.status_code == 409
        assert response.json()["current_states"] == {str(sale["record_id"]): "cancelled"}

        detail = await client.get(f"/api/organizer/ledger/{sale['record_id']}", headers=headers)
        actions = [e["action"] for e in detail.json()["audit_trail"]]
        assert actions == ["record_created", "cancelled", "transition_rejected"]

    @pytest.mark.asyncio
    async def test_disputed_member_blocks_batch(self, client, seeded, organizer, agent):
        headers = auth_headers(organizer)
        record_ids = []
        for order_id in ("web-1", "web-2"):
            sale = await ingest(client, seeded, order_id=order_id)
            await client.post(f"/api/organizer/ledger/{sale['record_id']}/approve", headers=headers)
            record_ids.append(sale["record_id"])

        batch = await client.post(
            "/api/organizer/payouts",
            json={"payment_method": "paypal", "record_ids": record_ids},
            headers=headers,
        )
        assert batch.status_code == 201
        assert Decimal(batch.json()["total_amount"]) == Decimal("20.00")

        dispute = await client.post(
            "/api/agent/disputes",
            json={"record_id": record_ids[1], "dispute_type": "amount_incorrect", "amount_disputed": "10.00"},
            headers=auth_headers(agent),
        )
        assert dispute.status_code == 201

        response = await client.post(
            f"/api/organizer/payouts/{batch.json()['id']}/process", json={}, headers=headers,
        )
        assert response.status_code == 409
        assert response.json()["blocking_record_ids"] == [record_ids[1]]

        cancelled = await client.post(
            f"/api/organizer/payouts/{batch.json()['id']}/cancel",
            json={"reason": "Disputed member"},
            headers=headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "failed"
        assert Decimal(cancelled.json()["total_amount"]) == Decimal("20.00")

        eligible = await client.get(
            "/api/organizer/payouts/eligible", params={"as_of": "2030-01-01T00:00:00+00:00"}, headers=headers,
        )
        assert [r["id"] for r in eligible.json()] == [record_ids[0]]

        again = await client.post(
            f"/api/organizer/payouts/{batch.json()['id']}/cancel", json={}, headers=headers,
        )
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_other_organizers_record_not_found(self, client, session_factory, seeded):
        sale = await ingest(client, seeded)
        async with session_factory() as db:
            other = await make_user(db, "other_organizer", UserRole.ORGANIZER)
            await db.commit()

        response = await client.get(f"/api/organizer/ledger/{sale['record_id']}", headers=auth_headers(other))
        assert response.status_code == 404


# ── Agent routes ─────────────────────────────────────────


class TestAgentRoutes:
    @pytest.mark.asyncio
    async def test_summary_and_records(self, client, seeded, agent):
        await ingest(client, seeded, order_id="web-1", amount="200.00")
        await ingest(client, seeded, order_id="web-2", amount="100.00")
        headers = auth_headers(agent)

        summary = (await client.get("/api/agent/summary", headers=headers)).json()
        assert summary["agent_id"] == agent.id
        assert summary["commission_count"] == 2
        assert Decimal(summary["pending_amount"]) == Decimal("15.00")
        assert Decimal(summary["average_commission"]) == Decimal("7.50")

        records = (await client.get("/api/agent/records", headers=headers)).json()
        assert records["total"] == 2

    @pytest.mark.asyncio
    async def test_progression_without_tiers(self, client, seeded, agent):
        response = await client.get("/api/agent/progression", headers=auth_headers(agent))
        assert response.status_code == 422


# ── Auth ─────────────────────────────────────────────────


class TestAuth:
    @pytest.mark.asyncio
    async def test_login_and_me(self, client, seeded, organizer):
        response = await client.post(
            "/api/auth/login", json={"username": organizer.username, "password": TEST_PASSWORD},
        )
        assert response.status_code == 200
        assert response.json()["role"] == "organizer"

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE_NAME}=")
        token = set_cookie.split(";")[0].split("=", 1)[1]

        me = await client.get("/api/auth/me", headers={"Cookie": f"{COOKIE_NAME}={token}"})
        assert me.status_code == 200
        assert me.json()["username"] == organizer.username

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, seeded, organizer):
        response = await client.post(
            "/api/auth/login", json={"username": organizer.username, "password": "not-it"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me_without_cookie(self, client, seeded):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
