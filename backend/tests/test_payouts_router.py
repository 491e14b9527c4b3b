"""Tests for the admin payout trigger endpoints."""
import pytest
from httpx import ASGITransport, AsyncClient

from app.config import settings
from app.database import get_db
from app.services.container import build_payout_services
from main import app
from conftest import add_views, fixed_clock

ADMIN_KEY = "test-admin-key"


@pytest.fixture
async def client(session_factory, rail, notifier, rate_source, monkeypatch):
    """Client wired to the in-memory database and a mocked payment rail."""
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.payout_services = build_payout_services(
        session_factory=session_factory,
        rate_source=rate_source,
        rail=rail,
        notifier=notifier,
        clock=fixed_clock,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers():
    return {"X-Admin-Api-Key": ADMIN_KEY}


@pytest.mark.asyncio
async def test_requires_admin_key(client):
    response = await client.post("/api/admin/payouts/run", json={})
    assert response.status_code == 401

    response = await client.post("/api/admin/payouts/run", json={}, headers={"X-Admin-Api-Key": "wrong"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_disabled_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "")

    response = await client.post("/api/admin/payouts/run", json={}, headers=auth_headers())
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_calculate_then_run(client, test_db, campaign, promoter, rail):
    await add_views(test_db, campaign, promoter, 400)

    response = await client.post(
        "/api/admin/payouts/calculate", json={"month": 3, "year": 2026}, headers=auth_headers()
    )
    assert response.status_code == 200
    data = response.json()
    assert data["created"] == 1
    assert data["qualifying"] == 1

    response = await client.get("/api/admin/payouts/earnings?month=3&year=2026", headers=auth_headers())
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["total_net_cents"] == 640
    assert data["records"][0]["payout_executed"] is False

    response = await client.post(
        "/api/admin/payouts/run", json={"promoter_id": promoter.uuid}, headers=auth_headers()
    )
    assert response.status_code == 200
    data = response.json()
    assert data["promoter_id"] == promoter.uuid
    assert data["paid"] == 1
    assert data["paid_cents"] == 640
    rail.transfer.assert_awaited_once()

    response = await client.get(f"/api/admin/payouts/promoters/{promoter.uuid}/earnings", headers=auth_headers())
    assert response.status_code == 200
    record = response.json()["records"][0]
    assert record["payout_executed"] is True
    assert record["payout_amount_cents"] == 640


@pytest.mark.asyncio
async def test_calculate_rejects_invalid_month(client):
    response = await client.post(
        "/api/admin/payouts/calculate", json={"month": 13, "year": 2026}, headers=auth_headers()
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_calculate_rejects_open_month(client):
    response = await client.post(
        "/api/admin/payouts/calculate", json={"month": 4, "year": 2026}, headers=auth_headers()
    )
    assert response.status_code == 409
    assert "still open" in response.json()["detail"]


@pytest.mark.asyncio
async def test_campaign_calculation(client, test_db, campaign, promoter):
    await add_views(test_db, campaign, promoter, 250)

    response = await client.post(f"/api/admin/payouts/campaigns/{campaign.uuid}/calculate", headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["campaign_id"] == campaign.uuid
    assert data["created"] == 1
    assert data["qualifying"] == 0


@pytest.mark.asyncio
async def test_full_cycle(client, test_db, campaign, promoter):
    await add_views(test_db, campaign, promoter, 400)

    response = await client.post("/api/admin/payouts/cycle", headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert (data["month"], data["year"]) == (3, 2026)
    assert data["calculation_skipped"] is False
    assert data["calculation"]["created"] == 1
    assert data["payouts"]["paid"] == 1


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok", "payout_cycle": "idle"}
