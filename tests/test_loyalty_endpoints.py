import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from aesthetech_api.core.settings import settings
from aesthetech_api.db.locks import InProcessMutex
from aesthetech_api.domain.loyalty.tiers import LoyaltyTransactionType
from aesthetech_api.services.loyalty import LoyaltyService
from aesthetech_api.services.loyalty.expiry import EXPIRY_LOCK_NAME

CRON_SECRET = "nightly-secret"


async def _seed_points(session_factory, client_id, *entries) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session)
        async with session.begin():
            account = await service.ensure_account(client_id)
            for points, entry_type, expires_at in entries:
                await service.record_ledger_entry(
                    account,
                    points=points,
                    entry_type=entry_type,
                    description="Seeded",
                    expires_at=expires_at,
                )


@pytest.mark.asyncio
async def test_client_snapshot_and_ledger_page(app_with_db, salon) -> None:
    app, session_factory = app_with_db
    soon = dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=5)
    await _seed_points(
        session_factory,
        salon.client_id,
        (120, LoyaltyTransactionType.EARNED, soon),
        (30, LoyaltyTransactionType.ADJUSTMENT, None),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(f"/api/v1/loyalty/clients/{salon.client_id}")
        page = await client.get(f"/api/v1/loyalty/clients/{salon.client_id}/transactions", params={"limit": 1})
        missing = await client.get(f"/api/v1/loyalty/clients/{uuid4()}")

    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["balance"] == 150
    assert snapshot["tier"] == "SILVER"
    assert snapshot["nextTier"] == "GOLD"
    assert snapshot["pointsToNextTier"] == 350
    assert snapshot["tierProgress"] == 30
    assert Decimal(str(snapshot["multiplier"])) == Decimal("1.0")
    assert snapshot["expiringSoon"] == 120
    assert snapshot["stats"]["totalEarned"] == 120
    assert snapshot["stats"]["totalAdjustments"] == 30

    body = page.json()
    assert body["total"] == 2
    assert body["limit"] == 1
    assert len(body["items"]) == 1

    assert missing.status_code == 404
    assert missing.json()["detail"] == "Client not found"


@pytest.mark.asyncio
async def test_manual_adjustments(app_with_db, salon) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post(
            f"/api/v1/loyalty/clients/{salon.client_id}/adjustments",
            json={"points": 40, "reason": "Complaint goodwill"},
        )
        overdraw = await client.post(
            f"/api/v1/loyalty/clients/{salon.client_id}/adjustments",
            json={"points": -100, "reason": "Correction"},
        )
        zero = await client.post(
            f"/api/v1/loyalty/clients/{salon.client_id}/adjustments",
            json={"points": 0, "reason": "Nothing"},
        )

    assert created.status_code == 201
    assert created.json()["type"] == "ADJUSTMENT"
    assert created.json()["points"] == 40
    assert overdraw.status_code == 409
    assert overdraw.json()["detail"]["kind"] == "consistency"
    assert zero.status_code == 422
    assert zero.json()["detail"]["message"] == "Adjustment must be a non-zero amount"


@pytest.mark.asyncio
async def test_expiry_endpoint_requires_cron_secret(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        monkeypatch.setattr(settings, "cron_secret", "")
        unconfigured = await client.post("/api/v1/loyalty/expiry/run")

        monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
        wrong = await client.post("/api/v1/loyalty/expiry/run", headers={"Authorization": "Bearer nope"})
        disabled = await client.post(
            "/api/v1/loyalty/expiry/run",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )

    assert unconfigured.status_code == 401
    assert unconfigured.json()["detail"] == "Cron secret not configured"
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid cron secret"
    assert disabled.status_code == 200
    assert disabled.json()["skipped"] is True
    assert disabled.json()["totalPointsExpired"] == 0


@pytest.mark.asyncio
async def test_expiry_endpoint_expires_and_reports_locked_runs(app_with_db, salon, monkeypatch) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    await _seed_points(
        session_factory,
        salon.client_id,
        (90, LoyaltyTransactionType.EARNED, dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1)),
    )
    headers = {"Authorization": f"Bearer {CRON_SECRET}"}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        enabled = await client.put("/api/v1/settings", json={"pointsExpiryEnabled": True})
        assert enabled.status_code == 200

        async with session_factory() as session:
            async with InProcessMutex(EXPIRY_LOCK_NAME).acquire(session) as acquired:
                assert acquired
                locked = await client.post("/api/v1/loyalty/expiry/run", headers=headers)

        expired = await client.post("/api/v1/loyalty/expiry/run", headers=headers)
        snapshot = await client.get(f"/api/v1/loyalty/clients/{salon.client_id}")

    assert locked.json() == {
        "clientsAffected": 0,
        "totalPointsExpired": 0,
        "transactionsProcessed": 0,
        "skipped": True,
        "reason": "locked",
    }
    assert expired.json()["clientsAffected"] == 1
    assert expired.json()["totalPointsExpired"] == 90
    assert snapshot.json()["balance"] == 0
    assert snapshot.json()["stats"]["totalExpired"] == 90
