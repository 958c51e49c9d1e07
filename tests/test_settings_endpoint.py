import pytest
from httpx import ASGITransport, AsyncClient

from aesthetech_api.domain.loyalty.tiers import LoyaltyTransactionType
from aesthetech_api.services.loyalty import LoyaltyService


@pytest.mark.asyncio
async def test_read_and_update_settings(app_with_db, salon) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        service = LoyaltyService(session)
        async with session.begin():
            account = await service.ensure_account(salon.client_id)
            await service.record_ledger_entry(
                account,
                points=300,
                entry_type=LoyaltyTransactionType.ADJUSTMENT,
                description="Opening balance",
            )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        current = await client.get("/api/v1/settings")
        assert current.status_code == 200
        assert current.json()["goldThreshold"] == 500
        assert current.json()["pointsExpiryEnabled"] is False

        updated = await client.put(
            "/api/v1/settings",
            json={"goldThreshold": 200, "platinumThreshold": 800, "salonName": "Studio Nine"},
        )
        assert updated.status_code == 200
        assert updated.json()["tiersRecalculated"] == 1
        assert updated.json()["settings"]["goldThreshold"] == 200

        rejected = await client.put("/api/v1/settings", json={"businessHoursStart": "9am"})
        assert rejected.status_code == 422

        snapshot = await client.get(f"/api/v1/loyalty/clients/{salon.client_id}")
        assert snapshot.json()["tier"] == "GOLD"
