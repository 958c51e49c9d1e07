import pytest
from httpx import ASGITransport, AsyncClient

from aesthetech_api.observability.loyalty import get_loyalty_store
from aesthetech_api.observability.scheduler import get_scheduler_store


@pytest.mark.asyncio
async def test_observability_snapshot_reports_counters(app_with_db) -> None:
    app, _ = app_with_db
    loyalty_store = get_loyalty_store()
    loyalty_store.record_sale_settled(earned=120, redeemed=50, bonus=25)
    loyalty_store.record_refund_reversal(reversed_points=30, clamped=True)
    loyalty_store.record_expiry_skipped("locked")
    scheduler_store = get_scheduler_store()
    scheduler_store.record_dispatch("loyalty_expiry", "expire")
    scheduler_store.record_success("loyalty_expiry", "expire", runtime_seconds=0.5, attempts=1, result={"ok": 1})

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/observability")

    assert response.status_code == 200
    payload = response.json()
    assert payload["loyalty"]["settlements"] == {
        "sales_settled": 1,
        "birthday_bonuses": 1,
        "refunds": 1,
        "refunds_clamped": 1,
    }
    assert payload["loyalty"]["points"]["reversed"] == 30
    assert payload["loyalty"]["expiry"] == {"skipped:locked": 1}
    assert payload["scheduler"]["totals"]["success"] == 1
    assert payload["scheduler"]["jobs"]["loyalty_expiry"]["last_result"] == {"ok": 1}


def test_loyalty_store_reset_clears_counters() -> None:
    store = get_loyalty_store()
    store.record_adjustment(15)
    store.record_settlement_failure("validation")
    assert store.snapshot().settlements == {"failed:validation": 1}

    store.reset()

    snapshot = store.snapshot()
    assert snapshot.points == {}
    assert snapshot.settlements == {}
