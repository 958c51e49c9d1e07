import pytest
from httpx import ASGITransport, AsyncClient

from aesthetech_api.core.settings import settings
from aesthetech_api.observability.scheduler import get_scheduler_store


class _StubScheduler:
    def __init__(self, running: bool) -> None:
        self.is_running = running


@pytest.mark.asyncio
async def test_health_and_healthz(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        health = await client.get("/api/v1/health")
        healthz = await client.get("/healthz")

    assert health.json() == {"status": "ok"}
    assert healthz.status_code == 200
    assert healthz.json()["status"] == "ok"
    assert healthz.json()["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_scheduler_health_states(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        monkeypatch.setattr(settings, "loyalty_scheduler_enabled", False)
        disabled = await client.get("/api/v1/health/scheduler")
        assert disabled.json()["status"] == "disabled"

        monkeypatch.setattr(settings, "loyalty_scheduler_enabled", True)
        app.state.loyalty_job_scheduler = _StubScheduler(running=False)
        starting = await client.get("/api/v1/health/scheduler")
        assert starting.json()["status"] == "starting"

        app.state.loyalty_job_scheduler = _StubScheduler(running=True)
        ready = await client.get("/api/v1/health/scheduler")
        assert ready.json() == {"status": "ready", "detail": None}

        store = get_scheduler_store()
        store.record_dispatch("loyalty_expiry", "expire")
        store.record_attempt_failure("loyalty_expiry", "expire", attempts=1, error="boom")
        failing = await client.get("/api/v1/health/scheduler")
        assert failing.json() == {"status": "error", "detail": "Jobs failing: loyalty_expiry"}
