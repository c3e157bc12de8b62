import pytest
from httpx import ASGITransport, AsyncClient

from surplus_api.core.settings import settings
from surplus_api.observability.scheduler import get_scheduler_store


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["database"] == {"status": "ready", "detail": None}
    assert components["marketplace_scheduler"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readyz_flags_failing_jobs(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "marketplace_job_scheduler_enabled", True)
    app.state.marketplace_job_scheduler = object()
    store = get_scheduler_store()
    store.record_dispatch("payout_settlement", "surplus_api.jobs.payouts.settle_payouts")
    store.record_run_failure(
        "payout_settlement",
        "surplus_api.jobs.payouts.settle_payouts",
        runtime_seconds=0.1,
        attempts=3,
        error="RuntimeError: boom",
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    payload = response.json()
    assert payload["status"] == "error"
    scheduler = payload["components"]["marketplace_scheduler"]
    assert scheduler["status"] == "error"
    assert scheduler["detail"] == "Jobs failing: payout_settlement"


@pytest.mark.asyncio
async def test_healthz_reports_environment(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["environment"] == settings.environment
    assert "version" in body
