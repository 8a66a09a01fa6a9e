"""API tests for experiment and ensemble endpoints. The controller runs on the real clock here."""

import uuid
from datetime import datetime, timedelta

import pytest

from conftest import CANARY_A, CONTROL_A, CONTROL_B, NO_SETTINGS


def _ago(days: float) -> datetime:
    return datetime.utcnow() - timedelta(days=days)


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_evaluate_runs_one_cycle(client, seed, population):
    await seed.accuracy(CANARY_A, 81.0, 80.0, _ago(1))
    await seed.accuracy(CONTROL_A, 83.0, 80.0, _ago(1))
    await seed.weights(CANARY_A, 0.45, 0.35, 0.20, at=_ago(1))
    mature = await seed.experiment([CANARY_A], started_at=_ago(4))
    await seed.experiment([CONTROL_B], started_at=_ago(1))

    response = await client.post("/api/v1/experiments/evaluate")

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "evaluated": 2,
        "succeeded": 1,
        "rolled_back": 0,
        "skipped": 1,
        "failed": 0,
    }

    details = await client.get(f"/api/v1/experiments/{mature}")
    assert details.status_code == 200
    body = details.json()
    assert body["status"] == "succeeded"
    assert body["notes"].startswith("Rollout successful: MAE improved by 2.00pp")
    assert body["canary_tenant_ids"] == [str(CANARY_A)]

    weights = await client.get(f"/api/v1/ensemble/{CONTROL_A}/weights")
    assert weights.status_code == 200
    assert weights.json()["current"]["weight_arima"] == 0.45


@pytest.mark.asyncio
async def test_evaluate_with_nothing_running(client, population):
    response = await client.post("/api/v1/experiments/evaluate")

    assert response.status_code == 200
    assert response.json()["evaluated"] == 0


@pytest.mark.asyncio
async def test_evaluate_returns_500_when_listing_fails(client, population, monkeypatch):
    async def broken_listing(db, family):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr("ensemble.controller.list_running_experiments", broken_listing)

    response = await client.post("/api/v1/experiments/evaluate")

    assert response.status_code == 500
    assert response.json() == {"error": "registry unavailable"}


@pytest.mark.asyncio
async def test_list_experiments_filters_by_status(client, seed, population):
    await seed.experiment([CANARY_A], started_at=_ago(1))
    await seed.experiment([CANARY_A], started_at=_ago(2), family="anomaly")

    response = await client.get("/api/v1/experiments", params={"status": "running", "family": "ensemble"})

    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["family"] == "ensemble"
    assert data[0]["finished_at"] is None

    finished = await client.get("/api/v1/experiments", params={"status": "succeeded"})
    assert finished.json() == []


@pytest.mark.asyncio
async def test_experiment_details_errors(client, population):
    assert (await client.get("/api/v1/experiments/not-a-uuid")).status_code == 400
    assert (await client.get(f"/api/v1/experiments/{uuid.uuid4()}")).status_code == 404


@pytest.mark.asyncio
async def test_weight_history_newest_first(client, seed, population):
    await seed.weights(CANARY_A, 0.3, 0.3, 0.4, at=_ago(3))
    await seed.weights(CANARY_A, 0.4, 0.3, 0.3, at=_ago(1))

    response = await client.get(f"/api/v1/ensemble/{CANARY_A}/weights", params={"limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["current"]["weight_arima"] == 0.4
    assert [row["weight_arima"] for row in body["history"]] == [0.4, 0.3]


@pytest.mark.asyncio
async def test_weight_history_for_untuned_tenant(client, population):
    response = await client.get(f"/api/v1/ensemble/{NO_SETTINGS}/weights")

    assert response.status_code == 200
    assert response.json() == {"tenant_id": str(NO_SETTINGS), "current": None, "history": []}


@pytest.mark.asyncio
async def test_reliability_endpoint(client, seed, population):
    await seed.reliability(CANARY_A, 72.5, _ago(2))
    await seed.reliability(CANARY_A, 88.0, _ago(1), mae=1.5)

    response = await client.get(f"/api/v1/ensemble/{CANARY_A}/reliability")

    assert response.status_code == 200
    body = response.json()
    assert body["reliability"] == 88.0
    assert body["mae"] == 1.5

    missing = await client.get(f"/api/v1/ensemble/{CONTROL_A}/reliability")
    assert missing.status_code == 404
    assert (await client.get("/api/v1/ensemble/bogus/reliability")).status_code == 400


@pytest.mark.asyncio
async def test_reliability_trend_endpoint(client, seed, population):
    await seed.reliability(CANARY_A, 88.0, _ago(1))
    await seed.reliability(CANARY_A, 64.0, _ago(40))
    await seed.reliability(CANARY_A, 72.5, _ago(10))

    response = await client.get(f"/api/v1/ensemble/{CANARY_A}/reliability/trend")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert [point["reliability"] for point in body["trend"]] == [64.0, 72.5, 88.0]

    windowed = await client.get(f"/api/v1/ensemble/{CANARY_A}/reliability/trend", params={"days": 30})
    assert [point["reliability"] for point in windowed.json()["trend"]] == [72.5, 88.0]

    empty = await client.get(f"/api/v1/ensemble/{CONTROL_A}/reliability/trend")
    assert empty.status_code == 200
    assert empty.json()["trend"] == []
    assert (await client.get("/api/v1/ensemble/bogus/reliability/trend")).status_code == 400
    assert (await client.get(f"/api/v1/ensemble/{CANARY_A}/reliability/trend", params={"days": 0})).status_code == 422
