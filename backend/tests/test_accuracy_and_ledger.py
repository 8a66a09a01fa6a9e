import uuid

import pytest

from conftest import CANARY_A, CANARY_B, CONTROL_A, NO_SETTINGS, NOW, days_ago
from ensemble.accuracy import latest_reliability, query_accuracy, record_accuracy, refresh_reliability_snapshot
from ensemble.ledger import WeightVector, current_weights, latest_among, propagate_weights, weight_history
from ensemble.population import self_tuning_tenants, tenants_with_settings
from ensemble.registry import (
    InvalidTransitionError,
    canary_tenants,
    create_experiment,
    list_running_experiments,
    transition_experiment,
)


@pytest.mark.asyncio
async def test_record_accuracy_derives_breach_flags(test_db, population):
    row = await record_accuracy(test_db, CANARY_A, 79.4567, 81.0, evaluation_date=days_ago(1))

    assert row.predicted_sr == 79.46
    assert row.predicted_breach is True
    assert row.actual_breach is False


@pytest.mark.asyncio
async def test_query_accuracy_filters_by_tenant_and_window(test_db, seed, population):
    await seed.accuracy(CANARY_A, 82.0, 80.0, days_ago(1))
    await seed.accuracy(CANARY_A, 90.0, 80.0, days_ago(5))
    await seed.accuracy(CONTROL_A, 70.0, 80.0, days_ago(1))

    rows = await query_accuracy(test_db, [CANARY_A], since=days_ago(3))

    assert [(r.tenant_id, r.predicted, r.actual) for r in rows] == [(CANARY_A, 82.0, 80.0)]
    assert await query_accuracy(test_db, [], since=days_ago(3)) == []


@pytest.mark.asyncio
async def test_latest_reliability_returns_newest_snapshot_per_tenant(test_db, seed, population):
    await seed.reliability(CANARY_A, 70.0, days_ago(3))
    await seed.reliability(CANARY_A, 85.0, days_ago(1))
    await seed.reliability(CONTROL_A, None, days_ago(2))

    snapshots = await latest_reliability(test_db, [CANARY_A, CONTROL_A, CANARY_B])

    by_tenant = {s.tenant_id: s.reliability for s in snapshots}
    assert by_tenant == {CANARY_A: 85.0, CONTROL_A: None}


@pytest.mark.asyncio
async def test_refresh_reliability_snapshot_rolls_up_window(test_db, seed, population):
    await seed.accuracy(CANARY_A, 70.0, 75.0, days_ago(2))  # both breach
    await seed.accuracy(CANARY_A, 85.0, 70.0, days_ago(3))  # missed breach
    await seed.accuracy(CANARY_A, 75.0, 90.0, days_ago(4))  # false alarm
    await seed.accuracy(CANARY_A, 90.0, 90.0, days_ago(5))
    await seed.accuracy(CANARY_A, 10.0, 99.0, days_ago(40))  # outside 30d window

    snapshot = await refresh_reliability_snapshot(test_db, CANARY_A, now=NOW)
    await test_db.commit()

    assert snapshot.precision_predicted == 50.0
    assert snapshot.recall_breached == 50.0
    assert snapshot.mae_sr == 8.75
    assert snapshot.reliability == 58.25
    assert snapshot.sample_size == 4

    [latest] = await latest_reliability(test_db, [CANARY_A])
    assert latest.reliability == 58.25


@pytest.mark.asyncio
async def test_refresh_reliability_snapshot_skips_empty_window(test_db, population):
    assert await refresh_reliability_snapshot(test_db, CANARY_B, now=NOW) is None


@pytest.mark.asyncio
async def test_latest_among_picks_single_newest_vector(test_db, seed, population):
    await seed.weights(CANARY_A, 0.3, 0.3, 0.4, at=days_ago(2))
    await seed.weights(CANARY_B, 0.5, 0.3, 0.2, at=days_ago(1))
    await seed.weights(CONTROL_A, 0.6, 0.2, 0.2, at=days_ago(0.1))

    newest = await latest_among(test_db, [CANARY_A, CANARY_B])

    assert newest.tenant_id == CANARY_B
    assert (newest.weight_arima, newest.weight_gradient, newest.weight_bayes) == (0.5, 0.3, 0.2)
    assert await latest_among(test_db, []) is None
    assert await current_weights(test_db, NO_SETTINGS) is None


@pytest.mark.asyncio
async def test_propagate_weights_appends_one_row_per_tenant(test_db, seed, population):
    await seed.weights(CANARY_A, 0.3, 0.3, 0.4, at=days_ago(2))
    vector = WeightVector(weight_arima=0.5, weight_gradient=0.25, weight_bayes=0.25, reliability=90.0, mae=1.0)

    outcomes = await propagate_weights(test_db, vector, [CANARY_A, CONTROL_A], adjusted_at=NOW)
    await test_db.commit()

    assert [(o.tenant_id, o.ok) for o in outcomes] == [(CANARY_A, True), (CONTROL_A, True)]
    history = await weight_history(test_db, CANARY_A)
    assert len(history) == 2
    assert history[0].adjusted_at == NOW
    assert history[0].weight_arima == 0.5
    assert history[1].weight_arima == 0.3


@pytest.mark.asyncio
async def test_tenant_populations(test_db, population):
    assert set(await tenants_with_settings(test_db)) == set(population["canary"] + population["control"])
    assert set(await self_tuning_tenants(test_db)) == set(population["self_tuning"])


@pytest.mark.asyncio
async def test_registry_lists_running_experiments_of_family(test_db, population):
    ensemble_id = await create_experiment(test_db, [CANARY_A, CANARY_A, CANARY_B], started_at=days_ago(4))
    await create_experiment(test_db, [CANARY_A], family="anomaly", started_at=days_ago(4))

    running = await list_running_experiments(test_db, "ensemble")

    assert [e.id for e in running] == [ensemble_id]
    assert set(await canary_tenants(test_db, ensemble_id)) == {CANARY_A, CANARY_B}


@pytest.mark.asyncio
async def test_transition_rejects_non_terminal_status(test_db, population):
    experiment_id = await create_experiment(test_db, [CANARY_A], started_at=days_ago(4))

    with pytest.raises(InvalidTransitionError):
        await transition_experiment(test_db, experiment_id, "running", notes="nope")

    updated = await transition_experiment(test_db, experiment_id, "failed", notes="manual stop", finished_at=NOW)
    await test_db.commit()

    assert updated == 1
    assert await list_running_experiments(test_db, "ensemble") == []
    assert await transition_experiment(test_db, uuid.uuid4(), "failed", notes="missing") == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("insert_order", [(CANARY_A, CANARY_B), (CANARY_B, CANARY_A)])
async def test_latest_among_breaks_adjusted_at_ties_by_tenant(test_db, seed, population, insert_order):
    vectors = {CANARY_A: (0.3, 0.3, 0.4), CANARY_B: (0.5, 0.3, 0.2)}
    for tenant_id in insert_order:
        await seed.weights(tenant_id, *vectors[tenant_id], at=NOW)

    newest = await latest_among(test_db, [CANARY_A, CANARY_B])

    assert newest.tenant_id == CANARY_B
    assert newest.weight_arima == 0.5


@pytest.mark.asyncio
async def test_tuning_pass_output_resolves_to_one_canary_vector(test_db, seed, population):
    from ensemble.tuner import run_tuning_pass

    await seed.reliability(CANARY_A, 95.0, days_ago(1), mae=5.0)
    await run_tuning_pass(test_db, now=NOW)

    newest = await latest_among(test_db, [CANARY_A, CANARY_B])

    assert newest.adjusted_at == NOW
    assert newest.tenant_id == CANARY_B
    assert (newest.weight_arima, newest.weight_gradient, newest.weight_bayes) == (0.33, 0.33, 0.34)


@pytest.mark.asyncio
async def test_reliability_trend_is_oldest_first_within_window(test_db, seed, population):
    from ensemble.accuracy import reliability_trend

    await seed.reliability(CANARY_A, 81.0, days_ago(1))
    await seed.reliability(CANARY_A, 60.0, days_ago(20))
    await seed.reliability(CANARY_A, 75.0, days_ago(5))
    await seed.reliability(CANARY_B, 99.0, days_ago(2))

    assert [s.reliability for s in await reliability_trend(test_db, CANARY_A)] == [60.0, 75.0, 81.0]
    recent = await reliability_trend(test_db, CANARY_A, since=days_ago(7))
    assert [s.reliability for s in recent] == [75.0, 81.0]
