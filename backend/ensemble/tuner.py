"""
Self-Tuning Pass: adaptive ensemble weight adjustment per tenant.

Rewards precision (high reliability) by shifting weight toward the trend
model, and penalizes volatility (high MAE) by shifting weight toward the
gradient model. The Bayesian model takes the remainder. Every run appends
one new ledger row per tenant with a settings row.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ensemble.accuracy import latest_metrics
from ensemble.ledger import WeightVector, append_weights, current_weights
from ensemble.population import tenants_with_settings

logger = structlog.get_logger()

LEARNING_RATE = 0.05
RELIABILITY_BASELINE = 75.0
MAE_PENALTY_START = 3.0
WEIGHT_FLOOR = 0.2
WEIGHT_CEILING = 0.6

DEFAULT_RELIABILITY = 80.0
DEFAULT_MAE = 2.0
DEFAULT_WEIGHTS = (0.33, 0.33, 0.34)


@dataclass(frozen=True)
class TuningResult:
    tenant_id: uuid.UUID
    reliability: float
    mae: float
    weights: tuple[float, float, float]


def _clamp(value: float) -> float:
    return min(WEIGHT_CEILING, max(WEIGHT_FLOOR, value))


def tune_weights(
    current: tuple[float, float, float],
    reliability: float,
    mae: float,
) -> tuple[float, float, float]:
    """Return the adjusted (arima, gradient, bayes) blend, normalized to sum to 1."""
    w_arima, w_gradient, _ = current

    delta = (reliability - RELIABILITY_BASELINE) / 100
    w_arima = _clamp(w_arima + delta * LEARNING_RATE)
    w_gradient = _clamp(w_gradient - delta * LEARNING_RATE * 0.5)
    w_bayes = 1 - (w_arima + w_gradient)

    if mae > MAE_PENALTY_START:
        shift = min(0.1, (mae - MAE_PENALTY_START) * 0.02)
        w_arima = max(WEIGHT_FLOOR, w_arima - shift)
        w_gradient = min(WEIGHT_CEILING, w_gradient + shift)
        w_bayes = 1 - (w_arima + w_gradient)

    total = w_arima + w_gradient + w_bayes
    return w_arima / total, w_gradient / total, w_bayes / total


async def tune_tenant(db: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None) -> TuningResult:
    metrics = await latest_metrics(db, tenant_id)
    reliability = DEFAULT_RELIABILITY
    mae = DEFAULT_MAE
    if metrics is not None:
        if metrics.reliability is not None:
            reliability = float(metrics.reliability)
        if metrics.mae_sr is not None:
            mae = float(metrics.mae_sr)

    current = await current_weights(db, tenant_id)
    starting = (
        (current.weight_arima, current.weight_gradient, current.weight_bayes) if current else DEFAULT_WEIGHTS
    )

    arima, gradient, bayes = (round(w, 2) for w in tune_weights(starting, reliability, mae))
    await append_weights(
        db,
        tenant_id,
        WeightVector(
            weight_arima=arima,
            weight_gradient=gradient,
            weight_bayes=bayes,
            reliability=round(reliability, 2),
            mae=round(mae, 2),
        ),
        adjusted_at=now,
    )
    return TuningResult(tenant_id=tenant_id, reliability=reliability, mae=mae, weights=(arima, gradient, bayes))


async def run_tuning_pass(db: AsyncSession, now: datetime | None = None) -> list[TuningResult]:
    """Tune every tenant with a settings row; one tenant failing does not stop the others."""
    now = now or datetime.utcnow()
    results: list[TuningResult] = []

    for tenant_id in await tenants_with_settings(db):
        try:
            async with db.begin_nested():
                result = await tune_tenant(db, tenant_id, now=now)
        except Exception as exc:  # noqa: BLE001
            logger.error("tuning.tenant_failed", tenant_id=str(tenant_id), error=str(exc))
            continue

        results.append(result)
        logger.info(
            "tuning.tenant_tuned",
            tenant_id=str(tenant_id),
            reliability=round(result.reliability, 1),
            mae=round(result.mae, 2),
            weights=f"A:{result.weights[0]:.0%} G:{result.weights[1]:.0%} B:{result.weights[2]:.0%}",
        )

    await db.commit()
    logger.info("tuning.pass_complete", tenants_tuned=len(results))
    return results
