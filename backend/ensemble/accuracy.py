"""
Accuracy Recorder & Reliability Aggregator.

Accuracy rows are written once per evaluation cycle by the forecasting
pipeline and are only ever read in aggregate. Reliability snapshots are
rolled up from those rows; readers only see the newest snapshot per tenant.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ForecastAccuracy, ForecastModelMetrics
from ensemble.statistics import breach_confusion, mean_absolute_error, reliability_score

logger = structlog.get_logger()

DEFAULT_SLO_TARGET = 80.0


@dataclass(frozen=True)
class AccuracyRow:
    tenant_id: uuid.UUID
    predicted: float
    actual: float
    date: datetime


@dataclass(frozen=True)
class ReliabilitySnapshot:
    tenant_id: uuid.UUID
    reliability: float | None


# ─── Accuracy Recorder ──────────────────────────────────────────────────────


async def record_accuracy(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    predicted_sr: float,
    actual_sr: float,
    evaluation_date: datetime | None = None,
    slo_target: float = DEFAULT_SLO_TARGET,
    days_ahead: int = 7,
) -> ForecastAccuracy:
    """Append one predicted-vs-actual row. Breach flags are derived from the SLO target."""
    row = ForecastAccuracy(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        evaluation_date=evaluation_date or datetime.utcnow(),
        predicted_sr=round(float(predicted_sr), 2),
        actual_sr=round(float(actual_sr), 2),
        predicted_breach=predicted_sr < slo_target,
        actual_breach=actual_sr < slo_target,
        days_ahead=days_ahead,
    )
    db.add(row)
    await db.flush()
    return row


async def query_accuracy(
    db: AsyncSession,
    tenant_ids: list[uuid.UUID],
    since: datetime,
) -> list[AccuracyRow]:
    """Accuracy rows for a tenant set with evaluation_date >= since."""
    if not tenant_ids:
        return []

    result = await db.execute(
        select(
            ForecastAccuracy.tenant_id,
            ForecastAccuracy.predicted_sr,
            ForecastAccuracy.actual_sr,
            ForecastAccuracy.evaluation_date,
        ).where(
            ForecastAccuracy.tenant_id.in_(tenant_ids),
            ForecastAccuracy.evaluation_date >= since,
        )
    )
    return [
        AccuracyRow(
            tenant_id=row.tenant_id,
            predicted=float(row.predicted_sr),
            actual=float(row.actual_sr),
            date=row.evaluation_date,
        )
        for row in result.all()
    ]


# ─── Reliability Aggregator ─────────────────────────────────────────────────


async def latest_reliability(
    db: AsyncSession,
    tenant_ids: list[uuid.UUID],
) -> list[ReliabilitySnapshot]:
    """
    Newest reliability snapshot per tenant.

    Tenants without any snapshot are simply absent from the result.
    """
    if not tenant_ids:
        return []

    latest = (
        select(
            ForecastModelMetrics.tenant_id.label("tenant_id"),
            func.max(ForecastModelMetrics.computed_at).label("computed_at"),
        )
        .where(ForecastModelMetrics.tenant_id.in_(tenant_ids))
        .group_by(ForecastModelMetrics.tenant_id)
        .subquery()
    )
    result = await db.execute(
        select(ForecastModelMetrics.tenant_id, ForecastModelMetrics.reliability).join(
            latest,
            (ForecastModelMetrics.tenant_id == latest.c.tenant_id)
            & (ForecastModelMetrics.computed_at == latest.c.computed_at),
        )
    )

    snapshots: dict[uuid.UUID, ReliabilitySnapshot] = {}
    for row in result.all():
        # Two snapshots sharing a timestamp: keep the first one seen.
        snapshots.setdefault(
            row.tenant_id,
            ReliabilitySnapshot(
                tenant_id=row.tenant_id,
                reliability=float(row.reliability) if row.reliability is not None else None,
            ),
        )
    return list(snapshots.values())


async def latest_metrics(db: AsyncSession, tenant_id: uuid.UUID) -> ForecastModelMetrics | None:
    """Full newest snapshot row for one tenant."""
    result = await db.execute(
        select(ForecastModelMetrics)
        .where(ForecastModelMetrics.tenant_id == tenant_id)
        .order_by(ForecastModelMetrics.computed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def reliability_trend(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    since: datetime | None = None,
) -> list[ForecastModelMetrics]:
    """Snapshot history for one tenant, oldest first."""
    query = select(ForecastModelMetrics).where(ForecastModelMetrics.tenant_id == tenant_id)
    if since is not None:
        query = query.where(ForecastModelMetrics.computed_at >= since)
    result = await db.execute(query.order_by(ForecastModelMetrics.computed_at.asc(), ForecastModelMetrics.id))
    return list(result.scalars().all())


async def refresh_reliability_snapshot(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    now: datetime | None = None,
    window_days: int = 30,
) -> ForecastModelMetrics | None:
    """
    Roll the trailing window of accuracy rows into a new reliability snapshot.

    Returns None (and writes nothing) when the window is empty.
    """
    now = now or datetime.utcnow()
    since = now - timedelta(days=window_days)

    result = await db.execute(
        select(
            ForecastAccuracy.predicted_sr,
            ForecastAccuracy.actual_sr,
            ForecastAccuracy.predicted_breach,
            ForecastAccuracy.actual_breach,
        ).where(
            ForecastAccuracy.tenant_id == tenant_id,
            ForecastAccuracy.evaluation_date >= since,
        )
    )
    rows = result.all()
    if not rows:
        logger.info("reliability.no_data", tenant_id=str(tenant_id), window_days=window_days)
        return None

    tp, fp, fn = breach_confusion(rows)
    precision = 100.0 * tp / (tp + fp) if (tp + fp) > 0 else 0.0
    recall = 100.0 * tp / (tp + fn) if (tp + fn) > 0 else 0.0
    mae = mean_absolute_error((row.predicted_sr, row.actual_sr) for row in rows) or 0.0
    reliability = reliability_score(precision, recall, mae)

    snapshot = ForecastModelMetrics(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        precision_predicted=round(precision, 2),
        recall_breached=round(recall, 2),
        mae_sr=round(mae, 2),
        reliability=round(reliability, 2),
        sample_size=len(rows),
        computed_at=now,
    )
    db.add(snapshot)
    await db.flush()

    logger.info(
        "reliability.refreshed",
        tenant_id=str(tenant_id),
        precision=snapshot.precision_predicted,
        recall=snapshot.recall_breached,
        mae=snapshot.mae_sr,
        reliability=snapshot.reliability,
        sample_size=snapshot.sample_size,
    )
    return snapshot
