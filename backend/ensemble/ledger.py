"""
Weight Ledger: append-only ensemble weight history.

Rows are never updated or deleted; "current" weights for a tenant are the
newest row by adjusted_at. Rollout propagation copies one vector verbatim
into a fresh row per tenant, each insert isolated in its own SAVEPOINT so a
failing tenant does not undo the others.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import EnsembleWeightHistory

logger = structlog.get_logger()


@dataclass(frozen=True)
class WeightVector:
    weight_arima: float
    weight_gradient: float
    weight_bayes: float
    reliability: float | None = None
    mae: float | None = None
    tenant_id: uuid.UUID | None = None
    adjusted_at: datetime | None = None

    @classmethod
    def from_row(cls, row: EnsembleWeightHistory) -> "WeightVector":
        return cls(
            weight_arima=row.weight_arima,
            weight_gradient=row.weight_gradient,
            weight_bayes=row.weight_bayes,
            reliability=row.reliability,
            mae=row.mae,
            tenant_id=row.tenant_id,
            adjusted_at=row.adjusted_at,
        )

    def as_dict(self) -> dict:
        return {
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
            "weight_arima": self.weight_arima,
            "weight_gradient": self.weight_gradient,
            "weight_bayes": self.weight_bayes,
            "reliability": self.reliability,
            "mae": self.mae,
            "adjusted_at": self.adjusted_at.isoformat() if self.adjusted_at else None,
        }


@dataclass(frozen=True)
class PropagationOutcome:
    tenant_id: uuid.UUID
    ok: bool
    error: str | None = None


async def append_weights(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    vector: WeightVector,
    adjusted_at: datetime | None = None,
) -> EnsembleWeightHistory:
    """Append one ledger row for a tenant."""
    row = EnsembleWeightHistory(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        weight_arima=vector.weight_arima,
        weight_gradient=vector.weight_gradient,
        weight_bayes=vector.weight_bayes,
        reliability=vector.reliability,
        mae=vector.mae,
        adjusted_at=adjusted_at or datetime.utcnow(),
    )
    db.add(row)
    await db.flush()
    return row


async def current_weights(db: AsyncSession, tenant_id: uuid.UUID) -> WeightVector | None:
    """Latest vector for one tenant, or None if it was never tuned."""
    return await latest_among(db, [tenant_id])


async def latest_among(db: AsyncSession, tenant_ids: list[uuid.UUID]) -> WeightVector | None:
    """
    Single newest vector produced anywhere in a tenant set.

    A tuning pass stamps every tenant with the same adjusted_at; ties go to
    the highest tenant_id, then the highest row id.
    """
    if not tenant_ids:
        return None

    result = await db.execute(
        select(EnsembleWeightHistory)
        .where(EnsembleWeightHistory.tenant_id.in_(tenant_ids))
        .order_by(
            EnsembleWeightHistory.adjusted_at.desc(),
            EnsembleWeightHistory.tenant_id.desc(),
            EnsembleWeightHistory.id.desc(),
        )
        .limit(1)
    )
    row = result.scalar_one_or_none()
    return WeightVector.from_row(row) if row else None


async def weight_history(db: AsyncSession, tenant_id: uuid.UUID, limit: int = 50) -> list[WeightVector]:
    result = await db.execute(
        select(EnsembleWeightHistory)
        .where(EnsembleWeightHistory.tenant_id == tenant_id)
        .order_by(EnsembleWeightHistory.adjusted_at.desc())
        .limit(limit)
    )
    return [WeightVector.from_row(row) for row in result.scalars().all()]


async def propagate_weights(
    db: AsyncSession,
    vector: WeightVector,
    tenant_ids: list[uuid.UUID],
    adjusted_at: datetime | None = None,
) -> list[PropagationOutcome]:
    """
    Copy ``vector`` into a new ledger row for every tenant in ``tenant_ids``.

    Best effort: each insert runs in its own SAVEPOINT and a failure is
    recorded in the returned outcome list instead of being raised. The caller
    commits whatever succeeded.
    """
    stamp = adjusted_at or datetime.utcnow()
    outcomes: list[PropagationOutcome] = []

    for tenant_id in tenant_ids:
        try:
            async with db.begin_nested():
                await append_weights(db, tenant_id, vector, adjusted_at=stamp)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "ledger.propagation_failed",
                tenant_id=str(tenant_id),
                error=str(exc),
            )
            outcomes.append(PropagationOutcome(tenant_id=tenant_id, ok=False, error=str(exc)))
        else:
            outcomes.append(PropagationOutcome(tenant_id=tenant_id, ok=True))

    logger.info(
        "ledger.propagated",
        tenant_count=len(tenant_ids),
        succeeded=sum(1 for o in outcomes if o.ok),
        failed=sum(1 for o in outcomes if not o.ok),
    )
    return outcomes
