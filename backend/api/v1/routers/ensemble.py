"""
Ensemble API: per-tenant weight ledger and reliability reads.

Endpoints:
  GET /api/v1/ensemble/{tenant_id}/weights - Current vector + history (newest first)
  GET /api/v1/ensemble/{tenant_id}/reliability - Latest reliability snapshot
  GET /api/v1/ensemble/{tenant_id}/reliability/trend - Snapshot history (oldest first)
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from db.models import ForecastModelMetrics
from ensemble.accuracy import latest_metrics, reliability_trend
from ensemble.ledger import weight_history

router = APIRouter(prefix="/api/v1/ensemble", tags=["ensemble"])


def _tenant_uuid(tenant_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(tenant_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid tenant id")


def _serialize_snapshot(snapshot: ForecastModelMetrics) -> dict[str, Any]:
    return {
        "reliability": snapshot.reliability,
        "precision": snapshot.precision_predicted,
        "recall": snapshot.recall_breached,
        "mae": snapshot.mae_sr,
        "sample_size": snapshot.sample_size,
        "computed_at": snapshot.computed_at.isoformat(),
    }


@router.get("/{tenant_id}/weights")
async def get_weight_history(
    tenant_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    history = await weight_history(db, _tenant_uuid(tenant_id), limit=limit)
    return {
        "tenant_id": tenant_id,
        "current": history[0].as_dict() if history else None,
        "history": [vector.as_dict() for vector in history],
    }


@router.get("/{tenant_id}/reliability")
async def get_latest_reliability(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    snapshot = await latest_metrics(db, _tenant_uuid(tenant_id))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No reliability data for tenant")

    return {"tenant_id": tenant_id, **_serialize_snapshot(snapshot)}


@router.get("/{tenant_id}/reliability/trend")
async def get_reliability_trend(
    tenant_id: str,
    days: int | None = Query(None, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    Reliability snapshots in ascending computed_at order.

    Query params:
      - days: only snapshots from the trailing N days (default: all)
    """
    since = datetime.utcnow() - timedelta(days=days) if days else None
    snapshots = await reliability_trend(db, _tenant_uuid(tenant_id), since=since)
    return {
        "ok": True,
        "tenant_id": tenant_id,
        "trend": [_serialize_snapshot(snapshot) for snapshot in snapshots],
    }
