"""
Canary Experiments API: Ensemble weight rollout experiments.

Workflow:
  1. Admin flow creates an experiment (status='running') with a canary group
  2. Self-tuning runs grow the weight ledger for canary tenants
  3. Controller cycle (daily, or POST /evaluate) decides rollout / rollback
  4. Experiment ends in 'succeeded', 'rolled_back' or 'failed'

Endpoints:
  GET /api/v1/experiments - List experiments
  GET /api/v1/experiments/{id} - Get experiment details with canary group
  POST /api/v1/experiments/evaluate - Run one evaluation cycle now
"""

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.deps import get_db, get_rollout_policy, get_session_factory
from db.models import ModelExperiment
from ensemble.controller import RolloutController
from ensemble.policy import RolloutPolicy
from ensemble.registry import canary_tenants, get_experiment

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/experiments", tags=["experiments"])


def _serialize(exp: ModelExperiment) -> dict[str, Any]:
    return {
        "id": str(exp.id),
        "family": exp.family,
        "status": exp.status,
        "started_at": exp.started_at.isoformat(),
        "finished_at": exp.finished_at.isoformat() if exp.finished_at else None,
        "notes": exp.notes,
    }


# ── Endpoints ───────────────────────────────────────────────────────────────


@router.get("")
async def list_experiments(
    status: str | None = None,
    family: str | None = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """
    List experiments with optional filters.

    Query params:
      - status: 'running', 'succeeded', 'rolled_back', 'failed'
      - family: 'ensemble', ...
      - limit: Max experiments to return (default 50)
    """
    query = select(ModelExperiment)
    if status:
        query = query.where(ModelExperiment.status == status)
    if family:
        query = query.where(ModelExperiment.family == family)
    query = query.order_by(ModelExperiment.started_at.desc()).limit(limit)

    result = await db.execute(query)
    return [_serialize(exp) for exp in result.scalars().all()]


@router.post("/evaluate")
async def evaluate_experiments(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    policy: RolloutPolicy = Depends(get_rollout_policy),
):
    """Run the rollout controller once, synchronously."""
    controller = RolloutController(session_factory, policy=policy)
    try:
        summary = await controller.run_cycle()
    except Exception as exc:  # noqa: BLE001
        logger.error("experiments.evaluate_failed", error=str(exc), exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})

    return summary.as_dict()


@router.get("/{experiment_id}")
async def get_experiment_details(
    experiment_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get full details for a specific experiment, including its canary group."""
    try:
        exp_uuid = uuid.UUID(experiment_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid experiment id")

    exp = await get_experiment(db, exp_uuid)
    if not exp:
        raise HTTPException(status_code=404, detail="Experiment not found")

    canary = await canary_tenants(db, exp_uuid)
    return {
        **_serialize(exp),
        "canary_tenant_ids": [str(tenant_id) for tenant_id in canary],
    }
