"""
Experiment Registry: canary experiments and their tenant assignments.

Status flow:
  running → succeeded | rolled_back | failed

'running' is set by the creation flow; the rollout controller is the only
writer of terminal statuses and writes each experiment exactly once under
normal operation. The terminal update targets the experiment id only, so two
overlapping controller runs resolve as last-write-wins with identical values.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ModelExperiment, ModelExperimentAssignment

logger = structlog.get_logger()

ExperimentStatus = Literal["running", "succeeded", "rolled_back", "failed"]
TerminalStatus = Literal["succeeded", "rolled_back", "failed"]

RUNNING = "running"
SUCCEEDED = "succeeded"
ROLLED_BACK = "rolled_back"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({SUCCEEDED, ROLLED_BACK, FAILED})


class InvalidTransitionError(ValueError):
    """Raised when asked to move an experiment into a non-terminal status."""


@dataclass(frozen=True)
class RunningExperiment:
    id: uuid.UUID
    family: str
    status: str
    started_at: datetime


# ─── Creation (admin flow) ─────────────────────────────────────────────────


async def create_experiment(
    db: AsyncSession,
    canary_tenant_ids: list[uuid.UUID],
    family: str = "ensemble",
    started_at: datetime | None = None,
    notes: str | None = None,
) -> uuid.UUID:
    """Start a running experiment and pin its canary group."""
    experiment_id = uuid.uuid4()
    db.add(
        ModelExperiment(
            id=experiment_id,
            family=family,
            status=RUNNING,
            started_at=started_at or datetime.utcnow(),
            notes=notes,
        )
    )
    for tenant_id in dict.fromkeys(canary_tenant_ids):
        db.add(ModelExperimentAssignment(id=uuid.uuid4(), experiment_id=experiment_id, tenant_id=tenant_id))
    await db.commit()

    logger.info(
        "experiment.created",
        experiment_id=str(experiment_id),
        family=family,
        canary_size=len(canary_tenant_ids),
    )
    return experiment_id


# ─── Reads ──────────────────────────────────────────────────────────────────


async def list_running_experiments(db: AsyncSession, family: str) -> list[RunningExperiment]:
    result = await db.execute(
        select(
            ModelExperiment.id,
            ModelExperiment.family,
            ModelExperiment.status,
            ModelExperiment.started_at,
        )
        .where(ModelExperiment.status == RUNNING, ModelExperiment.family == family)
        .order_by(ModelExperiment.started_at)
    )
    return [
        RunningExperiment(id=row.id, family=row.family, status=row.status, started_at=row.started_at)
        for row in result.all()
    ]


async def canary_tenants(db: AsyncSession, experiment_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(ModelExperimentAssignment.tenant_id)
        .where(ModelExperimentAssignment.experiment_id == experiment_id)
        .order_by(ModelExperimentAssignment.assigned_at)
    )
    return [row.tenant_id for row in result.all()]


async def get_experiment(db: AsyncSession, experiment_id: uuid.UUID) -> ModelExperiment | None:
    result = await db.execute(select(ModelExperiment).where(ModelExperiment.id == experiment_id))
    return result.scalar_one_or_none()


# ─── Terminal transition ────────────────────────────────────────────────────


async def transition_experiment(
    db: AsyncSession,
    experiment_id: uuid.UUID,
    status: TerminalStatus,
    notes: str,
    finished_at: datetime | None = None,
) -> int:
    """
    Write the terminal status, finish time and notes for one experiment.

    Does not commit. Returns the number of rows updated.
    """
    if status not in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"{status!r} is not a terminal experiment status")

    result = await db.execute(
        update(ModelExperiment)
        .where(ModelExperiment.id == experiment_id)
        .values(status=status, finished_at=finished_at or datetime.utcnow(), notes=notes)
    )
    logger.info("experiment.transitioned", experiment_id=str(experiment_id), status=status)
    return result.rowcount
