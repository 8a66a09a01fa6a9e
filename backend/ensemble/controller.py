"""
Evaluation & Rollout Controller: canary vs control for ensemble weights.

Invoked on a schedule with no arguments. Each cycle scans every running
experiment of the policy family and, per experiment:
  1. Maturity gate: skip until the experiment is min_eval_days old
  2. Partition: canary = assigned tenants, control = tenants-with-settings minus canary
  3. Windowed metrics: accuracy rows over the trailing window, latest reliability
  4. MAE per group; skip the cycle if either group has no rows
  5. Decide: rollout if MAE improved by mae_threshold OR reliability by reliability_threshold
  6. Rollout: copy the newest canary weight vector to every self-tuning tenant
  7. Rollback: leave the population untouched
  8. Always end in a terminal status (succeeded / rolled_back / failed)

Each experiment is evaluated in its own session. An unexpected error rolls
that session back and marks the experiment failed; the cycle moves on.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ensemble.accuracy import latest_reliability, query_accuracy
from ensemble.ledger import PropagationOutcome, latest_among, propagate_weights
from ensemble.policy import RolloutPolicy
from ensemble.population import control_population, self_tuning_tenants, tenants_with_settings
from ensemble.registry import (
    FAILED,
    ROLLED_BACK,
    SUCCEEDED,
    RunningExperiment,
    canary_tenants,
    list_running_experiments,
    transition_experiment,
)
from ensemble.statistics import average_reliability, mean_absolute_error

logger = structlog.get_logger()

SkipReason = Literal["too_young", "no_canary_assignments", "insufficient_data"]


# ─── Per-experiment results ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ExperimentMetrics:
    canary_mae: float
    control_mae: float
    mae_improvement: float
    canary_reliability: float
    control_reliability: float
    reliability_improvement: float
    canary_size: int
    control_size: int


@dataclass(frozen=True)
class Evaluated:
    experiment_id: uuid.UUID
    status: Literal["succeeded", "rolled_back"]
    metrics: ExperimentMetrics
    propagation: tuple[PropagationOutcome, ...] = ()


@dataclass(frozen=True)
class Skipped:
    experiment_id: uuid.UUID
    reason: SkipReason


@dataclass(frozen=True)
class Failed:
    experiment_id: uuid.UUID
    error: str


ExperimentOutcome = Union[Evaluated, Skipped, Failed]


@dataclass
class CycleSummary:
    outcomes: list[ExperimentOutcome] = field(default_factory=list)

    @property
    def evaluated(self) -> int:
        """Running experiments scanned this cycle, whatever their outcome."""
        return len(self.outcomes)

    def _count_status(self, status: str) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Evaluated) and o.status == status)

    @property
    def succeeded(self) -> int:
        return self._count_status(SUCCEEDED)

    @property
    def rolled_back(self) -> int:
        return self._count_status(ROLLED_BACK)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Skipped))

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Failed))

    def as_dict(self) -> dict:
        return {
            "ok": True,
            "evaluated": self.evaluated,
            "succeeded": self.succeeded,
            "rolled_back": self.rolled_back,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ─── Controller ─────────────────────────────────────────────────────────────


class RolloutController:
    """Canary evaluation loop for ensemble weight experiments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: RolloutPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self.policy = policy or RolloutPolicy()
        self.clock = clock or datetime.utcnow

    def _now(self) -> datetime:
        return _utc_naive(self.clock())

    async def run_cycle(self) -> CycleSummary:
        """
        Evaluate every running experiment once.

        Errors listing the experiments propagate to the caller; errors inside
        a single experiment never do.
        """
        async with self.session_factory() as db:
            experiments = await list_running_experiments(db, self.policy.family)

        summary = CycleSummary()
        if not experiments:
            logger.info("experiments.none_running", family=self.policy.family)
            return summary

        for experiment in experiments:
            summary.outcomes.append(await self._evaluate_isolated(experiment))

        logger.info("experiments.cycle_complete", family=self.policy.family, **summary.as_dict())
        return summary

    async def _evaluate_isolated(self, experiment: RunningExperiment) -> ExperimentOutcome:
        try:
            async with self.session_factory() as db:
                return await self.evaluate_experiment(db, experiment)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "experiment.evaluation_failed",
                experiment_id=str(experiment.id),
                error=str(exc),
                exc_info=True,
            )
            return await self._mark_failed(experiment, exc)

    async def _mark_failed(self, experiment: RunningExperiment, exc: Exception) -> Failed:
        try:
            async with self.session_factory() as db:
                await transition_experiment(
                    db,
                    experiment.id,
                    FAILED,
                    notes=f"Evaluation failed: {exc}",
                    finished_at=self._now(),
                )
                await db.commit()
        except Exception as mark_exc:  # noqa: BLE001
            # Left running; the next cycle retries it.
            logger.error(
                "experiment.mark_failed_failed",
                experiment_id=str(experiment.id),
                error=str(mark_exc),
                exc_info=True,
            )
        return Failed(experiment_id=experiment.id, error=str(exc))

    async def evaluate_experiment(self, db: AsyncSession, experiment: RunningExperiment) -> ExperimentOutcome:
        now = self._now()
        policy = self.policy

        days_since_start = (now - _utc_naive(experiment.started_at)).total_seconds() / 86400
        if days_since_start < policy.min_eval_days:
            logger.info(
                "experiment.too_young",
                experiment_id=str(experiment.id),
                days_since_start=round(days_since_start, 1),
            )
            return Skipped(experiment_id=experiment.id, reason="too_young")

        canary = await canary_tenants(db, experiment.id)
        if not canary:
            logger.warning("experiment.no_canary_assignments", experiment_id=str(experiment.id))
            return Skipped(experiment_id=experiment.id, reason="no_canary_assignments")

        control = control_population(await tenants_with_settings(db), canary)

        since = now - timedelta(days=policy.metric_window_days)
        canary_rows = await query_accuracy(db, canary, since)
        control_rows = await query_accuracy(db, control, since)

        canary_mae = mean_absolute_error((r.predicted, r.actual) for r in canary_rows)
        control_mae = mean_absolute_error((r.predicted, r.actual) for r in control_rows)
        if canary_mae is None or control_mae is None:
            logger.info(
                "experiment.insufficient_data",
                experiment_id=str(experiment.id),
                canary_rows=len(canary_rows),
                control_rows=len(control_rows),
            )
            return Skipped(experiment_id=experiment.id, reason="insufficient_data")

        canary_reliability = average_reliability([s.reliability for s in await latest_reliability(db, canary)])
        control_reliability = average_reliability([s.reliability for s in await latest_reliability(db, control)])

        mae_improvement = control_mae - canary_mae  # positive = canary better
        reliability_improvement = canary_reliability - control_reliability

        metrics = ExperimentMetrics(
            canary_mae=canary_mae,
            control_mae=control_mae,
            mae_improvement=mae_improvement,
            canary_reliability=canary_reliability,
            control_reliability=control_reliability,
            reliability_improvement=reliability_improvement,
            canary_size=len(canary),
            control_size=len(control),
        )
        rollout = policy.should_rollout(mae_improvement, reliability_improvement)

        logger.info(
            "experiment.decision",
            experiment_id=str(experiment.id),
            canary_mae=round(canary_mae, 2),
            control_mae=round(control_mae, 2),
            mae_improvement=round(mae_improvement, 2),
            canary_reliability=round(canary_reliability, 1),
            control_reliability=round(control_reliability, 1),
            reliability_improvement=round(reliability_improvement, 1),
            decision="rollout" if rollout else "rollback",
        )

        if rollout:
            return await self._rollout(db, experiment, canary, metrics, now)
        return await self._rollback(db, experiment, metrics, now)

    async def _rollout(
        self,
        db: AsyncSession,
        experiment: RunningExperiment,
        canary: list[uuid.UUID],
        metrics: ExperimentMetrics,
        now: datetime,
    ) -> Evaluated:
        notes = (
            f"Rollout successful: MAE improved by {metrics.mae_improvement:.2f}pp, "
            f"Reliability improved by {metrics.reliability_improvement:.1f}pp"
        )

        propagation: list[PropagationOutcome] = []
        vector = await latest_among(db, canary)
        if vector is None:
            logger.warning("experiment.no_canary_weights", experiment_id=str(experiment.id))
            notes += "; no canary weight vector found, nothing propagated"
        else:
            targets = await self_tuning_tenants(db)
            propagation = await propagate_weights(db, vector, targets, adjusted_at=now)
            failures = [o for o in propagation if not o.ok]
            if failures:
                notes += f"; propagation failed for {len(failures)} of {len(propagation)} tenants"

        await transition_experiment(db, experiment.id, SUCCEEDED, notes=notes, finished_at=now)
        await db.commit()

        logger.info(
            "experiment.rollout",
            experiment_id=str(experiment.id),
            propagated=sum(1 for o in propagation if o.ok),
        )
        return Evaluated(
            experiment_id=experiment.id,
            status=SUCCEEDED,
            metrics=metrics,
            propagation=tuple(propagation),
        )

    async def _rollback(
        self,
        db: AsyncSession,
        experiment: RunningExperiment,
        metrics: ExperimentMetrics,
        now: datetime,
    ) -> Evaluated:
        notes = (
            f"Rollback: MAE improvement {metrics.mae_improvement:.2f}pp "
            f"(need {self.policy.mae_threshold:g}), "
            f"Reliability improvement {metrics.reliability_improvement:.1f}pp "
            f"(need {self.policy.reliability_threshold:g})"
        )
        await transition_experiment(db, experiment.id, ROLLED_BACK, notes=notes, finished_at=now)
        await db.commit()

        logger.info("experiment.rollback", experiment_id=str(experiment.id))
        return Evaluated(experiment_id=experiment.id, status=ROLLED_BACK, metrics=metrics)
