"""
Experiment Workers: daily canary evaluation for ensemble weights.

Runs the rollout controller once over all running ensemble experiments.
Per-experiment errors are absorbed by the controller; only a failure to
list experiments fails (and retries) the task.

Schedule: See celery_app.py beat_schedule
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.experiments.evaluate_ensemble_experiments",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def evaluate_ensemble_experiments(self):
    """
    Daily job: decide rollout / rollback for every mature canary experiment.

    Returns {ok, evaluated, succeeded, rolled_back, skipped, failed}.
    """
    run_id = self.request.id or "manual"
    logger.info("experiments.started", run_id=run_id)

    async def _evaluate():
        from core.config import get_settings
        from ensemble.controller import RolloutController
        from ensemble.policy import RolloutPolicy

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            controller = RolloutController(session_factory, policy=RolloutPolicy.from_settings(settings))
            summary = await controller.run_cycle()
            return {**summary.as_dict(), "run_id": run_id}
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_evaluate())
    except Exception as exc:  # noqa: BLE001
        logger.error("experiments.failed", error=str(exc), run_id=run_id, exc_info=True)
        raise self.retry(exc=exc)
