"""
Tuning Workers: reliability refresh and self-tuning weight adjustment.

  1. refresh_reliability: per tenant, roll 30d of accuracy rows into a snapshot
  2. run_self_tuning: one adaptive weight adjustment per tenant with settings

Schedule: See celery_app.py beat_schedule
"""

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.tuning.refresh_reliability",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def refresh_reliability(self, tenant_id: str):
    """Daily job: append a reliability snapshot for one tenant."""
    run_id = self.request.id or "manual"
    logger.info("reliability.started", tenant_id=tenant_id, run_id=run_id)

    async def _refresh():
        from core.config import get_settings
        from ensemble.accuracy import refresh_reliability_snapshot

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                snapshot = await refresh_reliability_snapshot(
                    db,
                    uuid.UUID(tenant_id),
                    window_days=settings.reliability_window_days,
                )
                await db.commit()

            if snapshot is None:
                return {"status": "skipped", "reason": "no_accuracy_data", "tenant_id": tenant_id}
            return {
                "status": "success",
                "tenant_id": tenant_id,
                "reliability": snapshot.reliability,
                "mae": snapshot.mae_sr,
                "sample_size": snapshot.sample_size,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_refresh())
    except Exception as exc:  # noqa: BLE001
        logger.error("reliability.failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.tuning.run_self_tuning",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def run_self_tuning(self):
    """Daily job: adjust ensemble weights for every tenant with a settings row."""
    run_id = self.request.id or "manual"
    logger.info("tuning.started", run_id=run_id)

    async def _tune():
        from core.config import get_settings
        from ensemble.tuner import run_tuning_pass

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                results = await run_tuning_pass(db)

            return {
                "ok": True,
                "tuned": len(results),
                "results": [
                    {
                        "tenant_id": str(r.tenant_id),
                        "reliability": r.reliability,
                        "mae": r.mae,
                        "weights": {"arima": r.weights[0], "gradient": r.weights[1], "bayes": r.weights[2]},
                    }
                    for r in results
                ],
                "run_id": run_id,
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_tune())
    except Exception as exc:  # noqa: BLE001
        logger.error("tuning.failed", error=str(exc), run_id=run_id, exc_info=True)
        raise self.retry(exc=exc)
