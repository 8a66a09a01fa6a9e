"""Tenant-aware scheduler helpers for Celery beat fan-out."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.scheduler.dispatch_tuning_tenants",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_tuning_tenants(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    self_tuning_only: bool = False,
):
    """
    Dispatch a tenant-scoped task across every tenant with a settings row.
    """
    from core.config import get_settings
    from db.models import TenantSetting

    run_id = self.request.id or "manual"
    payload = dict(task_kwargs or {})

    if not task_name.startswith("workers."):
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    async def _dispatch():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                query = select(TenantSetting.tenant_id).order_by(TenantSetting.tenant_id)
                if self_tuning_only:
                    query = query.where(TenantSetting.self_tuning_enabled.is_(True))
                result = await db.execute(query)
                tenants = [str(row.tenant_id) for row in result.all()]

            dispatched = 0
            for tenant_id in tenants:
                kwargs = dict(payload)
                kwargs["tenant_id"] = tenant_id
                celery_app.send_task(task_name, kwargs=kwargs)
                dispatched += 1

            summary = {
                "status": "success",
                "task_name": task_name,
                "tenant_count": len(tenants),
                "dispatched_count": dispatched,
                "self_tuning_only": self_tuning_only,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("scheduler.dispatch_complete", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_dispatch())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
