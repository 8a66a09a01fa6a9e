"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "compliance_forecast",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.experiments", "workers.tuning", "workers.scheduler"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.experiments.*": {"queue": "ml"},
        "workers.tuning.*": {"queue": "ml"},
        "workers.scheduler.*": {"queue": "sync"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Reliability & Tuning ───────────────────────────────────
        "refresh-reliability-daily": {
            "task": "workers.scheduler.dispatch_tuning_tenants",
            "schedule": crontab(hour=4, minute=0),
            "kwargs": {"task_name": "workers.tuning.refresh_reliability"},
            "options": {"queue": "sync"},
        },
        "self-tuning-daily": {
            "task": "workers.tuning.run_self_tuning",
            "schedule": crontab(hour=4, minute=30),  # After reliability refresh
            "options": {"queue": "ml"},
        },
        # ── Canary Experiments ─────────────────────────────────────
        "evaluate-ensemble-experiments-daily": {
            "task": "workers.experiments.evaluate_ensemble_experiments",
            "schedule": crontab(hour=5, minute=0),  # After self-tuning
            "options": {"queue": "ml"},
        },
    },
)
