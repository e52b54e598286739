"""
Celery configuration for background tasks.
"""
from celery import Celery
from celery.schedules import crontab

from asset_admin.core.config import settings

celery_app = Celery(
    "asset-admin",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["asset_admin.tasks.maintenance"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60 * 60,  # 1 hour
    task_soft_time_limit=55 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

celery_app.conf.beat_schedule = {
    'validate-storage-integrity': {
        'task': 'asset_admin.tasks.maintenance.validate_storage_integrity',
        'schedule': crontab(hour=2, minute=0),
    },
    'report-unused-files': {
        'task': 'asset_admin.tasks.maintenance.report_unused_files',
        'schedule': crontab(hour=3, minute=30, day_of_week=1),
    },
}
