"""Celery application: storage maintenance worker entrypoint."""

from celery import Celery

from core.config import settings

celery_app = Celery(
    "filevault_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["worker.tasks.sweep"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Without an interval the sweep only runs when enqueued (POST /admin/sweep)
if settings.SWEEP_INTERVAL_SECONDS > 0:
    celery_app.conf.beat_schedule = {
        "sweep-unreferenced-blobs": {
            "task": "storage.sweep_unreferenced",
            "schedule": float(settings.SWEEP_INTERVAL_SECONDS),
        },
    }
