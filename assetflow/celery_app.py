# assetflow/celery_app.py
from celery import Celery
from celery.utils.log import get_task_logger

from assetflow.config import get_settings

settings = get_settings()

celery_app = Celery(
    "assetflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["assetflow.tasks"],
)

# Celery configuratie
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Amsterdam",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minuten
    task_soft_time_limit=25 * 60,  # 25 minuten
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Beat: jobs uit de tabel trekken en periodiek opruimen
celery_app.conf.beat_schedule = {
    "drain-scan-jobs": {
        "task": "assetflow.process_jobs",
        "schedule": settings.worker_poll_interval_seconds,
        "args": ("scan",),
    },
    "drain-derivative-jobs": {
        "task": "assetflow.process_jobs",
        "schedule": settings.worker_poll_interval_seconds,
        "args": ("derivatives",),
    },
    "janitor-sweep": {
        "task": "assetflow.janitor_sweep",
        "schedule": float(settings.janitor_interval_seconds),
    },
}

logger = get_task_logger(__name__)
