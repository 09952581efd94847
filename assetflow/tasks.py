# assetflow/tasks.py
from functools import lru_cache
from typing import Any, Dict

from assetflow.celery_app import celery_app, logger
from assetflow.config import get_settings
from assetflow.logging_config import setup_logging
from assetflow.models import JobKind
from assetflow.pipeline import AssetPipeline, build_pipeline


@lru_cache(maxsize=1)
def get_pipeline() -> AssetPipeline:
    settings = get_settings()
    setup_logging(settings.log_level)
    return build_pipeline(settings)


@celery_app.task(name="assetflow.process_jobs")
def process_jobs_task(kind: str, max_jobs: int = 50) -> Dict[str, Any]:
    """Lease en verwerk tot `max_jobs` jobs van één soort."""
    handled = get_pipeline().process_jobs(JobKind(kind), max_jobs=max_jobs)
    if handled:
        logger.info(f"Processed {handled} {kind} job(s)")
    return {"kind": kind, "handled": handled}


@celery_app.task(name="assetflow.janitor_sweep")
def janitor_sweep_task(dry_run: bool = False) -> Dict[str, Any]:
    report = get_pipeline().sweep(dry_run=dry_run)
    logger.info(f"Janitor sweep: {report.as_dict()}")
    return report.as_dict()
