# assetflow/workers/runner.py
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, Optional

from assetflow.config import Settings
from assetflow.errors import ConcurrencyConflict, PermanentJobError, TransientJobError
from assetflow.logging_config import LoggingContext, get_logger
from assetflow.metrics import job_duration, jobs_total
from assetflow.models import Job, JobKind
from assetflow.services.dispatcher import Dispatcher
from assetflow.workers.base import JobWorker

logger = get_logger(__name__)


class JobRunner:
    """
    Trekt geleasde jobs uit de dispatcher en voert ze uit met een timeout.
    Wordt aangeroepen vanuit Celery tasks, of draait als eigen thread pool
    (`start`) in single-process deployments.
    """

    def __init__(self, dispatcher: Dispatcher, workers: Dict[JobKind, JobWorker], settings: Settings):
        self.dispatcher = dispatcher
        self.workers = {JobKind(k): w for k, w in workers.items()}
        self.settings = settings
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, settings.worker_concurrency * 2),
            thread_name_prefix="assetflow-job",
        )

    def _run_with_timeout(self, worker: JobWorker, job: Job) -> None:
        future = self._executor.submit(worker.handle, job)
        # de thread zelf kan niet gestopt worden; alleen de uitkomst telt niet meer
        future.result(timeout=self.settings.job_timeout_seconds)

    def _fail(self, worker: JobWorker, job: Job, permanent: bool, error: str) -> str:
        updated = self.dispatcher.fail(job.id, permanent, error, job.lease_token)
        if updated is None:
            return "stale"
        if updated.state == "dead":
            worker.on_exhausted(updated)
            return "dead"
        return "retry"

    def expire(self, kind: JobKind) -> int:
        worker = self.workers[JobKind(kind)]
        dead = self.dispatcher.expire_stale(kind)
        for job in dead:
            with LoggingContext(job_id=job.id, asset_id=job.asset_id, kind=job.kind):
                worker.on_exhausted(job)
            jobs_total.labels(job.kind, "dead").inc()
        return len(dead)

    def handle_one(self, kind: JobKind) -> Optional[str]:
        """Lease and run at most one job of `kind`; returns the outcome or None when idle."""
        kind = JobKind(kind)
        worker = self.workers[kind]
        self.expire(kind)

        job = self.dispatcher.lease(kind)
        if job is None:
            return None

        with LoggingContext(job_id=job.id, asset_id=job.asset_id, kind=kind.value):
            start = time.monotonic()
            try:
                self._run_with_timeout(worker, job)
            except FuturesTimeout:
                outcome = self._fail(worker, job, False, f"timeout after {self.settings.job_timeout_seconds}s")
            except (TransientJobError, ConcurrencyConflict) as e:
                outcome = self._fail(worker, job, False, str(e) or type(e).__name__)
            except PermanentJobError as e:
                outcome = self._fail(worker, job, True, str(e) or type(e).__name__)
            except Exception:
                # onbekende fout: lease laten verlopen, job komt vanzelf terug
                logger.exception("job_crashed")
                outcome = "error"
            else:
                outcome = "done" if self.dispatcher.complete(job.id, job.lease_token) else "stale"
            finally:
                job_duration.labels(kind.value).observe(time.monotonic() - start)

            jobs_total.labels(kind.value, outcome).inc()
            logger.info("job_finished", outcome=outcome, attempt=job.attempts)
            return outcome

    def drain(self, kind: JobKind, max_jobs: int = 50) -> int:
        handled = 0
        while handled < max_jobs:
            if self.handle_one(kind) is None:
                break
            handled += 1
        return handled

    def worker_loop(self, stop: threading.Event) -> None:
        while not stop.is_set():
            busy = False
            for kind in self.workers:
                try:
                    busy = self.handle_one(kind) is not None or busy
                except Exception:
                    logger.exception("worker_loop_error", kind=kind.value)
            if not busy:
                stop.wait(self.settings.worker_poll_interval_seconds)

    def start(self, threads: Optional[int] = None) -> threading.Event:
        stop = threading.Event()
        for i in range(threads or self.settings.worker_concurrency):
            t = threading.Thread(target=self.worker_loop, args=(stop,), daemon=True, name=f"assetflow-worker-{i}")
            t.start()
        logger.info("workers_started", threads=threads or self.settings.worker_concurrency)
        return stop

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def main() -> None:
    from assetflow.config import get_settings
    from assetflow.logging_config import setup_logging
    from assetflow.pipeline import build_pipeline

    settings = get_settings()
    setup_logging(settings.log_level)
    runner = build_pipeline(settings).runner
    stop = runner.start()
    try:
        while not stop.is_set():
            stop.wait(1.0)
    except KeyboardInterrupt:
        stop.set()
    finally:
        runner.shutdown()


if __name__ == "__main__":
    main()
