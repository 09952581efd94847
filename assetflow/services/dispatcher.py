# assetflow/services/dispatcher.py
from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from assetflow.config import Settings
from assetflow.db import insert_ignore, utcnow
from assetflow.errors import NotFound, PreconditionFailed
from assetflow.infra.retry import backoff_delay
from assetflow.logging_config import get_logger
from assetflow.models import Job, JobKind, JobState

logger = get_logger(__name__)


class Dispatcher:
    """
    Job tabel met lease-gebaseerde dequeue (at-least-once).

    Een geleasde job is onzichtbaar voor andere workers tot `lease_expires_at`;
    daarna wordt hij opnieuw leasebaar. Elke lease krijgt een nieuw token, zodat
    een trage worker met een verlopen lease geen uitkomst meer kan melden.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.rng = rng or random.Random()

    def max_attempts_for(self, kind: JobKind) -> int:
        if JobKind(kind) == JobKind.SCAN:
            return self.settings.scan_max_attempts
        return self.settings.derivative_max_attempts

    # ---- producer side ----
    def enqueue(self, db: Session, asset_id: str, kind: JobKind) -> bool:
        """Idempotent per (asset, kind); runs inside the caller's transaction."""
        now = self.clock()
        created = insert_ignore(
            db,
            Job,
            asset_id=asset_id,
            kind=JobKind(kind).value,
            state=JobState.QUEUED.value,
            attempts=0,
            max_attempts=self.max_attempts_for(kind),
            run_at=now,
            created_at=now,
            updated_at=now,
        )
        if created:
            logger.info("job_enqueued", asset_id=asset_id, kind=JobKind(kind).value)
        return created

    # ---- consumer side ----
    def _leasable(self, kind: str, now: datetime):
        return (
            select(Job)
            .where(Job.kind == kind)
            .where(
                or_(
                    and_(Job.state == JobState.QUEUED.value, Job.run_at <= now),
                    and_(
                        Job.state == JobState.LEASED.value,
                        Job.lease_expires_at <= now,
                        Job.attempts < Job.max_attempts,
                    ),
                )
            )
            .order_by(Job.run_at.asc(), Job.id.asc())
        )

    def lease(self, kind: JobKind, candidates: int = 5) -> Optional[Job]:
        kind = JobKind(kind).value
        now = self.clock()
        with self.session_factory() as db:
            with db.begin():
                for job in db.execute(self._leasable(kind, now).limit(candidates)).scalars().all():
                    token = uuid.uuid4().hex
                    stmt = (
                        update(Job)
                        .where(Job.id == job.id)
                        .where(Job.state == job.state)
                        .where(Job.attempts == job.attempts)
                        .values(
                            state=JobState.LEASED.value,
                            lease_token=token,
                            lease_expires_at=now + timedelta(seconds=self.settings.job_lease_seconds),
                            attempts=job.attempts + 1,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if db.execute(stmt).rowcount == 1:
                        db.refresh(job)
                        logger.info(
                            "job_leased",
                            job_id=job.id,
                            asset_id=job.asset_id,
                            kind=kind,
                            attempt=job.attempts,
                        )
                        return job
        return None

    def complete(self, job_id: int, lease_token: str) -> bool:
        now = self.clock()
        with self.session_factory() as db:
            with db.begin():
                result = db.execute(
                    update(Job)
                    .where(Job.id == job_id)
                    .where(Job.state == JobState.LEASED.value)
                    .where(Job.lease_token == lease_token)
                    .values(
                        state=JobState.DONE.value,
                        completed_at=now,
                        lease_expires_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
        if result.rowcount != 1:
            logger.warning("job_stale_lease", job_id=job_id, op="complete")
            return False
        logger.info("job_completed", job_id=job_id)
        return True

    def fail(self, job_id: int, permanent: bool, error: str, lease_token: str) -> Optional[Job]:
        """
        Transient failures reschedule with exponential backoff until max_attempts;
        permanent failures (or exhaustion) end in `dead`.
        Returns the updated job, or None when the lease was stale.
        """
        now = self.clock()
        s = self.settings
        with self.session_factory() as db:
            with db.begin():
                job = db.execute(
                    select(Job)
                    .where(Job.id == job_id)
                    .where(Job.state == JobState.LEASED.value)
                    .where(Job.lease_token == lease_token)
                ).scalar_one_or_none()
                if job is None:
                    logger.warning("job_stale_lease", job_id=job_id, op="fail")
                    return None

                values = dict(last_error=(error or "")[:2000], lease_expires_at=None, updated_at=now)
                if permanent or job.attempts >= job.max_attempts:
                    values.update(state=JobState.DEAD.value, completed_at=now)
                else:
                    delay = backoff_delay(s.backoff_base_seconds, 2.0, job.attempts - 1, s.backoff_cap_seconds, self.rng)
                    values.update(state=JobState.QUEUED.value, run_at=now + timedelta(seconds=delay))

                result = db.execute(
                    update(Job)
                    .where(Job.id == job_id)
                    .where(Job.lease_token == lease_token)
                    .where(Job.state == JobState.LEASED.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                db.refresh(job)

        logger.info(
            "job_failed",
            job_id=job.id,
            asset_id=job.asset_id,
            kind=job.kind,
            state=job.state,
            attempts=job.attempts,
            permanent=permanent,
            error=job.last_error,
        )
        return job

    def expire_stale(self, kind: JobKind) -> List[Job]:
        """Leases that ran out on their final attempt become dead; returns them."""
        kind = JobKind(kind).value
        now = self.clock()
        dead: List[Job] = []
        with self.session_factory() as db:
            with db.begin():
                stale = db.execute(
                    select(Job)
                    .where(Job.kind == kind)
                    .where(Job.state == JobState.LEASED.value)
                    .where(Job.lease_expires_at <= now)
                    .where(Job.attempts >= Job.max_attempts)
                ).scalars().all()
                for job in stale:
                    result = db.execute(
                        update(Job)
                        .where(Job.id == job.id)
                        .where(Job.state == JobState.LEASED.value)
                        .where(Job.lease_token == job.lease_token)
                        .values(
                            state=JobState.DEAD.value,
                            last_error="lease expired on final attempt",
                            lease_expires_at=None,
                            completed_at=now,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        db.refresh(job)
                        dead.append(job)
                        logger.warning("job_lease_exhausted", job_id=job.id, asset_id=job.asset_id, kind=kind)
        return dead

    # ---- operator side ----
    def get(self, job_id: int) -> Job:
        with self.session_factory() as db:
            job = db.get(Job, job_id)
            if job is None:
                raise NotFound(str(job_id), what="Job")
            return job

    def jobs_for(self, asset_id: str) -> List[Job]:
        with self.session_factory() as db:
            return list(db.execute(select(Job).where(Job.asset_id == asset_id).order_by(Job.id)).scalars())

    def dead_jobs(self, kind: Optional[JobKind] = None, limit: int = 100) -> List[Job]:
        stmt = select(Job).where(Job.state == JobState.DEAD.value)
        if kind is not None:
            stmt = stmt.where(Job.kind == JobKind(kind).value)
        with self.session_factory() as db:
            return list(db.execute(stmt.order_by(Job.updated_at.desc()).limit(limit)).scalars())

    def retry_dead(self, job_id: int) -> Job:
        """Revive a dead job; attempts keep counting, the budget grows by one round."""
        now = self.clock()
        with self.session_factory() as db:
            with db.begin():
                job = db.get(Job, job_id)
                if job is None:
                    raise NotFound(str(job_id), what="Job")
                if job.state != JobState.DEAD.value:
                    raise PreconditionFailed(
                        "INVALID_TRANSITION",
                        f"Job {job_id} is {job.state}, only dead jobs can be retried",
                        {"id": job_id, "state": job.state},
                    )
                job.state = JobState.QUEUED.value
                job.max_attempts = job.attempts + self.max_attempts_for(job.kind)
                job.run_at = now
                job.lease_token = None
                job.lease_expires_at = None
                job.completed_at = None
                job.updated_at = now
        logger.info("job_revived", job_id=job_id, asset_id=job.asset_id, kind=job.kind)
        return job
