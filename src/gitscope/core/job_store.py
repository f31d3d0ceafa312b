"""Durable job queue with dependency edges.

Claims are row-level: candidates are selected in ``created_at`` order and each
is flipped with a conditional ``UPDATE ... WHERE status = 'pending'``, so two
workers can never both move the same job to ``in_progress``. Terminal
transitions are conditional on ``in_progress`` for the same reason.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, aliased

from ..errors import InvalidInputError, NotFailedError, NotFoundError
from ..models.database import (
    CHAIN_ORDER,
    Database,
    Job,
    JobStatus,
    JobType,
    ensure_utc,
    to_utc,
    utcnow_tz_aware,
)

logger = logging.getLogger(__name__)

LIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value)
STALE_MESSAGE = "[internal] abandoned: no worker finished the job"


class JobStore:
    """Create, claim and finish jobs.

    ``stale_after`` is how long an ``in_progress`` job may run before it is
    considered abandoned by a worker that no longer exists. Such jobs stop
    counting as live and are failed by :meth:`fail_stale`.
    """

    def __init__(self, db: Database, stale_after: Optional[timedelta] = timedelta(hours=1)):
        self.db = db
        self.stale_after = stale_after

    # -- creation -----------------------------------------------------------

    def create(
        self,
        project_id: str,
        job_type: JobType,
        project_repository_id: Optional[str] = None,
        depends_on: Optional[str] = None,
    ) -> Job:
        """Insert a pending job."""
        with self.db.session_scope() as session:
            return self._create(session, project_id, job_type, project_repository_id, depends_on)

    def create_chain(
        self,
        project_id: str,
        project_repository_id: str,
        job_types: Sequence[JobType] = CHAIN_ORDER,
        created_at: Optional[datetime] = None,
        session: Optional[Session] = None,
    ) -> list[Job]:
        """Insert jobs linked head to tail by ``depends_on`` in one transaction."""
        if session is not None:
            return self._create_chain(
                session, project_id, project_repository_id, job_types, created_at
            )
        with self.db.session_scope() as own_session:
            return self._create_chain(
                own_session, project_id, project_repository_id, job_types, created_at
            )

    def _create_chain(
        self,
        session: Session,
        project_id: str,
        project_repository_id: str,
        job_types: Sequence[JobType],
        created_at: Optional[datetime],
    ) -> list[Job]:
        jobs: list[Job] = []
        previous: Optional[str] = None
        for job_type in job_types:
            job = self._create(
                session, project_id, job_type, project_repository_id, previous, created_at
            )
            jobs.append(job)
            previous = job.id
        return jobs

    def _create(
        self,
        session: Session,
        project_id: str,
        job_type: JobType,
        project_repository_id: Optional[str],
        depends_on: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> Job:
        job_type = JobType(job_type)
        if depends_on is not None:
            parent = session.get(Job, depends_on)
            if parent is None:
                raise NotFoundError(f"dependency job {depends_on} not found")
            if parent.project_id != project_id:
                raise InvalidInputError(
                    f"job {depends_on} belongs to another project and cannot be a dependency"
                )

        job = Job(
            project_id=project_id,
            project_repository_id=project_repository_id,
            job_type=job_type.value,
            status=JobStatus.PENDING.value,
            depends_on=depends_on,
            created_at=to_utc(created_at) if created_at else utcnow_tz_aware(),
        )
        session.add(job)
        session.flush()
        logger.debug(f"Created {job_type.value} job {job.id} (depends_on={depends_on})")
        return job

    # -- claiming -----------------------------------------------------------

    def claim_next(
        self, job_type: JobType, limit: int, worker_id: Optional[str] = None
    ) -> list[Job]:
        """Atomically move up to ``limit`` eligible jobs to ``in_progress``.

        A job is eligible when it is pending, of ``job_type`` and either has no
        dependency or its dependency is completed. Oldest jobs are claimed first.
        """
        if limit <= 0:
            return []

        job_type = JobType(job_type)
        dependency = aliased(Job)
        with self.db.session_scope() as session:
            candidates = (
                session.query(Job.id)
                .outerjoin(dependency, Job.depends_on == dependency.id)
                .filter(
                    Job.status == JobStatus.PENDING.value,
                    Job.job_type == job_type.value,
                    or_(
                        Job.depends_on.is_(None),
                        dependency.status == JobStatus.COMPLETED.value,
                    ),
                )
                .order_by(Job.created_at.asc(), Job.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True, of=Job)
                .all()
            )

            now = utcnow_tz_aware()
            claimed: list[str] = []
            for (job_id,) in candidates:
                updated = (
                    session.query(Job)
                    .filter(Job.id == job_id, Job.status == JobStatus.PENDING.value)
                    .update(
                        {
                            Job.status: JobStatus.IN_PROGRESS.value,
                            Job.started_at: now,
                            Job.worker_id: worker_id,
                            Job.updated_at: now,
                        },
                        synchronize_session=False,
                    )
                )
                if updated == 1:
                    claimed.append(job_id)

            if not claimed:
                return []
            jobs = (
                session.query(Job)
                .filter(Job.id.in_(claimed))
                .order_by(Job.created_at.asc(), Job.id.asc())
                .all()
            )

        for job in jobs:
            logger.debug(f"Claimed {job.job_type} job {job.id} for {worker_id}")
        return jobs

    # -- terminal transitions -----------------------------------------------

    def complete(self, job_id: str) -> bool:
        """Mark an in-progress job completed. Returns False if it was not in progress."""
        return self._finish(job_id, JobStatus.COMPLETED, None)

    def fail(self, job_id: str, error_message: str) -> bool:
        """Mark an in-progress job failed with a persisted message."""
        if not error_message:
            error_message = "[internal] failed without a message"
        return self._finish(job_id, JobStatus.FAILED, error_message)

    def _finish(self, job_id: str, status: JobStatus, error_message: Optional[str]) -> bool:
        now = utcnow_tz_aware()
        with self.db.session_scope() as session:
            updated = (
                session.query(Job)
                .filter(Job.id == job_id, Job.status == JobStatus.IN_PROGRESS.value)
                .update(
                    {
                        Job.status: status.value,
                        Job.error_message: error_message,
                        Job.finished_at: now,
                        Job.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
        if updated != 1:
            logger.warning(f"Job {job_id} was not in progress; {status.value} transition ignored")
            return False
        return True

    # -- retry --------------------------------------------------------------

    def replace_failed(self, job_id: str) -> list[Job]:
        """Create a replacement for a failed job and for everything waiting on it.

        The replacement keeps the failed job's target and ``depends_on``. Each
        pending job downstream of the failed one is copied and re-linked to the
        copies, so the new chain mirrors the old one. The original rows are not
        modified.

        Returns:
            The new jobs, replacement first

        Raises:
            NotFoundError: If the job does not exist
            NotFailedError: If the job is not failed
        """
        with self.db.session_scope() as session:
            original = session.get(Job, job_id)
            if original is None:
                raise NotFoundError(f"job {job_id} not found")
            if original.status != JobStatus.FAILED.value:
                raise NotFailedError(f"job {job_id} is {original.status}, only failed jobs can be retried")

            replacement = self._create(
                session,
                original.project_id,
                JobType(original.job_type),
                original.project_repository_id,
                original.depends_on,
            )
            created = [replacement]
            mapping = {original.id: replacement.id}
            frontier = [original.id]
            while frontier:
                dependents = (
                    session.query(Job)
                    .filter(
                        Job.depends_on.in_(frontier),
                        Job.status == JobStatus.PENDING.value,
                    )
                    .order_by(Job.created_at.asc(), Job.id.asc())
                    .all()
                )
                frontier = []
                for dependent in dependents:
                    if dependent.id in mapping:
                        continue
                    copy = self._create(
                        session,
                        dependent.project_id,
                        JobType(dependent.job_type),
                        dependent.project_repository_id,
                        mapping[dependent.depends_on],
                    )
                    mapping[dependent.id] = copy.id
                    created.append(copy)
                    frontier.append(dependent.id)

        logger.info(f"Retried job {job_id} as {replacement.id} ({len(created) - 1} dependents copied)")
        return created

    # -- queries ------------------------------------------------------------

    def get(self, job_id: str) -> Job:
        with self.db.session_scope() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError(f"job {job_id} not found")
            return job

    def by_project(self, project_id: str, status: Optional[JobStatus] = None) -> list[Job]:
        with self.db.session_scope() as session:
            query = session.query(Job).filter(Job.project_id == project_id)
            if status is not None:
                query = query.filter(Job.status == JobStatus(status).value)
            return query.order_by(Job.created_at.asc(), Job.id.asc()).all()

    def by_project_repository(self, project_repository_id: str) -> list[Job]:
        with self.db.session_scope() as session:
            return (
                session.query(Job)
                .filter(Job.project_repository_id == project_repository_id)
                .order_by(Job.created_at.asc(), Job.id.asc())
                .all()
            )

    def by_status(self, status: JobStatus, job_type: Optional[JobType] = None) -> list[Job]:
        with self.db.session_scope() as session:
            query = session.query(Job).filter(Job.status == JobStatus(status).value)
            if job_type is not None:
                query = query.filter(Job.job_type == JobType(job_type).value)
            return query.order_by(Job.created_at.asc(), Job.id.asc()).all()

    # -- abandoned jobs -----------------------------------------------------

    def stale_cutoff(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """``started_at`` values before the returned instant mark abandoned jobs."""
        if self.stale_after is None:
            return None
        return to_utc(now or utcnow_tz_aware()) - self.stale_after

    def fail_stale(self, started_before: datetime, message: str = STALE_MESSAGE) -> list[str]:
        """Fail ``in_progress`` jobs that started before ``started_before``.

        A worker that dies mid-job (crash, kill, host restart) leaves its row
        in ``in_progress`` with nobody to finish it. Failing those rows makes
        them retryable and lets the scheduler enqueue the repository again.

        Returns:
            Ids of the jobs that were failed
        """
        cutoff = to_utc(started_before)
        now = utcnow_tz_aware()
        failed: list[str] = []
        with self.db.session_scope() as session:
            candidates = (
                session.query(Job.id)
                .filter(
                    Job.status == JobStatus.IN_PROGRESS.value,
                    Job.started_at < cutoff,
                )
                .order_by(Job.started_at.asc(), Job.id.asc())
                .all()
            )
            for (job_id,) in candidates:
                updated = (
                    session.query(Job)
                    .filter(
                        Job.id == job_id,
                        Job.status == JobStatus.IN_PROGRESS.value,
                        Job.started_at < cutoff,
                    )
                    .update(
                        {
                            Job.status: JobStatus.FAILED.value,
                            Job.error_message: message,
                            Job.finished_at: now,
                            Job.updated_at: now,
                        },
                        synchronize_session=False,
                    )
                )
                if updated == 1:
                    failed.append(job_id)

        for job_id in failed:
            logger.warning(f"Job {job_id} was in progress since before {cutoff.isoformat()}; marked failed")
        return failed

    def fail_abandoned(self, now: Optional[datetime] = None) -> list[str]:
        """Fail jobs whose run has exceeded ``stale_after`` as of ``now``."""
        cutoff = self.stale_cutoff(now)
        if cutoff is None:
            return []
        return self.fail_stale(cutoff)

    def _is_stale(self, started_at: Optional[datetime], cutoff: Optional[datetime]) -> bool:
        if cutoff is None or started_at is None:
            return False
        return ensure_utc(started_at) < cutoff

    # -- liveness -----------------------------------------------------------

    def has_live_job(
        self, project_repository_id: str, job_type: JobType, now: Optional[datetime] = None
    ) -> bool:
        """True when the repository has a running or still-eligible job of ``job_type``.

        Pending jobs stuck behind a failed dependency do not count, and neither
        do ``in_progress`` jobs that have run longer than ``stale_after``.
        """
        with self.db.session_scope() as session:
            jobs = (
                session.query(Job)
                .filter(
                    Job.project_repository_id == project_repository_id,
                    Job.job_type == JobType(job_type).value,
                    Job.status.in_(LIVE_STATUSES),
                )
                .all()
            )
            return self._any_live(session, jobs, self.stale_cutoff(now))

    def has_active_chain(
        self,
        project_id: str,
        since: datetime,
        job_types: Iterable[JobType] = CHAIN_ORDER,
        now: Optional[datetime] = None,
    ) -> bool:
        """True when the project has live chain jobs or any created since ``since``."""
        type_values = [JobType(t).value for t in job_types]
        with self.db.session_scope() as session:
            recent = (
                session.query(Job.id)
                .filter(
                    Job.project_id == project_id,
                    Job.job_type.in_(type_values),
                    Job.created_at >= to_utc(since),
                )
                .first()
            )
            if recent is not None:
                return True

            jobs = (
                session.query(Job)
                .filter(
                    Job.project_id == project_id,
                    Job.job_type.in_(type_values),
                    Job.status.in_(LIVE_STATUSES),
                )
                .all()
            )
            return self._any_live(session, jobs, self.stale_cutoff(now))

    def _any_live(
        self, session: Session, jobs: list[Job], cutoff: Optional[datetime] = None
    ) -> bool:
        if any(
            job.status == JobStatus.IN_PROGRESS.value and not self._is_stale(job.started_at, cutoff)
            for job in jobs
        ):
            return True
        pending = [job for job in jobs if job.status == JobStatus.PENDING.value]
        if not pending:
            return False

        status = {job.id: job.status for job in pending}
        parent = {job.id: job.depends_on for job in pending}
        missing = {p for p in parent.values() if p and p not in status}
        while missing:
            rows = (
                session.query(Job.id, Job.status, Job.depends_on, Job.started_at)
                .filter(Job.id.in_(missing))
                .all()
            )
            for row in rows:
                # an abandoned run never completes, so it blocks like a failure
                if row.status == JobStatus.IN_PROGRESS.value and self._is_stale(row.started_at, cutoff):
                    status[row.id] = JobStatus.FAILED.value
                else:
                    status[row.id] = row.status
                parent[row.id] = row.depends_on
            missing = {
                row.depends_on for row in rows if row.depends_on and row.depends_on not in status
            }

        return any(not self._is_blocked(job.id, status, parent) for job in pending)

    @staticmethod
    def _is_blocked(job_id: str, status: dict[str, str], parent: dict[str, Optional[str]]) -> bool:
        """Walk up pending ancestors; a failed ancestor blocks the job forever."""
        seen = {job_id}
        current = parent.get(job_id)
        while current is not None and current not in seen:
            seen.add(current)
            current_status = status.get(current)
            if current_status == JobStatus.FAILED.value:
                return True
            if current_status != JobStatus.PENDING.value:
                return False
            current = parent.get(current)
        return False
