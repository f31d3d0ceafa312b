"""Inbound operations of the analysis pipeline.

``AnalysisPipeline`` is what outer layers (the CLI, an HTTP layer) call to
enqueue work, retry failures and read statistics. It validates targets and
delegates to the job store; nothing here runs a job.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional, Union

from .core.identity import IdentityResolver
from .core.job_store import JobStore
from .core.person_stats import PersonReport, PersonStatsReader
from .core.stats_engine import StatsEngine
from .errors import ConflictError, InvalidInputError, NoIdentitiesError, NotFoundError
from .models.database import CHAIN_ORDER, Job, JobStatus, JobType, ProjectRepository
from .storage.project_store import ProjectStore
from .storage.statistics_store import PersonTotals
from .utils.date_utils import Grain

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Enqueue, retry and inspect analysis jobs; read computed statistics."""

    def __init__(
        self,
        jobs: JobStore,
        projects: ProjectStore,
        identity: IdentityResolver,
        stats: StatsEngine,
        notify: Optional[Callable[[], None]] = None,
        person_stats: Optional[PersonStatsReader] = None,
    ):
        self.jobs = jobs
        self.projects = projects
        self.identity = identity
        self.stats = stats
        self.notify = notify
        self.person_stats = person_stats or PersonStatsReader(
            stats.db, stats.statistics, identity, stats.config
        )

    # -- enqueue ------------------------------------------------------------

    def enqueue_clone(self, project_id: str, project_repo_id: str) -> list[Job]:
        """Create ``clone`` followed by ``commit`` depending on it."""
        self._require_tracked(project_id, project_repo_id)
        self._refuse_duplicate(project_repo_id, JobType.CLONE)
        created = self.jobs.create_chain(
            project_id, project_repo_id, (JobType.CLONE, JobType.COMMIT)
        )
        return self._enqueued(created)

    def enqueue_fetch_github(self, project_id: str, project_repo_id: str) -> Job:
        self._require_tracked(project_id, project_repo_id)
        self._refuse_duplicate(project_repo_id, JobType.PULL_REQUEST)
        return self._enqueued(
            [self.jobs.create(project_id, JobType.PULL_REQUEST, project_repo_id)]
        )[0]

    def enqueue_analyze(self, project_id: str, project_repo_id: str) -> Job:
        """Create a ``stats`` job.

        Raises:
            NoIdentitiesError: If the project has no account associations yet
        """
        self._require_tracked(project_id, project_repo_id)
        if not self.identity.has_associations(project_id):
            raise NoIdentitiesError(
                f"project {project_id} has no email associations; associate accounts first"
            )
        self._refuse_duplicate(project_repo_id, JobType.STATS)
        return self._enqueued([self.jobs.create(project_id, JobType.STATS, project_repo_id)])[0]

    def enqueue_update_all(
        self, project_id: str, created_at: Optional[datetime] = None
    ) -> list[Job]:
        """Create a clone -> commit -> pull_request -> stats chain per tracked repository.

        Repositories that still have a live job of any chain type are skipped.
        All chains of the project are created in one transaction.
        """
        self.projects.get_project(project_id)
        repositories = self.projects.list_repositories(project_id, tracked_only=True)
        targets = [
            repo for repo in repositories if not self._has_live_chain_job(repo.id, now=created_at)
        ]
        skipped = len(repositories) - len(targets)
        if skipped:
            logger.info(f"Project {project_id}: {skipped} repositories already have live jobs")

        created: list[Job] = []
        if targets:
            with self.jobs.db.session_scope() as session:
                for repo in targets:
                    created.extend(
                        self.jobs.create_chain(
                            project_id,
                            repo.id,
                            CHAIN_ORDER,
                            created_at=created_at,
                            session=session,
                        )
                    )
        logger.info(
            f"Project {project_id}: enqueued update-all for {len(targets)} repositories "
            f"({len(created)} jobs)"
        )
        return self._enqueued(created)

    def retry_job(self, job_id: str) -> list[Job]:
        """Replace a failed job and its blocked dependents with fresh pending copies.

        Jobs left ``in_progress`` past the store's ``stale_after`` by a dead worker
        are failed first, so they can be retried too.

        Raises:
            NotFoundError: If the job does not exist
            NotFailedError: If the job is not failed
        """
        self.jobs.fail_abandoned()
        return self._enqueued(self.jobs.replace_failed(job_id))

    # -- read ---------------------------------------------------------------

    def read_stats(
        self,
        project_id: str,
        grain: Union[Grain, str] = Grain.ALL,
        key: Optional[str] = None,
        repository_id: Optional[str] = None,
    ) -> list[PersonTotals]:
        self.projects.get_project(project_id)
        if repository_id is not None:
            self._require_member(project_id, repository_id)
        return self.stats.read_stats(project_id, grain, key, repository_id)

    def available_periods(self, project_id: str, grain: Union[Grain, str]) -> list[str]:
        return self.stats.available_periods(project_id, grain)

    def person_report(self, project_id: str, person: str) -> PersonReport:
        """Averages, score history, highlights and indicators of one account.

        Args:
            project_id: Project to read
            person: Platform account id or username

        Raises:
            NotFoundError: If the project or account does not exist
        """
        self.projects.get_project(project_id)
        return self.person_stats.report(project_id, person)

    def get_job(self, job_id: str) -> Job:
        return self.jobs.get(job_id)

    def jobs_for_project(self, project_id: str, status: Optional[JobStatus] = None) -> list[Job]:
        return self.jobs.by_project(project_id, status)

    def jobs_for_repository(self, project_repo_id: str) -> list[Job]:
        return self.jobs.by_project_repository(project_repo_id)

    def jobs_by_status(self, status: JobStatus, job_type: Optional[JobType] = None) -> list[Job]:
        return self.jobs.by_status(status, job_type)

    # -- helpers ------------------------------------------------------------

    def _require_member(self, project_id: str, project_repo_id: str) -> ProjectRepository:
        membership = self.projects.get_project_repository(project_repo_id)
        if membership.project_id != project_id:
            raise NotFoundError(
                f"repository {project_repo_id} is not part of project {project_id}"
            )
        return membership

    def _require_tracked(self, project_id: str, project_repo_id: str) -> ProjectRepository:
        membership = self._require_member(project_id, project_repo_id)
        if not membership.is_tracked:
            raise InvalidInputError(f"repository {project_repo_id} is not tracked")
        return membership

    def _refuse_duplicate(self, project_repo_id: str, job_type: JobType) -> None:
        if self.jobs.has_live_job(project_repo_id, job_type):
            raise ConflictError(
                f"a {job_type.value} job is already pending or running for repository "
                f"{project_repo_id}"
            )

    def _has_live_chain_job(self, project_repo_id: str, now: Optional[datetime] = None) -> bool:
        return any(
            self.jobs.has_live_job(project_repo_id, job_type, now=now) for job_type in CHAIN_ORDER
        )

    def _enqueued(self, created: list[Job]) -> list[Job]:
        if created and self.notify is not None:
            self.notify()
        return created
