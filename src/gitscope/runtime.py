"""Composition root: build every service from a :class:`Config`."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .config.schema import Config
from .core.git_facade import GitFacade
from .core.identity import IdentityResolver
from .core.job_store import JobStore
from .core.person_stats import PersonStatsReader
from .core.repo_locks import RepositoryLocks
from .core.stats_engine import StatsEngine
from .integrations.github_integration import GitHubFacade
from .models.database import Database, JobType
from .pipeline import AnalysisPipeline
from .scheduler import Scheduler
from .storage.activity_store import ActivityStore
from .storage.project_store import ProjectStore
from .storage.statistics_store import StatisticsStore
from .supervisor import ShutdownSupervisor
from .workers import CloneWorker, CommitWorker, PullRequestWorker, StatsWorker, WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: Config
    db: Database
    projects: ProjectStore
    activity: ActivityStore
    statistics: StatisticsStore
    jobs: JobStore
    github: GitHubFacade
    git: GitFacade
    identity: IdentityResolver
    stats: StatsEngine
    person_stats: PersonStatsReader
    pipeline: AnalysisPipeline
    pool: WorkerPool
    scheduler: Scheduler
    supervisor: ShutdownSupervisor

    def recover_abandoned(self) -> list[str]:
        """Fail jobs a previous process left running; returns their ids."""
        recovered = self.jobs.fail_abandoned()
        if recovered:
            logger.warning(f"Recovered {len(recovered)} abandoned jobs")
        return recovered

    def close(self) -> None:
        self.db.dispose()


def build_runtime(
    config: Config,
    github: Optional[GitHubFacade] = None,
    git: Optional[GitFacade] = None,
    create_schema: bool = True,
) -> Runtime:
    """Wire the database, stores, facades, workers, scheduler and supervisor.

    Args:
        config: Loaded configuration
        github: Replacement GitHub facade (tests)
        git: Replacement git facade (tests)
        create_schema: Create missing tables on startup

    Returns:
        A fully wired :class:`Runtime`; nothing is started yet
    """
    db = Database(config.database.path, echo=config.database.echo)
    if create_schema:
        db.create_all()

    projects = ProjectStore(db)
    activity = ActivityStore(db)
    statistics = StatisticsStore(db)
    jobs = JobStore(db, stale_after=timedelta(seconds=config.workers.hard_timeout))
    github = github or GitHubFacade(
        token=config.github.token,
        base_url=config.github.base_url,
        timeout=config.github.request_timeout,
        per_page=config.github.per_page,
        max_retries=config.github.max_retries,
        backoff_base=config.github.backoff_base,
        backoff_cap=config.github.backoff_cap,
    )
    git = git or GitFacade(
        config.workspace.path,
        clone_timeout=config.workspace.clone_timeout,
        clone_retries=config.workspace.clone_retries,
    )
    identity = IdentityResolver(db)
    stats = StatsEngine(db, statistics, config.stats)
    person_stats = PersonStatsReader(db, statistics, identity, config.stats)
    locks = RepositoryLocks()

    workers_cfg = config.workers
    common = {
        "poll_interval": workers_cfg.poll_interval,
        "soft_timeout": workers_cfg.soft_timeout,
        "hard_timeout": workers_cfg.hard_timeout,
    }

    def _cap(job_type: JobType) -> int:
        return workers_cfg.concurrency.get(job_type.value, 1)

    pool = WorkerPool(
        [
            CloneWorker(
                jobs,
                projects,
                activity,
                git,
                locks,
                token=config.github.token,
                concurrency=_cap(JobType.CLONE),
                **common,
            ),
            CommitWorker(
                jobs, projects, activity, git, locks, concurrency=_cap(JobType.COMMIT), **common
            ),
            PullRequestWorker(
                jobs, projects, activity, github, concurrency=_cap(JobType.PULL_REQUEST), **common
            ),
            StatsWorker(jobs, projects, stats, concurrency=_cap(JobType.STATS), **common),
        ]
    )
    pipeline = AnalysisPipeline(
        jobs, projects, identity, stats, notify=pool.wake_all, person_stats=person_stats
    )
    scheduler = Scheduler(
        projects, jobs, pipeline, tick_interval=config.scheduler.tick_interval
    )
    supervisor = ShutdownSupervisor(
        pool,
        scheduler if config.scheduler.enabled else None,
        deadline=workers_cfg.shutdown_deadline,
    )
    logger.debug(f"Runtime built on database {db.url}")

    return Runtime(
        config=config,
        db=db,
        projects=projects,
        activity=activity,
        statistics=statistics,
        jobs=jobs,
        github=github,
        git=git,
        identity=identity,
        stats=stats,
        person_stats=person_stats,
        pipeline=pipeline,
        pool=pool,
        scheduler=scheduler,
        supervisor=supervisor,
    )
