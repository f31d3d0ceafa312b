"""Commit worker: ingest new commits of a working copy."""

import logging

from ..core.git_facade import GitFacade
from ..core.repo_locks import RepositoryLocks
from ..errors import PermanentIOError
from ..models.database import JobType
from ..storage.activity_store import ActivityStore
from ..storage.project_store import ProjectStore
from .base import BaseWorker, JobContext

logger = logging.getLogger(__name__)

# Commits ingested between cancellation checks and progress records
CHECKPOINT_EVERY = 200


class CommitWorker(BaseWorker):
    """Walk commits since the last ingested sha and store them with their files.

    The walk is a no-op when HEAD equals the last ingested sha, so projects
    sharing an upstream do not ingest it twice.
    """

    job_type = JobType.COMMIT

    def __init__(
        self,
        jobs,
        projects: ProjectStore,
        activity: ActivityStore,
        git: GitFacade,
        locks: RepositoryLocks,
        **kwargs,
    ):
        super().__init__(jobs, **kwargs)
        self.projects = projects
        self.activity = activity
        self.git = git
        self.locks = locks

    def process(self, ctx: JobContext) -> None:
        _, repo = self.projects.get_repository_pair(ctx.job.project_repository_id)

        with self.locks.hold(repo.github_repo_id, ctx.cancel_event):
            # Re-read under the lock; another project's ingest may have advanced it
            repo = self.activity.get_repository(repo.id)
            if not repo.is_cloned or not repo.local_path:
                raise PermanentIOError(f"{repo.full_name} has no working copy; clone it first")

            head = self.git.head_sha(repo.local_path)
            if head is None:
                logger.info(f"{repo.full_name}: empty repository, nothing to ingest")
                return
            if head == repo.last_commit_sha:
                logger.info(f"{repo.full_name}: already ingested up to {head[:8]}")
                return

            inserted = 0
            seen = 0
            last_sha = None
            for record in self.git.walk_commits(
                repo.local_path, since_sha=repo.last_commit_sha, branch=repo.default_branch
            ):
                if self.activity.insert_commit(repo.id, record):
                    inserted += 1
                seen += 1
                last_sha = record.sha
                if seen % CHECKPOINT_EVERY == 0:
                    ctx.check()
                    self.activity.record_ingested_sha(repo.id, last_sha)
                    logger.debug(f"{repo.full_name}: {seen} commits walked")

            self.activity.record_ingested_sha(repo.id, last_sha or head)
            logger.info(
                f"{repo.full_name}: walked {seen} commits, inserted {inserted} "
                f"(head {head[:8]})"
            )
