"""Clone worker: make sure a shared working copy exists and is current."""

import logging
from typing import Optional

from ..core.git_facade import GitFacade
from ..core.repo_locks import RepositoryLocks
from ..models.database import JobType
from ..storage.activity_store import ActivityStore
from ..storage.project_store import ProjectStore
from .base import BaseWorker, JobContext

logger = logging.getLogger(__name__)


class CloneWorker(BaseWorker):
    """Clone a repository into ``<workspace>/<owner>/<repo>`` or reuse the existing copy."""

    job_type = JobType.CLONE

    def __init__(
        self,
        jobs,
        projects: ProjectStore,
        activity: ActivityStore,
        git: GitFacade,
        locks: RepositoryLocks,
        token: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(jobs, **kwargs)
        self.projects = projects
        self.activity = activity
        self.git = git
        self.locks = locks
        self.token = token

    def process(self, ctx: JobContext) -> None:
        _, repo = self.projects.get_repository_pair(ctx.job.project_repository_id)
        path = self.git.working_copy_path(repo.full_name)

        with self.locks.hold(repo.github_repo_id, ctx.cancel_event):
            ctx.check()
            existed = (path / ".git").exists()
            head = self.git.clone_or_open(
                repo.clone_url,
                path,
                token=self.token,
                branch=repo.default_branch,
                cancel_event=ctx.cancel_event,
            )
            if existed and head is not None:
                ctx.check()
                head = self.git.fetch(
                    path, token=self.token, branch=repo.default_branch, clone_url=repo.clone_url
                )
                logger.info(f"Updated shared working copy of {repo.full_name} at {path}")
            else:
                logger.info(f"Cloned {repo.full_name} into {path}")
            self.activity.mark_cloned(repo.id, str(path), head)
