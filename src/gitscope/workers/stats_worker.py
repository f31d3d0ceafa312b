"""Stats worker: rebuild the statistics of one project repository."""

import logging

from ..core.stats_engine import StatsEngine
from ..models.database import JobType
from ..storage.project_store import ProjectStore
from .base import BaseWorker, JobContext

logger = logging.getLogger(__name__)


class StatsWorker(BaseWorker):
    job_type = JobType.STATS

    def __init__(self, jobs, projects: ProjectStore, engine: StatsEngine, **kwargs):
        super().__init__(jobs, **kwargs)
        self.projects = projects
        self.engine = engine

    def process(self, ctx: JobContext) -> None:
        job = ctx.job
        rows = self.engine.compute_repository(
            job.project_id, job.project_repository_id, cancel_event=ctx.cancel_event
        )
        self.projects.touch_analyzed(job.project_repository_id)
        logger.debug(f"Stats job {job.id} wrote {rows} rows")
