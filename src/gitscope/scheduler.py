"""Hourly auto-update of projects."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from .core.job_store import JobStore
from .pipeline import AnalysisPipeline
from .storage.project_store import ProjectStore

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=1)


class Scheduler:
    """Enqueue update-all chains for projects whose auto-update hour has come.

    ``tick`` is a pure step over an explicit ``now``; the timer thread just
    calls it every ``tick_interval`` seconds. Auto-update hours are server
    local time.
    """

    def __init__(
        self,
        projects: ProjectStore,
        jobs: JobStore,
        pipeline: AnalysisPipeline,
        tick_interval: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.projects = projects
        self.jobs = jobs
        self.pipeline = pipeline
        self.tick_interval = tick_interval
        self.clock = clock or (lambda: datetime.now().astimezone())
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Run one scheduling pass.

        Args:
            now: Current time; naive values are taken as server local time

        Returns:
            Number of jobs enqueued per project id
        """
        now = now or self.clock()
        local_hour = now.hour if now.tzinfo is None else now.astimezone().hour
        now_utc = now.astimezone(timezone.utc)
        self.jobs.fail_abandoned(now_utc)

        enqueued: dict[str, int] = {}
        for project_id in self.projects.projects_due_for_update(local_hour):
            if self.jobs.has_active_chain(
                project_id, since=now_utc - DEDUP_WINDOW, now=now_utc
            ):
                logger.debug(f"Project {project_id}: update chain already active, skipping")
                continue
            try:
                created = self.pipeline.enqueue_update_all(project_id, created_at=now_utc)
            except Exception as e:
                logger.error(f"Scheduled update of project {project_id} failed: {e}")
                continue
            enqueued[project_id] = len(created)
        if enqueued:
            logger.info(f"Scheduler tick at hour {local_hour}: enqueued {enqueued}")
        return enqueued

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started (tick every {self.tick_interval:.0f}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
            self._stop.wait(self.tick_interval)
