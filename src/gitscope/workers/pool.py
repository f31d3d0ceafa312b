"""Owner of the four typed workers."""

import logging
import time
from collections.abc import Iterable
from typing import Optional

from ..models.database import JobType
from .base import BaseWorker

logger = logging.getLogger(__name__)


class WorkerPool:
    """Start, wake, drain and stop a set of workers as one unit."""

    def __init__(self, workers: Iterable[BaseWorker] = ()):
        self.workers: dict[JobType, BaseWorker] = {}
        for worker in workers:
            self.add(worker)

    def add(self, worker: BaseWorker) -> None:
        if worker.job_type in self.workers:
            raise ValueError(f"a {worker.job_type.value} worker is already registered")
        worker.on_unit_finished = self.wake_all
        self.workers[worker.job_type] = worker

    def get(self, job_type: JobType) -> BaseWorker:
        return self.workers[JobType(job_type)]

    def start(self) -> None:
        for worker in self.workers.values():
            worker.start()
        logger.info(f"Worker pool started: {', '.join(t.value for t in self.workers)}")

    def wake_all(self) -> None:
        """Wake every loop; a finished unit may have unblocked dependents of any type."""
        for worker in self.workers.values():
            worker.wake()

    def stop_claiming(self) -> None:
        for worker in self.workers.values():
            worker.stop_claiming()

    @property
    def in_flight(self) -> int:
        return sum(worker.in_flight for worker in self.workers.values())

    def wait(self, deadline: float) -> bool:
        """Wait up to ``deadline`` seconds for in-flight units; True when all finished."""
        end = time.monotonic() + deadline
        for worker in self.workers.values():
            remaining = max(0.0, end - time.monotonic())
            if not worker.wait_idle(remaining):
                return False
        return True

    def cancel_all(self) -> int:
        return sum(worker.cancel_all() for worker in self.workers.values())

    def join(self, timeout: Optional[float] = None) -> None:
        for worker in self.workers.values():
            worker.join(timeout)
