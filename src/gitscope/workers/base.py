"""Polling worker loop shared by every job type.

Each worker owns one loop thread that claims eligible jobs and a
``ThreadPoolExecutor`` sized to its concurrency cap that runs them. Units are
cancelled cooperatively through their :class:`JobContext`.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from ..core.job_store import JobStore
from ..errors import JobCancelledError, format_failure
from ..models.database import Job, JobType

logger = logging.getLogger(__name__)

HARD_TIMEOUT_MESSAGE = "[internal] hard timeout"


@dataclass
class JobContext:
    """A claimed job plus the means to cancel it."""

    job: Job
    soft_deadline: float
    hard_deadline: float
    cancel_event: threading.Event = field(default_factory=threading.Event)
    started: float = field(default_factory=time.monotonic)
    abandoned: bool = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> None:
        """Raise :class:`JobCancelledError` once the unit should stop."""
        if time.monotonic() >= self.soft_deadline:
            self.cancel_event.set()
            raise JobCancelledError(f"job {self.job.id} exceeded its soft timeout")
        if self.cancel_event.is_set():
            raise JobCancelledError(f"job {self.job.id} cancelled")


class BaseWorker:
    """Claim and run jobs of a single type.

    Subclasses set ``job_type`` and implement :meth:`process`. A unit that
    returns normally completes its job; any exception fails it with a
    structured message.
    """

    job_type: JobType

    def __init__(
        self,
        jobs: JobStore,
        concurrency: int = 1,
        poll_interval: float = 2.0,
        soft_timeout: float = 1800.0,
        hard_timeout: Optional[float] = None,
        on_unit_finished: Optional[Callable[[], None]] = None,
    ):
        self.jobs = jobs
        self.concurrency = max(1, int(concurrency))
        self.poll_interval = poll_interval
        self.soft_timeout = soft_timeout
        self.hard_timeout = hard_timeout if hard_timeout is not None else soft_timeout * 2
        self.on_unit_finished = on_unit_finished
        self.worker_id = f"{self.job_type.value}-{uuid.uuid4().hex[:8]}"

        self._wake = threading.Event()
        self._stop_claiming = threading.Event()
        self._in_flight: dict[str, JobContext] = {}
        self._idle = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix=f"{self.job_type.value}-unit"
        )
        self._thread = threading.Thread(
            target=self._loop, name=f"{self.job_type.value}-worker", daemon=True
        )
        self._thread.start()
        logger.info(
            f"Started {self.job_type.value} worker {self.worker_id} "
            f"(concurrency={self.concurrency})"
        )

    def wake(self) -> None:
        self._wake.set()

    def stop_claiming(self) -> None:
        self._stop_claiming.set()
        self._wake.set()

    @property
    def claiming(self) -> bool:
        return not self._stop_claiming.is_set()

    @property
    def in_flight(self) -> int:
        with self._idle:
            return len(self._in_flight)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no unit is in flight; return False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
            return True

    def cancel_all(self) -> int:
        """Signal every in-flight unit to stop; return how many were signalled."""
        with self._idle:
            contexts = list(self._in_flight.values())
        for ctx in contexts:
            ctx.cancel()
        if contexts:
            logger.warning(f"{self.worker_id}: cancelled {len(contexts)} in-flight jobs")
        return len(contexts)

    def join(self, timeout: Optional[float] = None) -> None:
        self.stop_claiming()
        if self._thread is not None:
            self._thread.join(timeout)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # -- loop ---------------------------------------------------------------

    def _loop(self) -> None:
        while not self._stop_claiming.is_set():
            self._enforce_timeouts()
            capacity = self.concurrency - self.in_flight
            if capacity > 0:
                try:
                    self.poll_once(capacity)
                except Exception as e:
                    logger.error(f"{self.worker_id}: claim failed: {e}")
            self._wake.wait(self.poll_interval)
            self._wake.clear()
        logger.info(f"{self.worker_id}: stopped claiming")

    def poll_once(self, capacity: Optional[int] = None) -> list[JobContext]:
        """Claim up to ``capacity`` jobs and submit them; used by the loop and tests."""
        limit = self.concurrency if capacity is None else capacity
        claimed = self.jobs.claim_next(self.job_type, limit, self.worker_id)
        contexts = []
        for job in claimed:
            ctx = self._new_context(job)
            with self._idle:
                self._in_flight[job.id] = ctx
            logger.info(f"{self.worker_id}: claimed {self.job_type.value} job {job.id}")
            if self._executor is None:
                self.run_unit(ctx)
            else:
                self._executor.submit(self.run_unit, ctx)
            contexts.append(ctx)
        return contexts

    def _new_context(self, job: Job) -> JobContext:
        now = time.monotonic()
        return JobContext(
            job=job,
            soft_deadline=now + self.soft_timeout,
            hard_deadline=now + self.hard_timeout,
            started=now,
        )

    def _enforce_timeouts(self) -> None:
        now = time.monotonic()
        with self._idle:
            contexts = list(self._in_flight.values())
        for ctx in contexts:
            if now >= ctx.soft_deadline and not ctx.cancelled:
                logger.warning(f"{self.worker_id}: job {ctx.job.id} hit its soft timeout")
                ctx.cancel()
            if now >= ctx.hard_deadline and not ctx.abandoned:
                ctx.abandoned = True
                self.jobs.fail(ctx.job.id, HARD_TIMEOUT_MESSAGE)
                logger.error(f"{self.worker_id}: abandoned job {ctx.job.id} after hard timeout")
                self._release(ctx)

    # -- unit ---------------------------------------------------------------

    def run_unit(self, ctx: JobContext) -> None:
        job = ctx.job
        logger.info(f"{self.worker_id}: starting {self.job_type.value} job {job.id}")
        try:
            ctx.check()
            self.process(ctx)
        except Exception as e:
            message = format_failure(e)
            if ctx.abandoned or not self.jobs.fail(job.id, message):
                logger.warning(f"{self.worker_id}: late failure of job {job.id} ignored: {message}")
            else:
                logger.error(f"{self.worker_id}: job {job.id} failed: {message}")
        else:
            if ctx.abandoned or not self.jobs.complete(job.id):
                logger.warning(f"{self.worker_id}: late completion of job {job.id} ignored")
            else:
                elapsed = time.monotonic() - ctx.started
                logger.info(f"{self.worker_id}: completed job {job.id} in {elapsed:.1f}s")
        finally:
            self._release(ctx)
            if self.on_unit_finished is not None:
                self.on_unit_finished()

    def _release(self, ctx: JobContext) -> None:
        with self._idle:
            if self._in_flight.get(ctx.job.id) is ctx:
                del self._in_flight[ctx.job.id]
            self._idle.notify_all()

    def process(self, ctx: JobContext) -> None:
        raise NotImplementedError
