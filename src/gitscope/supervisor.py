"""Coordinated start and graceful shutdown of the scheduler and workers."""

import logging
import signal
import threading
import time
from typing import Optional

from .scheduler import Scheduler
from .workers.pool import WorkerPool

logger = logging.getLogger(__name__)


class ShutdownSupervisor:
    """Own the worker pool and scheduler and stop them in order.

    Shutdown stops the scheduler, stops every worker from claiming, waits up to
    ``deadline`` seconds for in-flight units and then cancels whatever is
    still running. Jobs left ``in_progress`` are not requeued.
    """

    def __init__(
        self,
        pool: WorkerPool,
        scheduler: Optional[Scheduler] = None,
        deadline: float = 2.0,
        join_timeout: float = 5.0,
    ):
        self.pool = pool
        self.scheduler = scheduler
        self.deadline = deadline
        self.join_timeout = join_timeout
        self._stopped = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shutdown_done = False

    def start(self) -> None:
        self.pool.start()
        if self.scheduler is not None:
            self.scheduler.start()

    def shutdown(self) -> bool:
        """Drain and stop everything; safe to call more than once.

        Returns:
            True when every in-flight unit finished before the deadline
        """
        with self._shutdown_lock:
            if self._shutdown_done:
                return True
            self._shutdown_done = True

        started = time.monotonic()
        logger.info("Shutting down: stopping scheduler and worker claims")
        if self.scheduler is not None:
            self.scheduler.stop(timeout=self.join_timeout)
        self.pool.stop_claiming()

        drained = self.pool.wait(self.deadline)
        cancelled = 0
        if not drained:
            cancelled = self.pool.cancel_all()
            logger.warning(
                f"Shutdown deadline of {self.deadline:.1f}s reached, cancelled {cancelled} jobs"
            )
        self.pool.join(timeout=self.join_timeout)
        self._stopped.set()
        logger.info(f"Shutdown complete in {time.monotonic() - started:.1f}s")
        return drained

    def request_shutdown(self, signum=None, frame=None) -> None:
        """Signal handler: run the shutdown on a separate thread."""
        name = signal.Signals(signum).name if signum else "request"
        logger.info(f"Received {name}")
        threading.Thread(target=self.shutdown, name="shutdown", daemon=True).start()

    def run_forever(self, install_signals: bool = True) -> None:
        """Start everything and block until shutdown completes."""
        if install_signals:
            signal.signal(signal.SIGINT, self.request_shutdown)
            signal.signal(signal.SIGTERM, self.request_shutdown)
        self.start()
        while not self._stopped.wait(0.5):
            pass

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()
