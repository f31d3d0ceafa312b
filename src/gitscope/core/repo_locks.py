"""In-process advisory locks keyed by github repository id."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from ..errors import JobCancelledError


class RepositoryLocks:
    """One lock per working copy.

    Clone and commit units against the same upstream serialize on these
    locks, whichever project enqueued them.
    """

    def __init__(self, poll_interval: float = 0.5):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self.poll_interval = poll_interval

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key, cancel_event: Optional[threading.Event] = None) -> Iterator[None]:
        """Hold the lock for ``key``; give up if ``cancel_event`` fires while waiting."""
        lock = self._lock_for(str(key))
        while not lock.acquire(timeout=self.poll_interval):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"cancelled while waiting for repository lock {key}")
        try:
            yield
        finally:
            lock.release()

    def is_held(self, key) -> bool:
        return self._lock_for(str(key)).locked()
