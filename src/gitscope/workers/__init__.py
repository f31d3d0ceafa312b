"""Typed job workers and the pool that runs them."""

from .base import BaseWorker, JobContext
from .clone_worker import CloneWorker
from .commit_worker import CommitWorker
from .pool import WorkerPool
from .pull_request_worker import PullRequestWorker
from .stats_worker import StatsWorker

__all__ = [
    "BaseWorker",
    "CloneWorker",
    "CommitWorker",
    "JobContext",
    "PullRequestWorker",
    "StatsWorker",
    "WorkerPool",
]
