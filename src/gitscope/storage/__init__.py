"""Typed persistence over the gitscope schema."""

from .activity_store import ActivityStore
from .project_store import ProjectStore
from .statistics_store import StatisticsStore

__all__ = ["ActivityStore", "ProjectStore", "StatisticsStore"]
