"""Utility modules for gitscope."""

from .date_utils import Grain, get_week_start, period_key, period_range
from .languages import language_for_path
from .path_filters import PathFilter, normalize_extension, normalize_folder

__all__ = [
    "Grain",
    "get_week_start",
    "period_key",
    "period_range",
    "language_for_path",
    "PathFilter",
    "normalize_extension",
    "normalize_folder",
]
