"""Version information for gitscope-analytics."""

__version__ = "1.0.0"
