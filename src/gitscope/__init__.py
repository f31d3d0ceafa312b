"""gitscope: repository analytics pipeline for engineering teams."""

from ._version import __version__

__all__ = ["__version__"]
