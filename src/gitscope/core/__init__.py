"""Core analysis components of gitscope."""
