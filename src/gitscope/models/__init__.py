"""SQLAlchemy models for gitscope."""
