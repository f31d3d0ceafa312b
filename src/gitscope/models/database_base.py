"""Base declarative class and column helpers for gitscope database models."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import declarative_base

Base: Any = declarative_base()


def utcnow_tz_aware() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    SQLite drops tzinfo on storage, so every timestamp written through the
    models is normalized to UTC first and re-tagged on read with
    :func:`ensure_utc`.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to aware UTC; naive values are assumed to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a datetime read back from the database."""
    return to_utc(value)
