"""Database connection manager for gitscope.

This module also re-exports every model so callers can import from one place.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .database_activity_models import Commit, CommitFile, PRReview, PullRequest
from .database_base import Base, ensure_utc, new_id, to_utc, utcnow_tz_aware
from .database_identity_models import EmailMerge, GithubPerson, GithubPersonEmail, Person
from .database_job_models import CHAIN_ORDER, Job, JobStatus, JobType
from .database_metrics_models import PeopleStatistics
from .database_project_models import (
    ExcludedExtension,
    ExcludedFolder,
    GithubRepository,
    Project,
    ProjectRepository,
    ProjectUpdateSettings,
    ScoreSettings,
    WorkingHoursSettings,
)

logger = logging.getLogger(__name__)

__all__ = [
    "Base",
    "utcnow_tz_aware",
    "new_id",
    "to_utc",
    "ensure_utc",
    "Project",
    "ProjectRepository",
    "GithubRepository",
    "ExcludedExtension",
    "ExcludedFolder",
    "ScoreSettings",
    "WorkingHoursSettings",
    "ProjectUpdateSettings",
    "Commit",
    "CommitFile",
    "PullRequest",
    "PRReview",
    "Person",
    "GithubPerson",
    "GithubPersonEmail",
    "EmailMerge",
    "Job",
    "JobType",
    "JobStatus",
    "CHAIN_ORDER",
    "PeopleStatistics",
    "Database",
]


class Database:
    """Engine and session factory for the gitscope schema."""

    SQLITE_BUSY_TIMEOUT = 30

    def __init__(self, db_path: Union[Path, str], echo: bool = False):
        """Initialize the engine.

        Args:
            db_path: SQLite file path or a full SQLAlchemy URL
            echo: Log emitted SQL
        """
        self.url = self._build_url(db_path)
        self.db_path = db_path
        self.engine = self._create_engine(self.url, echo)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _build_url(db_path: Union[Path, str]) -> str:
        raw = str(db_path)
        if "://" in raw:
            return raw
        path = Path(raw).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path}"

    def _create_engine(self, url: str, echo: bool) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, echo=echo, pool_pre_ping=True)

        engine = create_engine(
            url,
            echo=echo,
            connect_args={
                "timeout": self.SQLITE_BUSY_TIMEOUT,
                "check_same_thread": False,
            },
        )

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
            # Hand transaction control to SQLAlchemy so BEGIN IMMEDIATE is used
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={self.SQLITE_BUSY_TIMEOUT * 1000}")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn: Any) -> None:
            # Writers serialize on the database lock instead of failing on upgrade
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    def create_all(self) -> None:
        """Create all tables and indices if they do not exist."""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database schema ready at: {self.db_path}")

    def drop_all(self) -> None:
        """Drop every gitscope table."""
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope: commit on success, roll back on error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
