"""Project, repository and per-project settings models."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from .database_base import Base, new_id, utcnow_tz_aware


class Project(Base):
    """An analytics workspace grouping repositories and settings."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)
    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (Index("idx_projects_owner", "owner_id"),)


class GithubRepository(Base):
    """Upstream repository, shared by every project that references it."""

    __tablename__ = "github_repositories"

    id = Column(String(36), primary_key=True, default=new_id)
    github_repo_id = Column(Integer, nullable=False, unique=True)
    full_name = Column(String, nullable=False)
    clone_url = Column(String, nullable=False)
    default_branch = Column(String, nullable=False, default="main")
    is_private = Column(Boolean, nullable=False, default=False)

    # Local working copy
    is_cloned = Column(Boolean, nullable=False, default=False)
    local_path = Column(String, nullable=True)
    head_sha = Column(String, nullable=True)
    last_commit_sha = Column(String, nullable=True)
    last_cloned_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)
    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (Index("idx_github_repositories_full_name", "full_name"),)


class ProjectRepository(Base):
    """Membership of a GithubRepository in a project."""

    __tablename__ = "project_repositories"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    github_repo_id = Column(Integer, ForeignKey("github_repositories.github_repo_id"), nullable=False)
    is_tracked = Column(Boolean, nullable=False, default=True)
    is_cloned = Column(Boolean, nullable=False, default=False)

    last_fetched_at = Column(DateTime(timezone=True), nullable=True)
    last_analyzed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)

    __table_args__ = (
        UniqueConstraint("project_id", "github_repo_id", name="uq_project_repository"),
        Index("idx_project_repositories_project", "project_id"),
    )


class ExcludedExtension(Base):
    """File suffix excluded from a project's statistics (stored as ``.ext``)."""

    __tablename__ = "excluded_extensions"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    value = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("project_id", "value", name="uq_excluded_extension"),)


class ExcludedFolder(Base):
    """Path prefix excluded from a project's statistics (stored without slashes)."""

    __tablename__ = "excluded_folders"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    value = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("project_id", "value", name="uq_excluded_folder"),)


class ScoreSettings(Base):
    """Weights of the productivity score, one row per project."""

    __tablename__ = "score_settings"

    project_id = Column(String(36), ForeignKey("projects.id"), primary_key=True)
    additions = Column(Integer, nullable=False, default=1)
    deletions = Column(Integer, nullable=False, default=3)
    commits = Column(Integer, nullable=False, default=10)
    pull_requests = Column(Integer, nullable=False, default=20)
    comments = Column(Integer, nullable=False, default=100)

    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)


class WorkingHoursSettings(Base):
    """Commit inclusion window: enabled weekdays times [start_hour, end_hour)."""

    __tablename__ = "working_hours_settings"

    project_id = Column(String(36), ForeignKey("projects.id"), primary_key=True)
    start_hour = Column(Integer, nullable=False, default=9)
    end_hour = Column(Integer, nullable=False, default=18)
    monday = Column(Boolean, nullable=False, default=True)
    tuesday = Column(Boolean, nullable=False, default=True)
    wednesday = Column(Boolean, nullable=False, default=True)
    thursday = Column(Boolean, nullable=False, default=True)
    friday = Column(Boolean, nullable=False, default=True)
    saturday = Column(Boolean, nullable=False, default=False)
    sunday = Column(Boolean, nullable=False, default=False)

    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    # Ordered to match datetime.weekday()
    DAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

    def enabled_weekdays(self) -> frozenset[int]:
        """Return enabled days as ``datetime.weekday()`` numbers."""
        return frozenset(
            index for index, name in enumerate(self.DAY_COLUMNS) if getattr(self, name)
        )


class ProjectUpdateSettings(Base):
    """Hourly auto-update configuration for a project."""

    __tablename__ = "project_update_settings"

    project_id = Column(String(36), ForeignKey("projects.id"), primary_key=True)
    auto_update_enabled = Column(Boolean, nullable=False, default=False)
    auto_update_hour = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (Index("idx_update_settings_hour", "auto_update_enabled", "auto_update_hour"),)
