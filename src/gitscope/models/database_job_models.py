"""Job queue model and its tagged variants."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from .database_base import Base, new_id, utcnow_tz_aware


class JobType(str, Enum):
    """Kinds of work units."""

    CLONE = "clone"
    COMMIT = "commit"
    PULL_REQUEST = "pull_request"
    STATS = "stats"


class JobStatus(str, Enum):
    """Job lifecycle: pending -> in_progress -> completed | failed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Order of the update-all chain for one repository
CHAIN_ORDER = (JobType.CLONE, JobType.COMMIT, JobType.PULL_REQUEST, JobType.STATS)


class Job(Base):
    """Durable unit of work with an optional dependency edge."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    project_repository_id = Column(String(36), ForeignKey("project_repositories.id"), nullable=True)
    job_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value)
    depends_on = Column(String(36), ForeignKey("jobs.id"), nullable=True)
    error_message = Column(Text, nullable=True)
    worker_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow_tz_aware)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (
        Index("idx_jobs_claim", "status", "job_type", "created_at"),
        Index("idx_jobs_project", "project_id", "created_at"),
        Index("idx_jobs_project_repository", "project_repository_id"),
        Index("idx_jobs_depends_on", "depends_on"),
    )

    @property
    def type(self) -> JobType:
        return JobType(self.job_type)

    @property
    def state(self) -> JobStatus:
        return JobStatus(self.status)
