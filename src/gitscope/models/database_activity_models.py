"""Commit and pull-request activity models.

Commits and pull requests belong to the shared :class:`GithubRepository` so a
repository referenced by several projects is ingested once.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database_base import Base, new_id, utcnow_tz_aware


class Commit(Base):
    """A commit observed on a repository's tracked branch. Immutable after insert."""

    __tablename__ = "commits"

    id = Column(String(36), primary_key=True, default=new_id)
    github_repository_id = Column(String(36), ForeignKey("github_repositories.id"), nullable=False)
    sha = Column(String(40), nullable=False)
    author_email = Column(String, nullable=False)
    author_name = Column(String, nullable=False, default="")
    commit_date = Column(DateTime(timezone=True), nullable=False)
    message = Column(Text, nullable=False, default="")
    is_merge = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)

    files = relationship("CommitFile", back_populates="commit", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("github_repository_id", "sha", name="uq_commit_repository_sha"),
        Index("idx_commits_repository_date", "github_repository_id", "commit_date"),
        Index("idx_commits_author_email", "author_email"),
    )


class CommitFile(Base):
    """Per-path change statistics of a commit."""

    __tablename__ = "commit_files"

    id = Column(String(36), primary_key=True, default=new_id)
    commit_id = Column(String(36), ForeignKey("commits.id"), nullable=False)
    path = Column(String, nullable=False)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="modified")

    commit = relationship("Commit", back_populates="files")

    __table_args__ = (Index("idx_commit_files_commit", "commit_id"),)


class PullRequest(Base):
    """Pull request of a repository, upserted by (repository_id, number)."""

    __tablename__ = "pull_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    repository_id = Column(String(36), ForeignKey("github_repositories.id"), nullable=False)
    number = Column(Integer, nullable=False)
    github_pr_id = Column(Integer, nullable=True)
    title = Column(String, nullable=False, default="")
    user = Column(String, nullable=False)
    user_id = Column(Integer, nullable=True)
    state = Column(String(16), nullable=False)
    review_comments_count = Column(Integer, nullable=False, default=0)

    github_created_at = Column(DateTime(timezone=True), nullable=False)
    merged_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_request_number"),
        Index("idx_pull_requests_repository_created", "repository_id", "github_created_at"),
    )


class PRReview(Base):
    """Review event on a pull request."""

    __tablename__ = "pr_reviews"

    id = Column(String(36), primary_key=True, default=new_id)
    repository_id = Column(String(36), ForeignKey("github_repositories.id"), nullable=False)
    pr_id = Column(String(36), ForeignKey("pull_requests.id"), nullable=False)
    github_review_id = Column(Integer, nullable=False)
    reviewer_login = Column(String, nullable=False)
    state = Column(String(24), nullable=False)
    body_present = Column(Boolean, nullable=False, default=False)
    github_created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("pr_id", "github_review_id", name="uq_pr_review"),
        Index("idx_pr_reviews_repository_created", "repository_id", "github_created_at"),
    )
