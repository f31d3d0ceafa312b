"""Identity models: canonical persons, platform accounts and their bindings."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from .database_base import Base, new_id, utcnow_tz_aware


class Person(Base):
    """Canonical identity keyed by a globally unique primary email."""

    __tablename__ = "persons"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, default="")
    primary_email = Column(String, nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)


class GithubPerson(Base):
    """Platform account, created on first sighting."""

    __tablename__ = "github_persons"

    id = Column(String(36), primary_key=True, default=new_id)
    github_user_id = Column(Integer, nullable=False, unique=True)
    username = Column(String, nullable=False)
    type = Column(String(16), nullable=False, default="User")

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)
    updated_at = Column(DateTime(timezone=True), default=utcnow_tz_aware, onupdate=utcnow_tz_aware)

    __table_args__ = (Index("idx_github_persons_username", "username"),)


class GithubPersonEmail(Base):
    """Binds a platform account to a Person within one project."""

    __tablename__ = "github_person_emails"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    github_person_id = Column(String(36), ForeignKey("github_persons.id"), nullable=False)
    person_id = Column(String(36), ForeignKey("persons.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)

    __table_args__ = (
        UniqueConstraint("project_id", "github_person_id", name="uq_github_person_binding"),
        UniqueConstraint("project_id", "person_id", name="uq_person_binding"),
    )


class EmailMerge(Base):
    """Within a project, maps source_email onto target_email."""

    __tablename__ = "email_merges"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    source_email = Column(String, nullable=False)
    target_email = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow_tz_aware)

    __table_args__ = (
        UniqueConstraint("project_id", "source_email", name="uq_email_merge_source"),
        Index("idx_email_merges_target", "project_id", "target_email"),
    )
