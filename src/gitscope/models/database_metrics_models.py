"""Aggregated per-person statistics."""

from sqlalchemy import Column, Date, ForeignKey, Index, Integer, String, UniqueConstraint

from .database_base import Base


class PeopleStatistics(Base):
    """Daily activity of one platform account on one project repository.

    Rows are rebuilt per repository by the stats worker; ids are derived from
    the natural key so a rebuild over unchanged inputs reproduces them exactly.
    """

    __tablename__ = "people_statistics"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    repository_id = Column(String(36), ForeignKey("project_repositories.id"), nullable=False)
    github_person_id = Column(String(36), ForeignKey("github_persons.id"), nullable=False)
    stat_date = Column(Date, nullable=False)

    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    commits = Column(Integer, nullable=False, default=0)
    prs_authored = Column(Integer, nullable=False, default=0)
    prs_reviewed = Column(Integer, nullable=False, default=0)
    comments = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "repository_id",
            "github_person_id",
            "stat_date",
            name="uq_people_statistics_key",
        ),
        Index("idx_people_statistics_project_date", "project_id", "stat_date"),
        Index("idx_people_statistics_repository_date", "repository_id", "stat_date"),
    )
