"""Storage and read-side aggregation of ``people_statistics`` rows."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from sqlalchemy import func

from ..models.database import Database, GithubPerson, PeopleStatistics
from ..utils.date_utils import Grain, period_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonTotals:
    """Aggregated statistics of one platform account over a period."""

    github_person_id: str
    username: str
    additions: int
    deletions: int
    commits: int
    prs_authored: int
    prs_reviewed: int
    comments: int
    score: int


class StatisticsStore:
    """Replace and read per-person daily statistics."""

    def __init__(self, db: Database):
        self.db = db

    def replace_repository_rows(
        self,
        project_id: str,
        repository_id: str,
        rows: Iterable[PeopleStatistics],
        before_commit: Optional[Callable[[], None]] = None,
    ) -> int:
        """Swap a repository's statistics for ``rows`` in one transaction.

        Args:
            project_id: Owning project
            repository_id: Project repository whose rows are rebuilt
            rows: Complete new set of rows for the repository
            before_commit: Called right before commit; raising aborts the swap
                and leaves the previous rows in place

        Returns:
            Number of rows written
        """
        rows = list(rows)
        with self.db.session_scope() as session:
            session.query(PeopleStatistics).filter(
                PeopleStatistics.project_id == project_id,
                PeopleStatistics.repository_id == repository_id,
            ).delete(synchronize_session=False)
            session.add_all(rows)
            session.flush()
            if before_commit is not None:
                before_commit()
        logger.debug(f"Stored {len(rows)} statistics rows for repository {repository_id}")
        return len(rows)

    def rows_for_repository(self, project_id: str, repository_id: str) -> list[PeopleStatistics]:
        with self.db.session_scope() as session:
            return (
                session.query(PeopleStatistics)
                .filter(
                    PeopleStatistics.project_id == project_id,
                    PeopleStatistics.repository_id == repository_id,
                )
                .order_by(PeopleStatistics.stat_date.asc(), PeopleStatistics.github_person_id.asc())
                .all()
            )

    def rows_for_person(self, project_id: str, github_person_id: str) -> list[PeopleStatistics]:
        """Every daily row of one account in a project, oldest first."""
        with self.db.session_scope() as session:
            return (
                session.query(PeopleStatistics)
                .filter(
                    PeopleStatistics.project_id == project_id,
                    PeopleStatistics.github_person_id == github_person_id,
                )
                .order_by(PeopleStatistics.stat_date.asc(), PeopleStatistics.repository_id.asc())
                .all()
            )

    def totals(
        self,
        project_id: str,
        date_range: Optional[tuple[date, date]] = None,
        repository_id: Optional[str] = None,
    ) -> list[PersonTotals]:
        """Sum statistics per platform account, highest score first.

        Args:
            project_id: Project to read
            date_range: Optional inclusive ``(first_day, last_day)`` filter
            repository_id: Optional restriction to one project repository

        Returns:
            One :class:`PersonTotals` per account with activity in the range
        """
        with self.db.session_scope() as session:
            query = (
                session.query(
                    PeopleStatistics.github_person_id,
                    GithubPerson.username,
                    func.sum(PeopleStatistics.additions).label("additions"),
                    func.sum(PeopleStatistics.deletions).label("deletions"),
                    func.sum(PeopleStatistics.commits).label("commits"),
                    func.sum(PeopleStatistics.prs_authored).label("prs_authored"),
                    func.sum(PeopleStatistics.prs_reviewed).label("prs_reviewed"),
                    func.sum(PeopleStatistics.comments).label("comments"),
                    func.sum(PeopleStatistics.score).label("score"),
                )
                .join(GithubPerson, GithubPerson.id == PeopleStatistics.github_person_id)
                .filter(PeopleStatistics.project_id == project_id)
            )
            if date_range is not None:
                first_day, last_day = date_range
                query = query.filter(
                    PeopleStatistics.stat_date >= first_day,
                    PeopleStatistics.stat_date <= last_day,
                )
            if repository_id is not None:
                query = query.filter(PeopleStatistics.repository_id == repository_id)

            rows = query.group_by(PeopleStatistics.github_person_id, GithubPerson.username).all()

        totals = [
            PersonTotals(
                github_person_id=row.github_person_id,
                username=row.username,
                additions=int(row.additions or 0),
                deletions=int(row.deletions or 0),
                commits=int(row.commits or 0),
                prs_authored=int(row.prs_authored or 0),
                prs_reviewed=int(row.prs_reviewed or 0),
                comments=int(row.comments or 0),
                score=int(row.score or 0),
            )
            for row in rows
        ]
        totals.sort(key=lambda t: (-t.score, t.username.lower(), t.github_person_id))
        return totals

    def available_periods(self, project_id: str, grain: Grain) -> list[str]:
        """List period keys with data for ``grain``, newest first."""
        if grain == Grain.ALL:
            return []
        with self.db.session_scope() as session:
            rows = (
                session.query(PeopleStatistics.stat_date)
                .filter(PeopleStatistics.project_id == project_id)
                .distinct()
                .all()
            )
        keys = {period_key(row.stat_date, grain) for row in rows}
        return sorted((k for k in keys if k), reverse=True)
