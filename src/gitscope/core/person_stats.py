"""Per-person view of a project: averages, score history, highlights and indicators.

The view reads stored ``people_statistics`` rows together with the ingested
commits and pull requests of the project's repositories. It never triggers a
computation, so it reflects whatever the last stats run produced.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config.schema import StatsConfig
from ..errors import NotFoundError
from ..models.database import (
    Commit,
    CommitFile,
    Database,
    GithubPerson,
    GithubRepository,
    PeopleStatistics,
    Project,
    ProjectRepository,
    PRReview,
    PullRequest,
    ensure_utc,
)
from ..records import ReviewState
from ..storage.statistics_store import StatisticsStore
from ..utils.date_utils import Grain, period_key
from ..utils.languages import language_for_path
from .identity import IdentityResolver
from .stats_engine import project_path_filter

logger = logging.getLogger(__name__)

TOP_N = 3


@dataclass(frozen=True)
class WeeklyAverages:
    """Totals divided by the number of weeks between first and last active day."""

    commits: float = 0.0
    additions: float = 0.0
    deletions: float = 0.0
    comments: float = 0.0
    pull_requests: float = 0.0


@dataclass(frozen=True)
class MonthlyScore:
    month: str
    score: int


@dataclass(frozen=True)
class RepositoryScore:
    repository_id: str
    name: str
    score: int


@dataclass(frozen=True)
class LanguageShare:
    language: str
    changes: int


@dataclass(frozen=True)
class CommitHighlight:
    sha: str
    repository: str
    message: str
    additions: int
    deletions: int
    committed_at: datetime

    @property
    def changes(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class PullRequestHighlight:
    repository: str
    number: int
    title: str
    state: str
    comments: int
    created_at: datetime


@dataclass(frozen=True)
class PersonDetails:
    """Lifetime totals and indicators derived from the daily rows.

    ``consistency`` is the percentage of calendar months between the first and
    last active day that have activity. ``refactor_ratio`` is the share of
    deletions in all changed lines. ``engagement`` counts authored pull
    requests plus comments per active month.
    """

    commits: int = 0
    additions: int = 0
    deletions: int = 0
    pull_requests: int = 0
    reviews: int = 0
    comments: int = 0
    score: int = 0
    peak_month: Optional[str] = None
    consistency: int = 0
    first_activity: Optional[date] = None
    last_activity: Optional[date] = None
    active_days: Optional[int] = None
    commit_size: Optional[float] = None
    refactor_ratio: Optional[float] = None
    engagement: Optional[float] = None


@dataclass(frozen=True)
class PersonReport:
    github_person_id: str
    username: str
    averages: WeeklyAverages
    details: PersonDetails
    score_history: list[MonthlyScore] = field(default_factory=list)
    top_repositories: list[RepositoryScore] = field(default_factory=list)
    top_languages: list[LanguageShare] = field(default_factory=list)
    top_commits: list[CommitHighlight] = field(default_factory=list)
    top_pull_requests: list[PullRequestHighlight] = field(default_factory=list)


def _month_keys(first: date, last: date) -> list[str]:
    keys = []
    year, month = first.year, first.month
    while (year, month) <= (last.year, last.month):
        keys.append(f"{year:04d}-{month:02d}")
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return keys


def weekly_averages(rows: list[PeopleStatistics]) -> WeeklyAverages:
    if not rows:
        return WeeklyAverages()
    days = [row.stat_date for row in rows]
    weeks = (max(days) - min(days)).days // 7 + 1
    return WeeklyAverages(
        commits=sum(row.commits for row in rows) / weeks,
        additions=sum(row.additions for row in rows) / weeks,
        deletions=sum(row.deletions for row in rows) / weeks,
        comments=sum(row.comments for row in rows) / weeks,
        pull_requests=sum(row.prs_authored for row in rows) / weeks,
    )


def score_history(rows: list[PeopleStatistics], today: date) -> list[MonthlyScore]:
    """Monthly score sums from the first active month through ``today``'s month.

    Months without activity are present with a zero score.
    """
    if not rows:
        return []
    monthly: dict[str, int] = defaultdict(int)
    for row in rows:
        monthly[period_key(row.stat_date, Grain.MONTH)] += row.score
    first = min(row.stat_date for row in rows)
    last = max(max(row.stat_date for row in rows), today)
    return [MonthlyScore(key, monthly.get(key, 0)) for key in _month_keys(first, last)]


def person_details(rows: list[PeopleStatistics]) -> PersonDetails:
    if not rows:
        return PersonDetails()

    monthly: dict[str, int] = defaultdict(int)
    for row in rows:
        monthly[period_key(row.stat_date, Grain.MONTH)] += row.score
    additions = sum(row.additions for row in rows)
    deletions = sum(row.deletions for row in rows)
    commits = sum(row.commits for row in rows)
    pull_requests = sum(row.prs_authored for row in rows)
    comments = sum(row.comments for row in rows)

    # earliest month wins a tie
    peak_month, peak_score = None, 0
    for month in sorted(monthly):
        if monthly[month] > peak_score:
            peak_month, peak_score = month, monthly[month]

    first = min(row.stat_date for row in rows)
    last = max(row.stat_date for row in rows)
    active_months = len(monthly)
    changed = additions + deletions

    return PersonDetails(
        commits=commits,
        additions=additions,
        deletions=deletions,
        pull_requests=pull_requests,
        reviews=sum(row.prs_reviewed for row in rows),
        comments=comments,
        score=sum(row.score for row in rows),
        peak_month=peak_month,
        consistency=active_months * 100 // len(_month_keys(first, last)),
        first_activity=first,
        last_activity=last,
        active_days=(last - first).days,
        commit_size=changed / commits if commits else None,
        refactor_ratio=deletions * 100 / changed if changed else None,
        engagement=(pull_requests + comments) / active_months,
    )


class PersonStatsReader:
    """Read the per-person view of one platform account in a project."""

    def __init__(
        self,
        db: Database,
        statistics: Optional[StatisticsStore] = None,
        identity: Optional[IdentityResolver] = None,
        config: Optional[StatsConfig] = None,
        top_n: int = TOP_N,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.db = db
        self.statistics = statistics or StatisticsStore(db)
        self.identity = identity or IdentityResolver(db)
        self.config = config or StatsConfig()
        self.top_n = top_n
        self.clock = clock or (lambda: datetime.now(timezone.utc).date())

    def find_account(self, person: str) -> GithubPerson:
        """Look an account up by id, then by case-insensitive username.

        Raises:
            NotFoundError: If neither matches
        """
        with self.db.session_scope() as session:
            account = session.get(GithubPerson, person)
            if account is None:
                account = (
                    session.query(GithubPerson)
                    .filter(func.lower(GithubPerson.username) == person.strip().lower())
                    .order_by(GithubPerson.github_user_id.asc())
                    .first()
                )
            if account is None:
                raise NotFoundError(f"no platform account '{person}' has been seen")
            return account

    def report(self, project_id: str, person: str) -> PersonReport:
        """Build the full view of ``person`` (account id or username).

        Raises:
            NotFoundError: If the project or the account does not exist
        """
        with self.db.session_scope() as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError(f"project {project_id} not found")
        account = self.find_account(person)
        rows = self.statistics.rows_for_person(project_id, account.id)
        commits = self.top_commits(project_id, account.id)
        languages = self.top_languages(project_id, account.id)

        logger.debug(
            f"Person report for {account.username} in project {project_id}: {len(rows)} daily rows"
        )
        return PersonReport(
            github_person_id=account.id,
            username=account.username,
            averages=weekly_averages(rows),
            details=person_details(rows),
            score_history=score_history(rows, self.clock()),
            top_repositories=self._top_repositories(rows),
            top_languages=languages,
            top_commits=commits,
            top_pull_requests=self.top_pull_requests(project_id, account.id),
        )

    # -- individual views ---------------------------------------------------

    def weekly_averages(self, project_id: str, github_person_id: str) -> WeeklyAverages:
        return weekly_averages(self.statistics.rows_for_person(project_id, github_person_id))

    def score_history(self, project_id: str, github_person_id: str) -> list[MonthlyScore]:
        return score_history(
            self.statistics.rows_for_person(project_id, github_person_id), self.clock()
        )

    def details(self, project_id: str, github_person_id: str) -> PersonDetails:
        return person_details(self.statistics.rows_for_person(project_id, github_person_id))

    def top_repositories(self, project_id: str, github_person_id: str) -> list[RepositoryScore]:
        """Repositories with the highest summed score."""
        return self._top_repositories(self.statistics.rows_for_person(project_id, github_person_id))

    def top_languages(self, project_id: str, github_person_id: str) -> list[LanguageShare]:
        """Languages with the most changed lines in the account's commits.

        Files without a known language, excluded paths and, when configured,
        merge commits are skipped.
        """
        emails = self.identity.account_emails(project_id, github_person_id)
        if not emails:
            return []
        changes: dict[str, int] = defaultdict(int)
        with self.db.session_scope() as session:
            path_filter = project_path_filter(session, project_id)
            query = self._commit_query(
                session,
                project_id,
                emails,
                CommitFile.path,
                CommitFile.additions,
                CommitFile.deletions,
                with_files=True,
            )
            for row in query:
                if path_filter.excludes(row.path):
                    continue
                language = language_for_path(row.path)
                if language is not None:
                    changes[language] += (row.additions or 0) + (row.deletions or 0)

        shares = [LanguageShare(language, total) for language, total in changes.items()]
        shares.sort(key=lambda s: (-s.changes, s.language))
        return shares[: self.top_n]

    def top_commits(self, project_id: str, github_person_id: str) -> list[CommitHighlight]:
        """Largest commits by changed lines, newest first among equals."""
        emails = self.identity.account_emails(project_id, github_person_id)
        if not emails:
            return []
        with self.db.session_scope() as session:
            path_filter = project_path_filter(session, project_id)
            commits = {
                row.id: row
                for row in self._commit_query(
                    session,
                    project_id,
                    emails,
                    Commit.id,
                    Commit.sha,
                    Commit.message,
                    Commit.commit_date,
                    GithubRepository.full_name,
                )
            }
            totals: dict[str, list[int]] = {commit_id: [0, 0] for commit_id in commits}
            files = self._commit_query(
                session,
                project_id,
                emails,
                CommitFile.commit_id,
                CommitFile.path,
                CommitFile.additions,
                CommitFile.deletions,
                with_files=True,
            )
            for row in files:
                if path_filter.excludes(row.path):
                    continue
                totals[row.commit_id][0] += row.additions or 0
                totals[row.commit_id][1] += row.deletions or 0

        highlights = [
            CommitHighlight(
                sha=row.sha,
                repository=row.full_name,
                message=(row.message or "").split("\n", 1)[0],
                additions=totals[commit_id][0],
                deletions=totals[commit_id][1],
                committed_at=ensure_utc(row.commit_date),
            )
            for commit_id, row in commits.items()
        ]
        highlights.sort(key=lambda c: (-c.changes, -c.committed_at.timestamp(), c.sha))
        return highlights[: self.top_n]

    def top_pull_requests(
        self, project_id: str, github_person_id: str
    ) -> list[PullRequestHighlight]:
        """Authored pull requests with the most review comments and commenting reviews."""
        with self.db.session_scope() as session:
            account = session.get(GithubPerson, github_person_id)
            if account is None:
                raise NotFoundError(f"github person {github_person_id} not found")
            pulls = (
                session.query(
                    PullRequest.id,
                    PullRequest.number,
                    PullRequest.title,
                    PullRequest.state,
                    PullRequest.review_comments_count,
                    PullRequest.github_created_at,
                    GithubRepository.full_name,
                )
                .join(GithubRepository, GithubRepository.id == PullRequest.repository_id)
                .join(
                    ProjectRepository,
                    ProjectRepository.github_repo_id == GithubRepository.github_repo_id,
                )
                .filter(
                    ProjectRepository.project_id == project_id,
                    or_(
                        PullRequest.user_id == account.github_user_id,
                        func.lower(PullRequest.user) == account.username.lower(),
                    ),
                )
                .all()
            )
            commenting: dict[str, int] = {}
            if pulls:
                commenting = {
                    row.pr_id: row.count
                    for row in session.query(PRReview.pr_id, func.count(PRReview.id).label("count"))
                    .filter(
                        PRReview.pr_id.in_([pull.id for pull in pulls]),
                        or_(
                            PRReview.state == ReviewState.COMMENTED.value,
                            PRReview.body_present.is_(True),
                        ),
                    )
                    .group_by(PRReview.pr_id)
                }

        highlights = [
            PullRequestHighlight(
                repository=pull.full_name,
                number=pull.number,
                title=pull.title,
                state=pull.state,
                comments=(pull.review_comments_count or 0) + commenting.get(pull.id, 0),
                created_at=ensure_utc(pull.github_created_at),
            )
            for pull in pulls
        ]
        highlights.sort(key=lambda p: (-p.comments, -p.created_at.timestamp(), p.repository, p.number))
        return highlights[: self.top_n]

    # -- helpers ------------------------------------------------------------

    def _top_repositories(self, rows: list[PeopleStatistics]) -> list[RepositoryScore]:
        scores: dict[str, int] = defaultdict(int)
        for row in rows:
            scores[row.repository_id] += row.score
        if not scores:
            return []
        with self.db.session_scope() as session:
            names = {
                row.id: row.full_name
                for row in session.query(ProjectRepository.id, GithubRepository.full_name)
                .join(
                    GithubRepository,
                    GithubRepository.github_repo_id == ProjectRepository.github_repo_id,
                )
                .filter(ProjectRepository.id.in_(list(scores)))
            }
        ranked = [
            RepositoryScore(repository_id, names.get(repository_id, repository_id), score)
            for repository_id, score in scores.items()
        ]
        ranked.sort(key=lambda r: (-r.score, r.name.lower()))
        return ranked[: self.top_n]

    def _commit_query(
        self, session: Session, project_id: str, emails: set[str], *columns, with_files: bool = False
    ):
        """Commits of the project's repositories written under one of ``emails``.

        With ``with_files`` the query yields one row per changed file.
        """
        query = session.query(*columns).select_from(Commit)
        if with_files:
            query = query.join(CommitFile, CommitFile.commit_id == Commit.id)
        query = (
            query
            .join(GithubRepository, GithubRepository.id == Commit.github_repository_id)
            .join(
                ProjectRepository,
                ProjectRepository.github_repo_id == GithubRepository.github_repo_id,
            )
            .filter(
                ProjectRepository.project_id == project_id,
                func.lower(func.trim(Commit.author_email)).in_(sorted(emails)),
            )
        )
        if self.config.exclude_merge_commits:
            query = query.filter(Commit.is_merge.is_(False))
        return query
