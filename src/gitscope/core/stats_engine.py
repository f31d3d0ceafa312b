"""Per-person statistics for one project repository.

A run reads every input of a repository in one session, aggregates in memory
and swaps the repository's ``people_statistics`` rows in a single write
transaction. A failure or cancellation before that commit leaves the previous
rows untouched, and a rerun over the same inputs reproduces identical rows.
"""

import logging
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config.schema import StatsConfig
from ..errors import InvalidInputError, JobCancelledError, NoIdentitiesError, NotFoundError
from ..models.database import (
    Commit,
    CommitFile,
    Database,
    EmailMerge,
    ExcludedExtension,
    ExcludedFolder,
    GithubPerson,
    GithubPersonEmail,
    GithubRepository,
    PeopleStatistics,
    Person,
    ProjectRepository,
    PRReview,
    PullRequest,
    ScoreSettings,
    WorkingHoursSettings,
    ensure_utc,
)
from ..records import ReviewState
from ..storage.statistics_store import PersonTotals, StatisticsStore
from ..utils.date_utils import Grain, period_range, utc_date
from ..utils.path_filters import PathFilter
from .identity import merge_closure

logger = logging.getLogger(__name__)

STATISTICS_NAMESPACE = uuid.UUID("6f1c1d2e-8a4b-5c3d-9e7f-0a1b2c3d4e5f")


@dataclass(frozen=True)
class ScoreWeights:
    additions: int = 1
    deletions: int = 3
    commits: int = 10
    pull_requests: int = 20
    comments: int = 100

    @classmethod
    def from_settings(cls, settings: Optional[ScoreSettings]) -> "ScoreWeights":
        if settings is None:
            return cls()
        return cls(
            additions=settings.additions,
            deletions=settings.deletions,
            commits=settings.commits,
            pull_requests=settings.pull_requests,
            comments=settings.comments,
        )


@dataclass(frozen=True)
class WorkingHoursWindow:
    """Enabled weekdays times ``[start_hour, end_hour)`` in UTC."""

    start_hour: int
    end_hour: int
    weekdays: frozenset

    @classmethod
    def from_settings(
        cls, settings: Optional[WorkingHoursSettings]
    ) -> Optional["WorkingHoursWindow"]:
        if settings is None:
            return None
        return cls(settings.start_hour, settings.end_hour, settings.enabled_weekdays())

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if moment.weekday() not in self.weekdays:
            return False
        return self.start_hour <= moment.hour < self.end_hour


@dataclass
class ActivityBucket:
    additions: int = 0
    deletions: int = 0
    commits: int = 0
    prs_authored: int = 0
    prs_reviewed: int = 0
    comments: int = 0

    def score(self, weights: ScoreWeights) -> int:
        return (
            self.additions * weights.additions
            + self.deletions * weights.deletions
            + self.commits * weights.commits
            + self.prs_authored * weights.pull_requests
            + self.comments * weights.comments
        )


def project_path_filter(session: Session, project_id: str) -> PathFilter:
    """Build the extension and folder exclusions configured for a project."""
    return PathFilter(
        extensions=[
            row.value
            for row in session.query(ExcludedExtension.value).filter(
                ExcludedExtension.project_id == project_id
            )
        ],
        folders=[
            row.value
            for row in session.query(ExcludedFolder.value).filter(
                ExcludedFolder.project_id == project_id
            )
        ],
    )


def statistics_row_id(project_id: str, repository_id: str, github_person_id: str, day: date) -> str:
    """Deterministic row id derived from the natural key."""
    key = f"{project_id}:{repository_id}:{github_person_id}:{day.isoformat()}"
    return str(uuid.uuid5(STATISTICS_NAMESPACE, key))


@dataclass
class _RepositoryInputs:
    github_repository_id: str
    weights: ScoreWeights
    window: Optional[WorkingHoursWindow]
    path_filter: PathFilter
    email_to_person: dict[str, str]
    commits: list[tuple[str, str, datetime, bool]]
    files: dict[str, list[tuple[str, int, int]]]
    pull_requests: list[tuple[Optional[int], str, datetime]]
    reviews: list[tuple[str, str, bool, datetime]]
    accounts_by_user_id: dict[int, str]
    accounts_by_login: dict[str, str]


class StatsEngine:
    """Compute and read per-person productivity statistics."""

    def __init__(
        self,
        db: Database,
        statistics: Optional[StatisticsStore] = None,
        config: Optional[StatsConfig] = None,
    ):
        self.db = db
        self.statistics = statistics or StatisticsStore(db)
        self.config = config or StatsConfig()

    # -- compute ------------------------------------------------------------

    def compute_repository(
        self,
        project_id: str,
        project_repository_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Rebuild the statistics of one project repository.

        Args:
            project_id: Project owning the repository
            project_repository_id: Repository to rebuild
            cancel_event: When set, the run aborts before committing

        Returns:
            Number of statistics rows written

        Raises:
            NoIdentitiesError: If the project has no account associations
            NotFoundError: If the repository is not part of the project
            JobCancelledError: If cancelled before the swap committed
        """

        def _check_cancel() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError("statistics computation cancelled")

        inputs = self._load_inputs(project_id, project_repository_id)
        _check_cancel()
        buckets = self._aggregate(inputs)
        _check_cancel()

        rows = []
        for (person_id, day), bucket in sorted(buckets.items(), key=lambda item: (item[0][1], item[0][0])):
            rows.append(
                PeopleStatistics(
                    id=statistics_row_id(project_id, project_repository_id, person_id, day),
                    project_id=project_id,
                    repository_id=project_repository_id,
                    github_person_id=person_id,
                    stat_date=day,
                    additions=bucket.additions,
                    deletions=bucket.deletions,
                    commits=bucket.commits,
                    prs_authored=bucket.prs_authored,
                    prs_reviewed=bucket.prs_reviewed,
                    comments=bucket.comments,
                    score=bucket.score(inputs.weights),
                )
            )

        written = self.statistics.replace_repository_rows(
            project_id, project_repository_id, rows, before_commit=_check_cancel
        )
        logger.info(
            f"Computed {written} statistics rows for repository {project_repository_id} "
            f"of project {project_id}"
        )
        return written

    def _load_inputs(self, project_id: str, project_repository_id: str) -> _RepositoryInputs:
        with self.db.session_scope() as session:
            membership = session.get(ProjectRepository, project_repository_id)
            if membership is None or membership.project_id != project_id:
                raise NotFoundError(
                    f"repository {project_repository_id} is not part of project {project_id}"
                )
            github_repo = (
                session.query(GithubRepository)
                .filter(GithubRepository.github_repo_id == membership.github_repo_id)
                .one()
            )

            bindings = (
                session.query(GithubPersonEmail.github_person_id, Person.primary_email)
                .join(Person, Person.id == GithubPersonEmail.person_id)
                .filter(GithubPersonEmail.project_id == project_id)
                .order_by(GithubPersonEmail.github_person_id.asc())
                .all()
            )
            if not bindings:
                raise NoIdentitiesError(
                    f"project {project_id} has no email associations; associate accounts first"
                )

            edges = {
                row.source_email: row.target_email
                for row in session.query(EmailMerge.source_email, EmailMerge.target_email).filter(
                    EmailMerge.project_id == project_id
                )
            }
            closure = merge_closure(edges)
            email_to_person: dict[str, str] = {}
            for row in bindings:
                canonical = closure.get(row.primary_email, row.primary_email)
                if canonical in email_to_person:
                    logger.warning(
                        f"Project {project_id}: {canonical} is bound to several accounts, "
                        f"keeping {email_to_person[canonical]}"
                    )
                    continue
                email_to_person[canonical] = row.github_person_id
            # Fold merge sources onto the account of their canonical email
            for source, target in closure.items():
                if target in email_to_person:
                    email_to_person.setdefault(source, email_to_person[target])

            path_filter = project_path_filter(session, project_id)
            weights = ScoreWeights.from_settings(session.get(ScoreSettings, project_id))
            window = WorkingHoursWindow.from_settings(session.get(WorkingHoursSettings, project_id))

            commits = [
                (row.id, row.author_email, ensure_utc(row.commit_date), bool(row.is_merge))
                for row in session.query(
                    Commit.id, Commit.author_email, Commit.commit_date, Commit.is_merge
                )
                .filter(Commit.github_repository_id == github_repo.id)
                .order_by(Commit.commit_date.asc(), Commit.sha.asc())
            ]
            files: dict[str, list[tuple[str, int, int]]] = defaultdict(list)
            for row in (
                session.query(
                    CommitFile.commit_id, CommitFile.path, CommitFile.additions, CommitFile.deletions
                )
                .join(Commit, Commit.id == CommitFile.commit_id)
                .filter(Commit.github_repository_id == github_repo.id)
            ):
                files[row.commit_id].append((row.path, row.additions or 0, row.deletions or 0))

            pull_requests = [
                (row.user_id, row.user, ensure_utc(row.github_created_at))
                for row in session.query(
                    PullRequest.user_id, PullRequest.user, PullRequest.github_created_at
                ).filter(PullRequest.repository_id == github_repo.id)
            ]
            reviews = [
                (row.reviewer_login, row.state, bool(row.body_present), ensure_utc(row.github_created_at))
                for row in session.query(
                    PRReview.reviewer_login,
                    PRReview.state,
                    PRReview.body_present,
                    PRReview.github_created_at,
                ).filter(PRReview.repository_id == github_repo.id)
            ]

            user_ids = {user_id for user_id, _, _ in pull_requests if user_id is not None}
            logins = {login.lower() for _, login, _ in pull_requests}
            logins |= {login.lower() for login, _, _, _ in reviews}
            accounts_by_user_id: dict[int, str] = {}
            accounts_by_login: dict[str, str] = {}
            if user_ids or logins:
                accounts = (
                    session.query(GithubPerson.id, GithubPerson.github_user_id, GithubPerson.username)
                    .filter(
                        (GithubPerson.github_user_id.in_(user_ids))
                        | (func.lower(GithubPerson.username).in_(logins))
                    )
                    .order_by(GithubPerson.github_user_id.asc())
                    .all()
                )
                for account in accounts:
                    accounts_by_user_id[account.github_user_id] = account.id
                    accounts_by_login.setdefault(account.username.lower(), account.id)

            return _RepositoryInputs(
                github_repository_id=github_repo.id,
                weights=weights,
                window=window,
                path_filter=path_filter,
                email_to_person=email_to_person,
                commits=commits,
                files=dict(files),
                pull_requests=pull_requests,
                reviews=reviews,
                accounts_by_user_id=accounts_by_user_id,
                accounts_by_login=accounts_by_login,
            )

    def _aggregate(self, inputs: _RepositoryInputs) -> dict[tuple[str, date], ActivityBucket]:
        buckets: dict[tuple[str, date], ActivityBucket] = defaultdict(ActivityBucket)

        for commit_id, author_email, commit_date, is_merge in inputs.commits:
            if is_merge and self.config.exclude_merge_commits:
                continue
            if inputs.window is not None and not inputs.window.contains(commit_date):
                continue
            person_id = inputs.email_to_person.get((author_email or "").strip().lower())
            if person_id is None:
                continue

            kept = [
                (additions, deletions)
                for path, additions, deletions in inputs.files.get(commit_id, [])
                if not inputs.path_filter.excludes(path)
            ]
            if not kept:
                continue
            additions = sum(a for a, _ in kept)
            deletions = sum(d for _, d in kept)
            if self._is_outlier(additions, deletions):
                logger.debug(f"Skipping outlier commit {commit_id} (+{additions}/-{deletions})")
                continue

            bucket = buckets[(person_id, utc_date(commit_date))]
            bucket.additions += additions
            bucket.deletions += deletions
            bucket.commits += 1

        for user_id, login, created_at in inputs.pull_requests:
            person_id = None
            if user_id is not None:
                person_id = inputs.accounts_by_user_id.get(user_id)
            if person_id is None:
                person_id = inputs.accounts_by_login.get(login.lower())
            if person_id is None:
                continue
            buckets[(person_id, utc_date(created_at))].prs_authored += 1

        for login, state, body_present, created_at in inputs.reviews:
            person_id = inputs.accounts_by_login.get(login.lower())
            if person_id is None:
                continue
            bucket = buckets[(person_id, utc_date(created_at))]
            bucket.prs_reviewed += 1
            if state == ReviewState.COMMENTED.value or body_present:
                bucket.comments += 1

        return dict(buckets)

    def _is_outlier(self, additions: int, deletions: int) -> bool:
        limit = self.config.max_commit_changes
        if limit and additions + deletions > limit:
            return True
        deletion_limit = self.config.max_deletion_only
        return bool(deletion_limit) and additions == 0 and deletions > deletion_limit

    # -- read ---------------------------------------------------------------

    def read_stats(
        self,
        project_id: str,
        grain: Union[Grain, str],
        key: Optional[str] = None,
        repository_id: Optional[str] = None,
    ) -> list[PersonTotals]:
        """Return stored aggregates for a period; never triggers a computation.

        Args:
            project_id: Project to read
            grain: One of all, day, week, month, year
            key: Period key (``2024-03-11``, ``2024-W11``, ``2024-03``, ``2024``)
            repository_id: Optional restriction to one project repository

        Raises:
            InvalidInputError: If the grain or key is malformed
        """
        try:
            grain = Grain(grain)
            date_range = period_range(grain, key)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self.statistics.totals(project_id, date_range, repository_id)

    def available_periods(self, project_id: str, grain: Union[Grain, str]) -> list[str]:
        try:
            grain = Grain(grain)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self.statistics.available_periods(project_id, grain)
