"""Commits, pull requests, reviews and the platform accounts behind them.

All rows here hang off the shared :class:`GithubRepository`, so writes are
idempotent: duplicate shas are skipped and pull requests/reviews are upserted
by their natural keys.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.database import (
    Commit,
    CommitFile,
    Database,
    GithubPerson,
    GithubRepository,
    PRReview,
    ProjectRepository,
    PullRequest,
    to_utc,
    utcnow_tz_aware,
)
from ..records import CommitRecord, PullRequestInfo, ReviewInfo, UserInfo

logger = logging.getLogger(__name__)


class ActivityStore:
    """Persistence for ingested repository activity."""

    def __init__(self, db: Database):
        self.db = db

    # -- working copies -----------------------------------------------------

    def mark_cloned(self, github_repository_id: str, local_path: str, head_sha: Optional[str]) -> None:
        """Record a usable working copy for every project sharing the repository."""
        with self.db.session_scope() as session:
            repo = self._require_repository(session, github_repository_id)
            repo.is_cloned = True
            repo.local_path = local_path
            repo.head_sha = head_sha
            repo.last_cloned_at = utcnow_tz_aware()
            session.query(ProjectRepository).filter(
                ProjectRepository.github_repo_id == repo.github_repo_id
            ).update({ProjectRepository.is_cloned: True}, synchronize_session=False)

    def mark_not_cloned(self, github_repository_id: str) -> None:
        with self.db.session_scope() as session:
            repo = self._require_repository(session, github_repository_id)
            repo.is_cloned = False
            session.query(ProjectRepository).filter(
                ProjectRepository.github_repo_id == repo.github_repo_id
            ).update({ProjectRepository.is_cloned: False}, synchronize_session=False)

    def record_ingested_sha(self, github_repository_id: str, sha: str) -> None:
        with self.db.session_scope() as session:
            repo = self._require_repository(session, github_repository_id)
            repo.last_commit_sha = sha

    def get_repository(self, github_repository_id: str) -> GithubRepository:
        with self.db.session_scope() as session:
            return self._require_repository(session, github_repository_id)

    # -- commits ------------------------------------------------------------

    def insert_commit(self, github_repository_id: str, record: CommitRecord) -> bool:
        """Insert a commit and its files atomically.

        Returns:
            True when the commit was inserted, False when the sha already exists
        """
        try:
            with self.db.session_scope() as session:
                exists = (
                    session.query(Commit.id)
                    .filter(
                        Commit.github_repository_id == github_repository_id,
                        Commit.sha == record.sha,
                    )
                    .first()
                )
                if exists is not None:
                    return False

                commit = Commit(
                    github_repository_id=github_repository_id,
                    sha=record.sha,
                    author_email=record.author_email,
                    author_name=record.author_name,
                    commit_date=to_utc(record.commit_date),
                    message=record.message,
                    is_merge=record.is_merge,
                )
                commit.files = [
                    CommitFile(
                        path=change.path,
                        additions=change.additions,
                        deletions=change.deletions,
                        status=change.status.value,
                    )
                    for change in record.files
                ]
                session.add(commit)
                return True
        except IntegrityError:
            # Lost a race with another ingest of the same sha
            logger.debug(f"Commit {record.sha} already recorded for {github_repository_id}")
            return False

    def commit_count(self, github_repository_id: str) -> int:
        with self.db.session_scope() as session:
            return (
                session.query(func.count(Commit.id))
                .filter(Commit.github_repository_id == github_repository_id)
                .scalar()
            )

    def commit_file_count(self, github_repository_id: str) -> int:
        with self.db.session_scope() as session:
            return (
                session.query(func.count(CommitFile.id))
                .join(Commit, CommitFile.commit_id == Commit.id)
                .filter(Commit.github_repository_id == github_repository_id)
                .scalar()
            )

    # -- platform accounts --------------------------------------------------

    def get_or_create_github_person(self, user: UserInfo) -> GithubPerson:
        """Return the account for ``user``, creating it on first sighting."""
        try:
            with self.db.session_scope() as session:
                return self._upsert_github_person(session, user)
        except IntegrityError:
            with self.db.session_scope() as session:
                return self._upsert_github_person(session, user)

    @staticmethod
    def _upsert_github_person(session: Session, user: UserInfo) -> GithubPerson:
        person = (
            session.query(GithubPerson)
            .filter(GithubPerson.github_user_id == user.github_user_id)
            .one_or_none()
        )
        if person is None:
            person = GithubPerson(
                github_user_id=user.github_user_id, username=user.login, type=user.type
            )
            session.add(person)
        else:
            person.username = user.login
            person.type = user.type
        session.flush()
        return person

    # -- pull requests ------------------------------------------------------

    def upsert_pull_request(self, repository_id: str, pr: PullRequestInfo) -> str:
        """Insert or refresh a pull request, returning its row id."""
        with self.db.session_scope() as session:
            row = (
                session.query(PullRequest)
                .filter(PullRequest.repository_id == repository_id, PullRequest.number == pr.number)
                .one_or_none()
            )
            if row is None:
                row = PullRequest(repository_id=repository_id, number=pr.number)
                session.add(row)
            row.github_pr_id = pr.github_pr_id
            row.title = pr.title
            row.user = pr.author.login
            row.user_id = pr.author.github_user_id
            row.state = pr.state.value
            row.github_created_at = to_utc(pr.created_at)
            row.merged_at = to_utc(pr.merged_at)
            row.closed_at = to_utc(pr.closed_at)
            row.review_comments_count = pr.review_comments_count
            session.flush()
            return row.id

    def upsert_review(self, repository_id: str, pr_id: str, review: ReviewInfo) -> str:
        with self.db.session_scope() as session:
            row = (
                session.query(PRReview)
                .filter(
                    PRReview.pr_id == pr_id,
                    PRReview.github_review_id == review.github_review_id,
                )
                .one_or_none()
            )
            if row is None:
                row = PRReview(
                    repository_id=repository_id,
                    pr_id=pr_id,
                    github_review_id=review.github_review_id,
                )
                session.add(row)
            row.reviewer_login = review.reviewer.login
            row.state = review.state.value
            row.body_present = review.body_present
            row.github_created_at = to_utc(review.submitted_at)
            session.flush()
            return row.id

    def pull_request_count(self, repository_id: str) -> int:
        with self.db.session_scope() as session:
            return (
                session.query(func.count(PullRequest.id))
                .filter(PullRequest.repository_id == repository_id)
                .scalar()
            )

    def review_count(self, repository_id: str) -> int:
        with self.db.session_scope() as session:
            return (
                session.query(func.count(PRReview.id))
                .filter(PRReview.repository_id == repository_id)
                .scalar()
            )

    @staticmethod
    def _require_repository(session: Session, github_repository_id: str) -> GithubRepository:
        repo = session.get(GithubRepository, github_repository_id)
        if repo is None:
            raise NotFoundError(f"github repository {github_repository_id} not found")
        return repo
