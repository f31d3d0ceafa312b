"""Shared fixtures: a file-backed database per test and data factories."""

import itertools
from datetime import datetime, timezone

import pytest

from gitscope.core.identity import IdentityResolver
from gitscope.core.job_store import JobStore
from gitscope.core.stats_engine import StatsEngine
from gitscope.models.database import Database
from gitscope.records import (
    CommitRecord,
    FileChange,
    FileStatus,
    PullRequestInfo,
    PullRequestState,
    ReviewInfo,
    ReviewState,
    UserInfo,
)
from gitscope.storage.activity_store import ActivityStore
from gitscope.storage.project_store import ProjectStore
from gitscope.storage.statistics_store import StatisticsStore


@pytest.fixture
def temp_dir(tmp_path):
    """Per-test scratch directory."""
    return tmp_path


@pytest.fixture
def db(temp_dir):
    database = Database(temp_dir / "gitscope.db")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def projects(db):
    return ProjectStore(db)


@pytest.fixture
def activity(db):
    return ActivityStore(db)


@pytest.fixture
def statistics(db):
    return StatisticsStore(db)


@pytest.fixture
def jobs(db):
    return JobStore(db)


@pytest.fixture
def identity(db):
    return IdentityResolver(db)


@pytest.fixture
def engine(db, statistics):
    return StatsEngine(db, statistics)


@pytest.fixture
def project(projects):
    return projects.create_project("Platform", "owner-1")


@pytest.fixture
def make_repository(projects):
    """Create an upstream repository and attach it to a project."""
    ids = itertools.count(1000)

    def _make(project_id, full_name=None, tracked=True, github_repo_id=None):
        repo_id = github_repo_id if github_repo_id is not None else next(ids)
        name = full_name or f"acme/repo{repo_id}"
        upstream = projects.upsert_github_repository(
            repo_id, name, f"https://github.com/{name}.git", "main"
        )
        membership = projects.add_repository(project_id, repo_id, tracked=tracked)
        return membership, upstream

    return _make


@pytest.fixture
def repository(project, make_repository):
    """``(ProjectRepository, GithubRepository)`` for acme/api in ``project``."""
    return make_repository(project.id, "acme/api")


@pytest.fixture
def add_commit(activity):
    """Insert a commit; files are ``(path, additions, deletions)`` tuples."""
    shas = itertools.count(1)

    def _add(upstream, email, when, files, is_merge=False, sha=None):
        record = CommitRecord(
            sha=sha or f"{next(shas):040x}",
            author_email=email,
            author_name=email.split("@")[0],
            commit_date=when,
            message="change",
            is_merge=is_merge,
            files=tuple(
                FileChange(path=path, additions=adds, deletions=dels, status=FileStatus.MODIFIED)
                for path, adds, dels in files
            ),
        )
        activity.insert_commit(upstream.id, record)
        return record

    return _add


@pytest.fixture
def add_account(activity):
    """Create a GithubPerson from a login."""
    ids = itertools.count(500)

    def _add(login, user_type="User", github_user_id=None):
        user = UserInfo(
            github_user_id=github_user_id if github_user_id is not None else next(ids),
            login=login,
            type=user_type,
        )
        return activity.get_or_create_github_person(user)

    return _add


@pytest.fixture
def add_pull_request(activity):
    """Insert a pull request, optionally with reviews ``(login, state, body_present, when)``."""
    numbers = itertools.count(1)

    def _add(upstream, author, created_at, reviews=(), number=None):
        number = number or next(numbers)
        pr = PullRequestInfo(
            number=number,
            github_pr_id=90000 + number,
            title="Improve things",
            author=UserInfo(github_user_id=author.github_user_id, login=author.username),
            state=PullRequestState.OPEN,
            created_at=created_at,
        )
        activity.get_or_create_github_person(pr.author)
        pr_id = activity.upsert_pull_request(upstream.id, pr)
        for index, (reviewer, state, body_present, when) in enumerate(reviews, start=1):
            activity.upsert_review(
                upstream.id,
                pr_id,
                ReviewInfo(
                    github_review_id=pr.number * 1000 + index,
                    reviewer=UserInfo(github_user_id=reviewer.github_user_id, login=reviewer.username),
                    state=ReviewState(state),
                    submitted_at=when,
                    body_present=body_present,
                ),
            )
        return pr_id

    return _add


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def at():
    """``at(2024, 3, 11, 10)`` builds an aware UTC datetime."""
    return utc
