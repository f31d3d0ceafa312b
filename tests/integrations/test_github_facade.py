"""Tests for the GitHub facade: error classification, backoff and paging."""

import random
import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests
from github.GithubException import (
    BadCredentialsException,
    GithubException,
    UnknownObjectException,
)

from gitscope.errors import (
    ForbiddenError,
    InternalError,
    JobCancelledError,
    NotFoundError,
    PermanentIOError,
    RateLimitedError,
    TransientIOError,
)
from gitscope.integrations.github_integration import (
    GHOST_USER,
    GitHubFacade,
    classify_github_error,
    retry_after_seconds,
)
from gitscope.records import PullRequestState, ReviewState


def _user(user_id=7, login="alice"):
    return Mock(id=user_id, login=login, type="User")


def _pull(number=1, user=None, state="open", merged_at=None):
    return Mock(
        number=number,
        id=1000 + number,
        title=f"PR {number}",
        user=user if user is not None else _user(),
        state=state,
        created_at=datetime(2024, 3, 11, 9, tzinfo=timezone.utc),
        merged_at=merged_at,
        closed_at=None,
    )


def _review(review_id, state, body="", submitted=True, user=None):
    return Mock(
        id=review_id,
        state=state,
        body=body,
        user=user if user is not None else _user(8, "bob"),
        submitted_at=datetime(2024, 3, 12, tzinfo=timezone.utc) if submitted else None,
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client():
    client = Mock()
    repo = client.get_repo.return_value
    repo.get_pulls_review_comments.return_value.get_page.return_value = []
    repo.get_pull.return_value.get_reviews.return_value = []
    return client


@pytest.fixture
def facade(client, sleeps):
    return GitHubFacade(
        token="token",
        client_factory=lambda token: client,
        sleep=sleeps.append,
        rng=random.Random(7),
        max_retries=3,
        per_page=2,
    )


class TestRetryAfter:
    def test_retry_after_header(self):
        assert retry_after_seconds({"Retry-After": "5"}) == 5.0

    def test_rate_limit_reset(self):
        headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1060"}
        assert retry_after_seconds(headers, now=1000) == 60.0

    def test_absent_or_malformed(self):
        assert retry_after_seconds({}) is None
        assert retry_after_seconds(None) is None
        assert retry_after_seconds({"X-RateLimit-Remaining": "10", "X-RateLimit-Reset": "1"}) is None


class TestClassification:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (BadCredentialsException(401, {"message": "Bad credentials"}, {}), ForbiddenError),
            (GithubException(403, {"message": "forbidden"}, {}), ForbiddenError),
            (GithubException(403, {"message": "slow down"}, {"Retry-After": "5"}), RateLimitedError),
            (GithubException(429, {"message": "too many"}, {}), RateLimitedError),
            (UnknownObjectException(404, {"message": "Not Found"}, {}), NotFoundError),
            (GithubException(410, {"message": "Gone"}, {}), NotFoundError),
            (GithubException(502, {"message": "Bad gateway"}, {}), TransientIOError),
            (GithubException(422, {"message": "Unprocessable"}, {}), PermanentIOError),
            (requests.exceptions.ConnectionError("reset"), TransientIOError),
            (requests.exceptions.Timeout("slow"), TransientIOError),
            (requests.exceptions.InvalidURL("bad"), PermanentIOError),
            (KeyError("boom"), InternalError),
        ],
    )
    def test_kinds(self, exc, expected):
        assert isinstance(classify_github_error(exc), expected)

    def test_rate_limit_keeps_retry_after(self):
        error = classify_github_error(GithubException(403, {"message": "x"}, {"Retry-After": "12"}))
        assert error.retry_after == 12.0


class TestBackoff:
    def test_exponential_with_cap_and_jitter(self):
        facade = GitHubFacade(backoff_base=1.0, backoff_cap=8.0, rng=random.Random(1))

        for attempt, floor in [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (6, 8.0)]:
            delay = facade.backoff_delay(attempt)
            assert floor <= delay <= floor + 1.0

    def test_retry_after_is_a_lower_bound(self):
        facade = GitHubFacade(backoff_base=1.0, rng=random.Random(1))
        assert facade.backoff_delay(0, retry_after=30) >= 30


class TestCallWithRetry:
    def test_retries_transient_failures(self, facade, sleeps):
        fn = Mock(side_effect=[GithubException(503, {"message": "down"}, {}), "ok"])

        assert facade._call_with_retry("fetch", fn) == "ok"
        assert len(sleeps) == 1

    def test_gives_up_after_max_retries(self, facade, sleeps):
        fn = Mock(side_effect=GithubException(503, {"message": "down"}, {}))

        with pytest.raises(TransientIOError):
            facade._call_with_retry("fetch", fn)
        assert fn.call_count == 4
        assert len(sleeps) == 3

    def test_permanent_errors_are_not_retried(self, facade, sleeps):
        fn = Mock(side_effect=UnknownObjectException(404, {"message": "Not Found"}, {}))

        with pytest.raises(NotFoundError):
            facade._call_with_retry("fetch", fn)
        assert fn.call_count == 1
        assert sleeps == []

    def test_cancelled_before_call(self, facade):
        cancel = threading.Event()
        cancel.set()
        fn = Mock()

        with pytest.raises(JobCancelledError):
            facade._call_with_retry("fetch", fn, cancel)
        fn.assert_not_called()


class TestPullRequests:
    def test_rate_limited_page_is_retried(self, facade, client, sleeps):
        pulls = client.get_repo.return_value.get_pulls.return_value
        pulls.get_page.side_effect = [
            GithubException(403, {"message": "secondary rate limit"}, {"Retry-After": "5"}),
            [_pull(1)],
        ]

        items, cursor = facade.list_pull_requests("acme/api")

        assert len(sleeps) == 1
        assert sleeps[0] >= 5
        assert [pr.number for pr in items] == [1]
        assert cursor is None

    def test_full_page_has_a_next_cursor(self, facade, client):
        pulls = client.get_repo.return_value.get_pulls.return_value
        pulls.get_page.return_value = [_pull(1), _pull(2)]

        _, cursor = facade.list_pull_requests("acme/api", cursor=3)

        assert cursor == 4
        pulls.get_page.assert_called_with(3)

    def test_states_and_deleted_authors(self, facade, client):
        pulls = client.get_repo.return_value.get_pulls.return_value
        pulls.get_page.return_value = [
            _pull(1, merged_at=datetime(2024, 3, 12, tzinfo=timezone.utc), state="closed"),
        ]
        ghost = _pull(2, state="closed")
        ghost.user = None
        pulls.get_page.return_value.append(ghost)

        items, _ = facade.list_pull_requests("acme/api")

        assert [pr.state for pr in items] == [PullRequestState.MERGED, PullRequestState.CLOSED]
        assert items[1].author == GHOST_USER

    def test_reviews_skip_pending(self, facade, client):
        client.get_repo.return_value.get_pull.return_value.get_reviews.return_value = [
            _review(1, "APPROVED"),
            _review(2, "COMMENTED", body="nit"),
            _review(3, "PENDING", submitted=False),
        ]

        reviews = facade.list_reviews("acme/api", 1)

        assert [(r.state, r.body_present) for r in reviews] == [
            (ReviewState.APPROVED, False),
            (ReviewState.COMMENTED, True),
        ]

    def test_review_comment_counts_page_until_short(self, facade, client):
        comments = client.get_repo.return_value.get_pulls_review_comments.return_value
        url = "https://api.github.com/repos/acme/api/pulls/{}"
        comments.get_page.side_effect = [
            [Mock(pull_request_url=url.format(1)), Mock(pull_request_url=url.format(1))],
            [Mock(pull_request_url=url.format(2))],
        ]

        assert facade.review_comment_counts("acme/api") == {1: 2, 2: 1}


class TestClients:
    def test_clients_are_cached_per_token(self, sleeps):
        factory = Mock(side_effect=lambda token: Mock(name=f"client-{token}"))
        facade = GitHubFacade(token="default", client_factory=factory, sleep=sleeps.append)

        assert facade.client() is facade.client("default")
        assert facade.client("other") is not facade.client()
        assert factory.call_count == 2

    def test_get_repository(self, facade, client):
        client.get_repo.return_value = Mock(
            id=42,
            full_name="acme/api",
            clone_url="https://github.com/acme/api.git",
            default_branch="trunk",
            private=True,
        )

        info = facade.get_repository("acme/api")

        assert (info.github_repo_id, info.default_branch, info.private) == (42, "trunk", True)

    def test_get_user(self, facade, client):
        user = Mock(id=99, login="octocat", type=None, email="mona@example.com")
        user.name = "Mona"
        client.get_user.return_value = user

        info = facade.get_user("octocat")

        client.get_user.assert_called_once_with("octocat")
        assert (info.github_user_id, info.login, info.type) == (99, "octocat", "User")
        assert (info.name, info.email) == ("Mona", "mona@example.com")

    def test_get_user_not_found(self, facade, client, sleeps):
        client.get_user.side_effect = UnknownObjectException(404, {"message": "Not Found"}, {})

        with pytest.raises(NotFoundError):
            facade.get_user("ghost-account")
        assert sleeps == []

    def test_get_rate_limit_uses_core_resource(self, sleeps):
        core = Mock(limit=5000, remaining=4321, reset=datetime(2024, 3, 11, 10, 0))
        tokened = Mock()
        tokened.get_rate_limit.return_value = Mock(resources=Mock(core=core))
        factory = Mock(return_value=tokened)
        facade = GitHubFacade(token="default", client_factory=factory, sleep=sleeps.append)

        quota = facade.get_rate_limit("other-token")

        factory.assert_called_once_with("other-token")
        assert (quota.limit, quota.remaining) == (5000, 4321)
        assert quota.reset_at == datetime(2024, 3, 11, 10, 0, tzinfo=timezone.utc)

    def test_get_rate_limit_falls_back_to_core_attribute(self, facade, client):
        core = Mock(limit=60, remaining=0, reset=datetime(2024, 3, 11, 10, 0, tzinfo=timezone.utc))
        client.get_rate_limit.return_value = Mock(resources=None, core=core)

        quota = facade.get_rate_limit()

        assert (quota.limit, quota.remaining) == (60, 0)
        assert quota.reset_at.tzinfo is not None
