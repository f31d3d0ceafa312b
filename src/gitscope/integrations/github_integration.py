"""GitHub API facade built on PyGithub.

PyGithub's own retry adapter is disabled; every call goes through
:meth:`GitHubFacade._call_with_retry`, which classifies failures into gitscope
error kinds, backs off exponentially with jitter, honors ``Retry-After`` and
stops early when the caller's cancellation event is set.
"""

import logging
import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import requests
from github import Auth, Github
from github.GithubException import (
    BadCredentialsException,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from ..errors import (
    ForbiddenError,
    GitScopeError,
    InternalError,
    JobCancelledError,
    NotFoundError,
    PermanentIOError,
    RateLimitedError,
    TransientIOError,
    is_transient,
)
from ..records import (
    PullRequestInfo,
    PullRequestState,
    RateLimitInfo,
    RepositoryInfo,
    ReviewInfo,
    ReviewState,
    UserInfo,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# GitHub's placeholder account for deleted users
GHOST_USER = UserInfo(github_user_id=10137, login="ghost", type="User")

_REVIEW_STATES = {
    "APPROVED": ReviewState.APPROVED,
    "CHANGES_REQUESTED": ReviewState.CHANGES_REQUESTED,
    "COMMENTED": ReviewState.COMMENTED,
    "DISMISSED": ReviewState.DISMISSED,
}


def _lower_headers(headers: Any) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v) for k, v in dict(headers).items()}


def retry_after_seconds(headers: Any, now: Optional[float] = None) -> Optional[float]:
    """Extract the server-requested wait from ``Retry-After`` or ``X-RateLimit-Reset``."""
    lowered = _lower_headers(headers)
    if "retry-after" in lowered:
        try:
            return max(0.0, float(lowered["retry-after"]))
        except ValueError:
            pass
    if lowered.get("x-ratelimit-remaining") == "0" and "x-ratelimit-reset" in lowered:
        try:
            reset = float(lowered["x-ratelimit-reset"])
        except ValueError:
            return None
        current = time.time() if now is None else now
        return max(0.0, reset - current)
    return None


def classify_github_error(exc: BaseException) -> GitScopeError:
    """Map a PyGithub or transport exception onto a gitscope error kind."""
    if isinstance(exc, GitScopeError):
        return exc

    if isinstance(exc, BadCredentialsException):
        return ForbiddenError("GitHub rejected the credentials")
    if isinstance(exc, RateLimitExceededException):
        return RateLimitedError(
            "GitHub rate limit exceeded", retry_after=retry_after_seconds(exc.headers)
        )
    if isinstance(exc, UnknownObjectException):
        return NotFoundError("GitHub resource not found")

    if isinstance(exc, GithubException):
        status = exc.status or 0
        headers = _lower_headers(exc.headers)
        retry_after = retry_after_seconds(headers)
        detail = exc.data.get("message") if isinstance(exc.data, dict) else None
        detail = detail or str(exc)
        if status == 429 or (status == 403 and retry_after is not None):
            return RateLimitedError(f"GitHub rate limited: {detail}", retry_after=retry_after)
        if status in (401, 403):
            return ForbiddenError(f"GitHub denied access ({status}): {detail}")
        if status in (404, 410):
            return NotFoundError(f"GitHub resource not found ({status}): {detail}")
        if status >= 500:
            return TransientIOError(f"GitHub server error ({status}): {detail}")
        return PermanentIOError(f"GitHub request failed ({status}): {detail}")

    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return TransientIOError(f"GitHub connection failed: {exc}")
    if isinstance(exc, requests.exceptions.RequestException):
        return PermanentIOError(f"GitHub request failed: {exc}")

    return InternalError(f"{exc.__class__.__name__}: {exc}")


def _user_info(user: Any) -> UserInfo:
    if user is None:
        return GHOST_USER
    return UserInfo(
        github_user_id=int(user.id),
        login=user.login,
        type=getattr(user, "type", None) or "User",
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _pull_request_info(pr: Any, review_comments: int = 0) -> PullRequestInfo:
    if pr.merged_at is not None:
        state = PullRequestState.MERGED
    elif pr.state == "closed":
        state = PullRequestState.CLOSED
    else:
        state = PullRequestState.OPEN
    return PullRequestInfo(
        number=int(pr.number),
        github_pr_id=int(pr.id),
        title=pr.title or "",
        author=_user_info(pr.user),
        state=state,
        created_at=_aware(pr.created_at),
        merged_at=_aware(pr.merged_at),
        closed_at=_aware(pr.closed_at),
        review_comments_count=review_comments,
    )


def _review_info(review: Any) -> Optional[ReviewInfo]:
    state = _REVIEW_STATES.get((review.state or "").upper())
    if state is None or review.submitted_at is None:
        # Pending reviews are drafts visible only to their author
        return None
    return ReviewInfo(
        github_review_id=int(review.id),
        reviewer=_user_info(review.user),
        state=state,
        submitted_at=_aware(review.submitted_at),
        body_present=bool((review.body or "").strip()),
    )


def _pr_number_from_url(url: Optional[str]) -> Optional[int]:
    if not url:
        return None
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


class GitHubFacade:
    """Rate-limit aware access to the GitHub REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: int = 30,
        per_page: int = 100,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 60.0,
        client_factory: Optional[Callable[[Optional[str]], Any]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the facade.

        Args:
            token: Default access token used when a call does not pass one
            base_url: API root, for GitHub Enterprise installations
            timeout: Per-request timeout in seconds
            per_page: Page size for listings (max 100)
            max_retries: Retries after the first attempt for transient failures
            backoff_base: First backoff delay in seconds
            backoff_cap: Upper bound of the exponential part of the delay
            client_factory: Builds a PyGithub-compatible client for a token
            sleep: Replaces waiting between retries
            rng: Random source for jitter
        """
        self.token = token
        self.base_url = base_url
        self.timeout = timeout
        self.per_page = per_page
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clients: dict[Optional[str], Any] = {}
        self._lock = threading.Lock()

    def _default_client(self, token: Optional[str]) -> Github:
        auth = Auth.Token(token) if token else None
        return Github(
            auth=auth,
            base_url=self.base_url,
            timeout=self.timeout,
            per_page=self.per_page,
            retry=None,
        )

    def client(self, token: Optional[str] = None) -> Any:
        """Return a cached client for ``token`` (or the default token)."""
        key = token or self.token
        with self._lock:
            if key not in self._clients:
                self._clients[key] = self._client_factory(key)
            return self._clients[key]

    # -- retry policy -------------------------------------------------------

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry ``attempt`` (0-based).

        The exponential part is ``base * 2**attempt`` capped at ``backoff_cap``;
        a server-provided ``retry_after`` is a lower bound, and up to one
        ``backoff_base`` of jitter is added on top.
        """
        delay = min(self.backoff_cap, self.backoff_base * (2**attempt))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay + self._rng.uniform(0, self.backoff_base)

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel_event is not None:
            cancel_event.wait(delay)
        else:
            time.sleep(delay)
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("cancelled while waiting to retry a GitHub request")

    def _call_with_retry(
        self,
        description: str,
        fn: Callable[[], T],
        cancel_event: Optional[threading.Event] = None,
    ) -> T:
        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"cancelled before {description}")
            try:
                return fn()
            except Exception as exc:
                error = classify_github_error(exc)
                if not is_transient(error) or attempt >= self.max_retries:
                    if error is exc:
                        raise
                    raise error from exc
                retry_after = getattr(error, "retry_after", None)
                delay = self.backoff_delay(attempt, retry_after)
                logger.warning(
                    f"{description} failed ({error.code}: {error}); "
                    f"retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                )
                self._wait(delay, cancel_event)
                attempt += 1

    # -- operations ---------------------------------------------------------

    def list_user_repositories(
        self, token: Optional[str] = None, cancel_event: Optional[threading.Event] = None
    ) -> list[RepositoryInfo]:
        """List repositories accessible to the token's account."""
        client = self.client(token)

        def _fetch() -> list[RepositoryInfo]:
            return [
                RepositoryInfo(
                    github_repo_id=int(repo.id),
                    full_name=repo.full_name,
                    clone_url=repo.clone_url,
                    default_branch=repo.default_branch or "main",
                    private=bool(repo.private),
                )
                for repo in client.get_user().get_repos()
            ]

        return self._call_with_retry("list user repositories", _fetch, cancel_event)

    def get_repository(
        self, full_name: str, cancel_event: Optional[threading.Event] = None
    ) -> RepositoryInfo:
        client = self.client()

        def _fetch() -> RepositoryInfo:
            repo = client.get_repo(full_name)
            return RepositoryInfo(
                github_repo_id=int(repo.id),
                full_name=repo.full_name,
                clone_url=repo.clone_url,
                default_branch=repo.default_branch or "main",
                private=bool(repo.private),
            )

        return self._call_with_retry(f"get repository {full_name}", _fetch, cancel_event)

    def list_pull_requests(
        self,
        full_name: str,
        cursor: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> tuple[list[PullRequestInfo], Optional[int]]:
        """Fetch one page of pull requests (all states, oldest first).

        Args:
            full_name: ``owner/repo`` slug
            cursor: Page number returned by the previous call, None for the first page
            cancel_event: Set to abandon the call during backoff

        Returns:
            ``(pull_requests, next_cursor)``; ``next_cursor`` is None on the last page
        """
        client = self.client()
        page = cursor or 0

        def _fetch() -> list[Any]:
            repo = client.get_repo(full_name)
            return list(repo.get_pulls(state="all", sort="created", direction="asc").get_page(page))

        raw = self._call_with_retry(
            f"list pull requests of {full_name} (page {page})", _fetch, cancel_event
        )
        items = [_pull_request_info(pr) for pr in raw]
        next_cursor = page + 1 if len(raw) >= self.per_page else None
        return items, next_cursor

    def list_reviews(
        self,
        full_name: str,
        pr_number: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[ReviewInfo]:
        """Fetch submitted reviews of one pull request."""
        client = self.client()

        def _fetch() -> list[Any]:
            return list(client.get_repo(full_name).get_pull(pr_number).get_reviews())

        raw = self._call_with_retry(
            f"list reviews of {full_name}#{pr_number}", _fetch, cancel_event
        )
        reviews = [_review_info(review) for review in raw]
        return [review for review in reviews if review is not None]

    def review_comment_counts(
        self, full_name: str, cancel_event: Optional[threading.Event] = None
    ) -> dict[int, int]:
        """Count inline review comments per pull request number."""
        client = self.client()
        counts: dict[int, int] = {}
        page = 0
        while True:
            current = page

            def _fetch() -> list[Any]:
                repo = client.get_repo(full_name)
                return list(repo.get_pulls_review_comments().get_page(current))

            raw = self._call_with_retry(
                f"list review comments of {full_name} (page {current})", _fetch, cancel_event
            )
            for comment in raw:
                number = _pr_number_from_url(getattr(comment, "pull_request_url", None))
                if number is not None:
                    counts[number] = counts.get(number, 0) + 1
            if len(raw) < self.per_page:
                return counts
            page += 1

    def get_user(self, login: str, cancel_event: Optional[threading.Event] = None) -> UserInfo:
        client = self.client()

        def _fetch() -> UserInfo:
            user = client.get_user(login)
            return UserInfo(
                github_user_id=int(user.id),
                login=user.login,
                type=user.type or "User",
                name=user.name,
                email=user.email,
            )

        return self._call_with_retry(f"get user {login}", _fetch, cancel_event)

    def get_rate_limit(self, token: Optional[str] = None) -> RateLimitInfo:
        """Return the core REST quota of the token."""
        client = self.client(token)

        def _fetch() -> RateLimitInfo:
            rate = client.get_rate_limit()
            core = getattr(getattr(rate, "resources", None), "core", None) or rate.core
            return RateLimitInfo(
                limit=int(core.limit),
                remaining=int(core.remaining),
                reset_at=_aware(core.reset),
            )

        return self._call_with_retry("get rate limit", _fetch)
