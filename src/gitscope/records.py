"""Plain records exchanged between the facades, workers and stores.

Workers never see PyGithub or GitPython objects; the facades translate them
into these dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class PullRequestState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class ReviewState(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    RENAMED = "renamed"
    REMOVED = "removed"


@dataclass(frozen=True)
class RepositoryInfo:
    """Repository visible to a platform account."""

    github_repo_id: int
    full_name: str
    clone_url: str
    default_branch: str = "main"
    private: bool = False


@dataclass(frozen=True)
class UserInfo:
    """Platform account as reported by the API."""

    github_user_id: int
    login: str
    type: str = "User"
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class PullRequestInfo:
    number: int
    github_pr_id: int
    title: str
    author: UserInfo
    state: PullRequestState
    created_at: datetime
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    review_comments_count: int = 0


@dataclass(frozen=True)
class ReviewInfo:
    github_review_id: int
    reviewer: UserInfo
    state: ReviewState
    submitted_at: datetime
    body_present: bool = False


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    remaining: int
    reset_at: Optional[datetime] = None


@dataclass(frozen=True)
class FileChange:
    """Per-path numstat of a commit. Binary files report 0/0."""

    path: str
    additions: int
    deletions: int
    status: FileStatus = FileStatus.MODIFIED


@dataclass(frozen=True)
class CommitRecord:
    sha: str
    author_email: str
    author_name: str
    commit_date: datetime
    message: str = ""
    is_merge: bool = False
    files: tuple[FileChange, ...] = field(default_factory=tuple)

    @property
    def additions(self) -> int:
        return sum(f.additions for f in self.files)

    @property
    def deletions(self) -> int:
        return sum(f.deletions for f in self.files)
