"""Git facade: shared working copies and commit walking via GitPython."""

import logging
import re
import shutil
import threading
from collections.abc import Iterator
from datetime import timezone
from pathlib import Path
from typing import Optional

import git
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..errors import (
    ForbiddenError,
    JobCancelledError,
    NotFoundError,
    PermanentIOError,
    TransientIOError,
)
from ..records import CommitRecord, FileChange, FileStatus
from .repo_cloner import (
    _AUTH_ERROR_TOKENS,
    _NOT_FOUND_TOKENS,
    authenticated_url,
    build_clone_env,
    clone_repository,
    redact_url,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    "A": FileStatus.ADDED,
    "C": FileStatus.ADDED,
    "D": FileStatus.REMOVED,
    "M": FileStatus.MODIFIED,
    "T": FileStatus.MODIFIED,
    "R": FileStatus.RENAMED,
}
_BRACE_RENAME = re.compile(r"^(?P<prefix>.*)\{(?P<old>.*) => (?P<new>.*)\}(?P<suffix>.*)$")
_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]")


def _unquote(path: str) -> str:
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return path[1:-1].encode("latin-1", "backslashreplace").decode("unicode_escape")
    return path


def resolve_numstat_path(raw: str) -> str:
    """Return the post-change path of a numstat entry.

    Renames appear as ``old => new`` or ``dir/{old => new}/file``.
    """
    match = _BRACE_RENAME.match(raw)
    if match:
        path = f"{match.group('prefix')}{match.group('new')}{match.group('suffix')}"
        return _unquote(path.replace("//", "/"))
    if " => " in raw:
        return _unquote(raw.split(" => ", 1)[1])
    return _unquote(raw)


def parse_name_status(output: str) -> dict[str, FileStatus]:
    """Parse ``--name-status`` output into ``{new_path: status}``."""
    statuses: dict[str, FileStatus] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        code = fields[0][:1]
        path = _unquote(fields[-1])
        statuses[path] = _STATUS_CODES.get(code, FileStatus.MODIFIED)
    return statuses


def parse_numstat(output: str, statuses: Optional[dict[str, FileStatus]] = None) -> list[FileChange]:
    """Parse ``--numstat`` output; binary entries (``-``) count as 0/0."""
    statuses = statuses or {}
    changes: list[FileChange] = []
    for line in output.splitlines():
        fields = line.split("\t", 2)
        if len(fields) != 3:
            continue
        added, deleted, raw_path = fields
        path = resolve_numstat_path(raw_path)
        additions = int(added) if added.isdigit() else 0
        deletions = int(deleted) if deleted.isdigit() else 0
        status = statuses.get(path)
        if status is None:
            status = FileStatus.RENAMED if " => " in raw_path else FileStatus.MODIFIED
        changes.append(FileChange(path=path, additions=additions, deletions=deletions, status=status))
    return changes


class GitFacade:
    """Clone, update and read shared working copies under a workspace root."""

    def __init__(self, workspace: Path, clone_timeout: int = 300, clone_retries: int = 2):
        self.workspace = Path(workspace)
        self.clone_timeout = clone_timeout
        self.clone_retries = clone_retries

    def working_copy_path(self, full_name: str) -> Path:
        """Deterministic location ``<workspace>/<owner>/<repo>`` of a repository."""
        owner, _, name = full_name.partition("/")
        if not owner or not name:
            raise PermanentIOError(f"invalid repository name '{full_name}'")
        return self.workspace / _SAFE_SEGMENT.sub("_", owner) / _SAFE_SEGMENT.sub("_", name)

    def clone_or_open(
        self,
        clone_url: str,
        path: Path,
        token: Optional[str] = None,
        branch: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """Ensure a working copy exists at ``path``; clone it when missing.

        Returns:
            HEAD sha of the working copy, None for an empty repository
        """
        path = Path(path)
        if (path / ".git").exists():
            try:
                repo = git.Repo(path)
                logger.debug(f"Reusing working copy at {path}")
                return self._head_sha(repo)
            except (InvalidGitRepositoryError, NoSuchPathError):
                logger.warning(f"Discarding corrupt working copy at {path}")
                shutil.rmtree(path, ignore_errors=True)

        result = clone_repository(
            path,
            clone_url,
            token=token,
            branch=branch,
            timeout_seconds=self.clone_timeout,
            max_retries=self.clone_retries,
            cancel_event=cancel_event,
        )
        if not result.success:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(result.error or "clone cancelled")
            if result.auth_failure:
                raise ForbiddenError(result.error or "authentication failed")
            if result.not_found:
                raise NotFoundError(result.error or "repository not found")
            raise TransientIOError(result.error or "clone failed")
        return self._head_sha(git.Repo(path))

    def fetch(
        self,
        path: Path,
        token: Optional[str] = None,
        branch: Optional[str] = None,
        clone_url: Optional[str] = None,
    ) -> Optional[str]:
        """Fetch the tracked branch and fast-forward the working copy.

        Histories that cannot fast-forward (force pushes) are reset to the
        remote branch.

        Returns:
            New HEAD sha, None for an empty repository
        """
        repo = self._open(path)
        remote_url = clone_url or repo.remotes.origin.url
        url = authenticated_url(remote_url, token)
        target = branch or self._current_branch(repo)
        if target is None:
            raise PermanentIOError(f"cannot determine the branch to fetch in {path}")

        env = build_clone_env()
        try:
            with repo.git.custom_environment(**env):
                repo.git.fetch(
                    "--quiet", url, f"+refs/heads/{target}:refs/remotes/origin/{target}"
                )
        except GitCommandError as e:
            raise self._classify_git_error(e, token, remote_url) from None

        remote_ref = f"origin/{target}"
        if target in [head.name for head in repo.heads]:
            if self._current_branch(repo) != target:
                repo.git.checkout(target)
            try:
                repo.git.merge("--ff-only", remote_ref)
            except GitCommandError:
                logger.warning(f"{path}: {target} diverged from {remote_ref}, resetting")
                repo.git.reset("--hard", remote_ref)
        else:
            repo.git.checkout("-B", target, remote_ref)
        return self._head_sha(repo)

    def head_sha(self, path: Path) -> Optional[str]:
        return self._head_sha(self._open(path))

    def walk_commits(
        self, path: Path, since_sha: Optional[str] = None, branch: Optional[str] = None
    ) -> Iterator[CommitRecord]:
        """Yield commits oldest first, starting after ``since_sha`` when it is in history.

        Args:
            path: Working copy
            since_sha: Last ingested sha; unknown or unreachable shas trigger a full walk
            branch: Branch to walk, HEAD when absent locally

        Yields:
            One :class:`CommitRecord` per commit with its per-file changes

        Parents are always yielded before their children, whatever the commit
        dates say, so a checkpointed sha never skips an unwalked ancestor.
        """
        repo = self._open(path)
        if not repo.head.is_valid():
            return

        rev = branch if branch and branch in [h.name for h in repo.heads] else "HEAD"
        rev_range = rev
        if since_sha:
            try:
                repo.commit(since_sha)
                if repo.is_ancestor(since_sha, rev):
                    rev_range = f"{since_sha}..{rev}"
                else:
                    logger.info(f"{path}: {since_sha[:8]} is not an ancestor of {rev}, full walk")
            except (ValueError, BadName, GitCommandError):
                logger.info(f"{path}: {since_sha[:8]} missing from history, full walk")

        for commit in repo.iter_commits(rev_range, reverse=True, topo_order=True):
            yield self._to_record(repo, commit)

    def _to_record(self, repo: git.Repo, commit: git.Commit) -> CommitRecord:
        sha = commit.hexsha
        if commit.parents:
            parent = commit.parents[0].hexsha
            numstat = repo.git.diff_tree("-r", "-M", "--numstat", parent, sha)
            name_status = repo.git.diff_tree("-r", "-M", "--name-status", parent, sha)
        else:
            numstat = repo.git.diff_tree("-r", "-M", "--root", "--no-commit-id", "--numstat", sha)
            name_status = repo.git.diff_tree(
                "-r", "-M", "--root", "--no-commit-id", "--name-status", sha
            )

        message = commit.message
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")

        return CommitRecord(
            sha=sha,
            author_email=(commit.author.email or "").strip(),
            author_name=(commit.author.name or "").strip(),
            commit_date=commit.authored_datetime.astimezone(timezone.utc),
            message=message.strip(),
            is_merge=len(commit.parents) > 1,
            files=tuple(parse_numstat(numstat, parse_name_status(name_status))),
        )

    @staticmethod
    def _open(path: Path) -> git.Repo:
        try:
            return git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotFoundError(f"no working copy at {path}") from e

    @staticmethod
    def _head_sha(repo: git.Repo) -> Optional[str]:
        if not repo.head.is_valid():
            return None
        return repo.head.commit.hexsha

    @staticmethod
    def _current_branch(repo: git.Repo) -> Optional[str]:
        if repo.head.is_detached:
            return None
        try:
            return repo.active_branch.name
        except TypeError:
            return None

    @staticmethod
    def _classify_git_error(error: GitCommandError, token: Optional[str], url: str):
        stderr = str(error.stderr or "")
        if token:
            stderr = stderr.replace(token, "***")
        lowered = stderr.lower()
        display = redact_url(url)
        if any(tok in lowered for tok in _AUTH_ERROR_TOKENS):
            return ForbiddenError(f"Authentication failed fetching {display}: {stderr.strip()}")
        if any(tok in lowered for tok in _NOT_FOUND_TOKENS):
            return NotFoundError(f"Upstream {display} not found: {stderr.strip()}")
        return TransientIOError(f"Fetch of {display} failed: {stderr.strip()}")
