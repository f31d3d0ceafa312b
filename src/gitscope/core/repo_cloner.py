"""Retry-capable, timeout-aware ``git clone`` for shared working copies."""

import logging
import os
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)


# Error strings that indicate an authentication problem and must NOT be retried.
_AUTH_ERROR_TOKENS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "invalid username or password",
    "401",
    "403",
)
_NOT_FOUND_TOKENS = ("repository not found", "not found", "does not exist")


@dataclass
class CloneResult:
    """Outcome of a clone operation."""

    success: bool
    elapsed_seconds: float = 0.0
    error: Optional[str] = None
    auth_failure: bool = False
    not_found: bool = False


def build_clone_env() -> dict[str, str]:
    """Build a subprocess environment that disables interactive git prompts."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_ASKPASS"] = ""
    env["GCM_INTERACTIVE"] = "never"
    return env


def authenticated_url(clone_url: str, token: Optional[str]) -> str:
    """Embed ``token`` into an https clone URL; other URLs are returned unchanged."""
    if not token:
        return clone_url
    parts = urlsplit(clone_url)
    if parts.scheme != "https":
        return clone_url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"x-access-token:{token}@{host}", parts.path, parts.query, ""))


def redact_url(url: str) -> str:
    """Strip credentials from a URL before it reaches a log line or error message."""
    parts = urlsplit(url)
    if not parts.username and not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


def _redact_text(text: str, token: Optional[str]) -> str:
    if token:
        text = text.replace(token, "***")
    return text


def clone_repository(
    repo_path: Path,
    clone_url: str,
    token: Optional[str] = None,
    branch: Optional[str] = None,
    timeout_seconds: int = 300,
    max_retries: int = 2,
    cancel_event: Optional[threading.Event] = None,
) -> CloneResult:
    """Clone a repository with retry and timeout handling.

    1. Clones the requested *branch* (if given) into *repo_path*.
    2. On timeout or a transient failure: removes the partial clone and
       retries up to *max_retries* times.
    3. On authentication or not-found failures: returns immediately.
    4. When the branch does not exist: retries once without ``-b``.
    5. After success the origin URL is reset so the token is not persisted.

    Args:
        repo_path: Destination path for the working copy
        clone_url: Upstream clone URL without credentials
        token: Optional access token for https remotes
        branch: Optional branch to check out
        timeout_seconds: Per-attempt timeout in seconds
        max_retries: Retry attempts after a transient failure
        cancel_event: Stops retrying once set

    Returns:
        A :class:`CloneResult` describing whether the clone succeeded.
    """
    url = authenticated_url(clone_url, token)
    env = build_clone_env()
    display = redact_url(clone_url)

    attempt = 0
    use_branch = branch
    while attempt <= max_retries:
        if cancel_event is not None and cancel_event.is_set():
            return CloneResult(success=False, error=f"Clone of {display} cancelled")
        if attempt > 0:
            logger.info(f"Retry {attempt}/{max_retries}: cloning {display}")
        else:
            logger.info(f"Cloning {display} into {repo_path}")

        if repo_path.exists():
            shutil.rmtree(repo_path, ignore_errors=True)
        repo_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = ["git", "clone", "--quiet", "--config", "credential.helper="]
        if use_branch:
            cmd.extend(["-b", use_branch])
        cmd.extend([url, str(repo_path)])

        start_time = time.time()
        try:
            result = subprocess.run(
                cmd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            attempt += 1
            logger.warning(f"Clone timeout ({timeout_seconds}s): {display}")
            shutil.rmtree(repo_path, ignore_errors=True)
            continue

        elapsed = time.time() - start_time
        if result.returncode == 0:
            if url != clone_url:
                subprocess.run(
                    ["git", "-C", str(repo_path), "remote", "set-url", "origin", clone_url],
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    check=False,
                )
            logger.info(f"Cloned {display} ({elapsed:.1f}s)")
            return CloneResult(success=True, elapsed_seconds=elapsed)

        stderr_out = _redact_text(result.stderr or "", token).strip()
        lowered = stderr_out.lower()
        shutil.rmtree(repo_path, ignore_errors=True)

        if use_branch and "remote branch" in lowered and "not found" in lowered:
            logger.info(f"Branch '{use_branch}' not found in {display}, using repository default")
            use_branch = None
            continue
        if any(tok in lowered for tok in _AUTH_ERROR_TOKENS):
            return CloneResult(
                success=False,
                error=f"Authentication failed for {display}: {stderr_out}",
                auth_failure=True,
            )
        if any(tok in lowered for tok in _NOT_FOUND_TOKENS):
            return CloneResult(
                success=False, error=f"Repository {display} not found: {stderr_out}", not_found=True
            )

        attempt += 1
        logger.warning(f"Clone of {display} failed (exit {result.returncode}): {stderr_out}")

    return CloneResult(success=False, error=f"Clone of {display} failed after {max_retries} retries")
