"""Error kinds surfaced by the analysis pipeline.

Every failure that crosses a component boundary is expressed as a
:class:`GitScopeError` subclass whose ``code`` is persisted on failed jobs and
shown to operators.
"""

import traceback
from pathlib import Path
from typing import Optional


class GitScopeError(Exception):
    """Base exception for gitscope errors."""

    code = "internal"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class InvalidInputError(GitScopeError):
    """Raised when caller-supplied values fail validation."""

    code = "invalid_input"


class NotFoundError(GitScopeError):
    """Raised when a referenced entity or upstream resource does not exist."""

    code = "not_found"


class ForbiddenError(GitScopeError):
    """Raised on authentication or authorization failures."""

    code = "forbidden"


class ConflictError(GitScopeError):
    """Raised when an operation would violate a uniqueness or graph constraint."""

    code = "conflict"


class NotFailedError(ConflictError):
    """Raised when retrying a job that is not in the failed state."""

    code = "not_failed"


class NoIdentitiesError(GitScopeError):
    """Raised when statistics are requested for a project without associations."""

    code = "no_identities"


class RateLimitedError(GitScopeError):
    """Raised when the platform API rate limit is exhausted."""

    code = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientIOError(GitScopeError):
    """Raised for network or server failures that may succeed on retry."""

    code = "transient_io"


class PermanentIOError(GitScopeError):
    """Raised for I/O failures that will not succeed on retry."""

    code = "permanent_io"


class InternalError(GitScopeError):
    """Raised for unexpected internal failures."""

    code = "internal"


class JobCancelledError(GitScopeError):
    """Raised inside a work unit once its cancellation event is set."""

    code = "cancelled"


TRANSIENT_CODES = frozenset({RateLimitedError.code, TransientIOError.code})


def is_transient(exc: BaseException) -> bool:
    """Return True when ``exc`` is worth retrying."""
    return isinstance(exc, GitScopeError) and exc.code in TRANSIENT_CODES


def error_code(exc: BaseException) -> str:
    """Return the error kind of ``exc``, ``internal`` for foreign exceptions."""
    if isinstance(exc, GitScopeError):
        return exc.code
    return InternalError.code


def format_failure(exc: BaseException) -> str:
    """Render an exception as the message persisted on a failed job.

    The format is ``[<code>] <message> (<file>:<line>)`` where the trailing tag
    points at the innermost frame of the traceback.

    Args:
        exc: Exception raised by a work unit

    Returns:
        Structured, single-line failure message
    """
    message = str(exc) or exc.__class__.__name__
    if not isinstance(exc, GitScopeError):
        message = f"{exc.__class__.__name__}: {message}"

    tag = ""
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    if frames:
        last = frames[-1]
        tag = f" ({Path(last.filename).name}:{last.lineno})"

    return f"[{error_code(exc)}] {message}{tag}"
