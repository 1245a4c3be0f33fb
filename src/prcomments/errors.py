"""Error types, user-facing messages and error classification."""

from __future__ import annotations

from pydantic import ValidationError

from prcomments.github_api import GitHubError, GitHubNotFoundError, GitHubRateLimitError
from prcomments.models import ErrorKind, ToolError


class PRCommentsError(Exception):
    """Base class for errors raised by prcomments itself."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class InputValidationError(PRCommentsError):
    """Raised when a tool argument is malformed."""

    kind = ErrorKind.BAD_INPUT


class PullRequestNotFoundError(PRCommentsError):
    """Raised when no open pull request matches a branch."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, repo: str, branch: str) -> None:
        super().__init__(no_pr_for_branch(branch=branch))
        self.repo = repo
        self.branch = branch


# -- Messages -------------------------------------------------------------------


def missing_repo() -> str:
    return "Repository name is required"


def missing_branch() -> str:
    return "Branch name is required"


def invalid_repo_format(*, repo: str) -> str:
    return f"Invalid repository name format: {repo!r}. Use 'repo' or 'owner/repo'"


def invalid_repo_structure(*, repo: str) -> str:
    return f"Invalid repository structure: {repo!r}. Expected at most one '/' separating owner and repo"


def missing_owner(*, repo: str) -> str:
    return f"No owner for repository {repo!r}. Pass 'owner/repo' or start the server with --gh-owner"


def invalid_branch_format(*, branch: str) -> str:
    return f"Invalid branch name format: {branch!r}"


def missing_fixed_comments() -> str:
    return "Fixed comments must be a non-empty array"


def invalid_comment_id(*, comment_id: object) -> str:
    return f"Invalid comment ID: {comment_id}"


def no_pr_for_branch(*, branch: str) -> str:
    return f"No open pull request found for branch: {branch}"


def pull_number_not_found(*, comment_id: int) -> str:
    return f"Failed to extract pull request number for comment #{comment_id}"


def mark_comment_success(*, comment_id: int) -> str:
    return f"Successfully marked comment #{comment_id} as handled"


def mark_comment_failed(*, comment_id: int, reason: str) -> str:
    return f"Failed to mark comment #{comment_id} as handled: {reason}"


# -- Classification -------------------------------------------------------------


def error_kind(exc: BaseException) -> ErrorKind:
    """Classify an exception as bad input, not found, upstream or internal."""
    if isinstance(exc, PRCommentsError):
        return exc.kind
    if isinstance(exc, ValidationError):
        return ErrorKind.BAD_INPUT
    if isinstance(exc, GitHubNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, GitHubError):
        return ErrorKind.UPSTREAM
    return ErrorKind.INTERNAL


def classify_error(
    exc: BaseException,
    *,
    tool_name: str,
    repo: str | None = None,
    branch: str | None = None,
) -> ToolError:
    """Build a structured error keeping the original message and request context."""
    kind = error_kind(exc)
    msg = str(exc) or type(exc).__name__
    context = ", ".join(f"{name}={value}" for name, value in (("repo", repo), ("branch", branch)) if value)
    prefix = f"{tool_name} failed ({context})" if context else f"{tool_name} failed"

    if isinstance(exc, GitHubRateLimitError):
        msg = f"{msg}. Wait 60 seconds and retry"
    elif kind is ErrorKind.NOT_FOUND and not isinstance(exc, PullRequestNotFoundError):
        msg = f"{msg}. Verify the repository exists and the token can read it"
    elif isinstance(exc, PullRequestNotFoundError):
        msg = f"{msg}. Check the branch name with 'git branch --show-current' and that its PR is open"
    elif kind is ErrorKind.INTERNAL:
        msg = f"unexpected {type(exc).__name__}: {msg}"

    return ToolError(kind=kind, message=f"{prefix}: {msg}")
