"""Pydantic models for prcomments."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field

_UNKNOWN_AUTHOR = "unknown"

Reaction = Literal["+1", "-1", "laugh", "confused", "heart", "hooray", "rocket", "eyes"]


class ReviewState(StrEnum):
    """States a GitHub pull request review can be in."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"


class ErrorKind(StrEnum):
    """Coarse classification of a failed tool call."""

    BAD_INPUT = "bad_input"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


def _login(payload: dict[str, Any]) -> str:
    # Deleted accounts come back with ``user: null``
    user = payload.get("user") or {}
    return user.get("login") or _UNKNOWN_AUTHOR


class RawComment(BaseModel):
    """A single PR comment as returned by the GitHub REST API.

    Review comments carry a file path and line fields; issue comments on the
    PR conversation carry neither.
    """

    id: int = Field(description="GitHub comment ID")
    author: str = Field(default=_UNKNOWN_AUTHOR, description="GitHub username of the comment author")
    body: str = Field(default="", description="Comment body text")
    created_at: datetime = Field(description="When the comment was posted")
    file_path: str | None = Field(default=None, description="File path for review comments, None for issue comments")
    position: int | None = Field(default=None, description="Position in the current diff, None when superseded")
    original_position: int | None = Field(default=None, description="Position in the diff the comment was written against")
    line: int | None = Field(default=None, description="Last line of the commented range in the current diff")
    original_line: int | None = Field(default=None, description="Last line of the range when the comment was written")
    start_line: int | None = Field(default=None, description="First line of a multi-line range in the current diff")
    original_start_line: int | None = Field(default=None, description="First line of a multi-line range when written")
    review_id: int | None = Field(default=None, description="ID of the review this comment belongs to")
    pull_request_url: str | None = Field(default=None, description="API URL of the pull request")
    html_url: str | None = Field(default=None, description="Browser URL of the comment")

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> RawComment:
        """Build a comment from a review-comment or issue-comment payload."""
        return cls(
            id=payload["id"],
            author=_login(payload),
            body=payload.get("body") or "",
            created_at=payload["created_at"],
            file_path=payload.get("path") or None,
            position=payload.get("position"),
            original_position=payload.get("original_position"),
            line=payload.get("line"),
            original_line=payload.get("original_line"),
            start_line=payload.get("start_line"),
            original_start_line=payload.get("original_start_line"),
            review_id=payload.get("pull_request_review_id"),
            pull_request_url=payload.get("pull_request_url"),
            html_url=payload.get("html_url"),
        )


class Review(BaseModel):
    """A review event on a pull request."""

    id: int = Field(description="GitHub review ID")
    author: str = Field(default=_UNKNOWN_AUTHOR, description="GitHub username of the reviewer")
    state: str = Field(description="Review state, e.g. APPROVED, CHANGES_REQUESTED, COMMENTED")
    submitted_at: datetime | None = Field(default=None, description="When the review was submitted")

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Review:
        return cls(
            id=payload["id"],
            author=_login(payload),
            state=payload.get("state") or "",
            submitted_at=payload.get("submitted_at"),
        )


class PullRequest(BaseModel):
    """The subset of a pull request needed to triage its comments."""

    number: int = Field(description="PR number")
    branch_name: str = Field(description="Head ref of the PR")
    author_login: str = Field(default=_UNKNOWN_AUTHOR, description="GitHub username of the PR author")
    title: str = Field(default="", description="PR title")
    url: str = Field(default="", description="PR URL")

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> PullRequest:
        return cls(
            number=payload["number"],
            branch_name=(payload.get("head") or {}).get("ref", ""),
            author_login=_login(payload),
            title=payload.get("title") or "",
            url=payload.get("html_url") or "",
        )


class SimplifiedComment(BaseModel):
    """A normalized file comment, the unit the thread filter works on."""

    sequence_number: int = Field(description="1-based position among comments attached to a file")
    comment_id: int = Field(description="GitHub comment ID, pass this to mark_comments_as_handled")
    file_path: str = Field(description="File the comment is attached to")
    author_login: str = Field(description="GitHub username of the comment author")
    message: str = Field(description="Comment body text")
    is_handled: bool = Field(default=False, description="True if the comment is outdated or its review concluded")
    start_line: int | None = Field(default=None, description="First line of the commented range")
    end_line: int | None = Field(default=None, description="Last line of the commented range")
    created_at: datetime = Field(description="When the comment was posted")


class FetchedComments(BaseModel):
    """Everything fetched for one PR, ready for triage."""

    pull_request: PullRequest = Field(description="The PR matched by branch")
    comments: list[RawComment] = Field(default_factory=list, description="Review comments followed by issue comments")
    handled_status: dict[int, bool] = Field(default_factory=dict, description="Comment ID to handled flag")
    pr_author: str = Field(description="Login of the PR author")


class ToolError(BaseModel):
    """Structured error returned in place of a result."""

    kind: ErrorKind = Field(description="bad_input, not_found, upstream or internal")
    message: str = Field(description="Human-readable error message")


class PRCommentsResult(BaseModel):
    """Unhandled review comments for the open PR on a branch."""

    repository: str = Field(default="", description="Repository in owner/repo form")
    branch: str = Field(default="", description="Branch the PR was looked up by")
    pr_number: int | None = Field(default=None, description="Number of the matched PR")
    pr_author: str | None = Field(default=None, description="Author the thread filter ran against")
    comments: list[SimplifiedComment] = Field(default_factory=list, description="Comments that still need attention")
    steps_forward: list[str] = Field(default_factory=list, description="How to work through the returned comments")
    error: ToolError | None = Field(default=None, description="Set if the request failed")


class FixedComment(BaseModel):
    """A comment the caller has addressed and wants marked as handled."""

    fixed_comment_id: int = Field(
        gt=0,
        validation_alias=AliasChoices("fixed_comment_id", "fixedCommentId"),
        description="The ID of the GitHub comment that has been fixed",
    )
    fix_summary: str | None = Field(
        default=None,
        validation_alias=AliasChoices("fix_summary", "fixSummary"),
        description="Optional: A concise summary (3-15 words) of how the comment was addressed",
    )
    reaction: Reaction | None = Field(
        default=None,
        description="Optional: The reaction to add (e.g. rocket, heart, hooray). Defaults to the configured reaction",
    )


class MarkCommentResult(BaseModel):
    """Outcome of marking a single comment as handled."""

    comment_id: int = Field(description="GitHub comment ID")
    success: bool = Field(description="Whether the reply and reaction were posted")
    message: str = Field(description="Human-readable outcome")
    error: str | None = Field(default=None, description="Underlying error if the item failed")


class MarkCommentsResult(BaseModel):
    """Per-comment outcomes plus a summary."""

    results: list[MarkCommentResult] = Field(default_factory=list, description="One entry per requested comment, in order")
    total: int = Field(default=0, description="Number of comments requested")
    successful: int = Field(default=0, description="Number marked successfully")
    failed: int = Field(default=0, description="Number that failed")
    error: ToolError | None = Field(default=None, description="Set if the whole request was rejected")

    @classmethod
    def from_results(cls, results: list[MarkCommentResult]) -> MarkCommentsResult:
        successful = sum(1 for r in results if r.success)
        return cls(results=results, total=len(results), successful=successful, failed=len(results) - successful)


class ConfigInfo(BaseModel):
    """Active prcomments configuration with metadata."""

    config: dict = Field(description="Full configuration as a dictionary")
    source: str = Field(default="defaults", description="Path of the loaded config file, or 'defaults'")
    explanation: str = Field(default="", description="Human-readable summary of the active settings")
