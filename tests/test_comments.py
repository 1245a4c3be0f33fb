"""Tests for fetching a PR's comments by branch and triaging them."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from prcomments.errors import InputValidationError, PullRequestNotFoundError
from prcomments.github_api import GitHubNotFoundError
from prcomments.tools.comments import (
    STEPS_FORWARD,
    fetch_pull_request_comments,
    find_pull_request_by_branch,
    get_pull_request_comments,
)

# ---------------------------------------------------------------------------
# Fixture data
# ---------------------------------------------------------------------------

SAMPLE_PULLS = [
    {"number": 7, "head": {"ref": "feature/other"}, "user": {"login": "mallory"}, "title": "Other"},
    {
        "number": 42,
        "head": {"ref": "feature/login"},
        "user": {"login": "alice"},
        "title": "Add login",
        "html_url": "https://github.com/acme/app/pull/42",
    },
]


def _review_comment(
    comment_id: int,
    login: str,
    created_at: str,
    path: str = "src/auth.py",
    line: int | None = 12,
    position: int | None = 4,
    original_position: int | None = 4,
    review_id: int | None = None,
) -> dict:
    return {
        "id": comment_id,
        "user": {"login": login},
        "body": f"comment {comment_id}",
        "created_at": created_at,
        "path": path,
        "position": position,
        "original_position": original_position,
        "line": line,
        "original_line": line,
        "start_line": None,
        "original_start_line": None,
        "pull_request_review_id": review_id,
        "pull_request_url": "https://api.github.com/repos/acme/app/pulls/42",
    }


SAMPLE_REVIEW_COMMENTS = [
    _review_comment(101, "bob", "2026-02-06T10:00:00Z", review_id=900),
    _review_comment(102, "alice", "2026-02-06T11:00:00Z", review_id=901),
    _review_comment(103, "bob", "2026-02-06T10:30:00Z", path="src/db.py", line=3, review_id=900),
    _review_comment(104, "carol", "2026-02-06T09:00:00Z", path="src/db.py", line=8, position=None, original_position=2),
    _review_comment(105, "dave", "2026-02-06T09:30:00Z", path="README.md", line=1, review_id=902),
]

SAMPLE_ISSUE_COMMENTS = [
    {"id": 201, "user": {"login": "bob"}, "body": "Overall looks good", "created_at": "2026-02-06T12:00:00Z"},
]

SAMPLE_REVIEWS = [
    {"id": 900, "user": {"login": "bob"}, "state": "COMMENTED", "submitted_at": "2026-02-06T10:00:00Z"},
    {"id": 901, "user": {"login": "alice"}, "state": "COMMENTED", "submitted_at": "2026-02-06T11:00:00Z"},
    {"id": 902, "user": {"login": "dave"}, "state": "APPROVED", "submitted_at": "2026-02-06T09:30:00Z"},
]


@pytest.fixture
def client() -> AsyncMock:
    mock = AsyncMock()
    mock.list_open_pulls.return_value = SAMPLE_PULLS
    mock.list_review_comments.return_value = SAMPLE_REVIEW_COMMENTS
    mock.list_issue_comments.return_value = SAMPLE_ISSUE_COMMENTS
    mock.list_reviews.return_value = SAMPLE_REVIEWS
    return mock


# ---------------------------------------------------------------------------
# find_pull_request_by_branch
# ---------------------------------------------------------------------------


class TestFindPullRequestByBranch:
    def test_exact_match(self):
        pr = find_pull_request_by_branch(SAMPLE_PULLS, "feature/login")
        assert pr is not None
        assert pr.number == 42
        assert pr.author_login == "alice"
        assert pr.branch_name == "feature/login"

    def test_no_prefix_match(self):
        assert find_pull_request_by_branch(SAMPLE_PULLS, "feature") is None

    def test_no_pulls(self):
        assert find_pull_request_by_branch([], "main") is None

    def test_missing_head_skipped(self):
        assert find_pull_request_by_branch([{"number": 1}], "main") is None


# ---------------------------------------------------------------------------
# fetch_pull_request_comments
# ---------------------------------------------------------------------------


class TestFetchPullRequestComments:
    async def test_combines_review_then_issue_comments(self, client: AsyncMock):
        fetched = await fetch_pull_request_comments(client, "acme", "app", "feature/login")
        assert [c.id for c in fetched.comments] == [101, 102, 103, 104, 105, 201]
        assert fetched.pr_author == "alice"
        assert fetched.pull_request.number == 42

    async def test_requests_target_matched_pr(self, client: AsyncMock):
        await fetch_pull_request_comments(client, "acme", "app", "feature/login")
        client.list_open_pulls.assert_awaited_once_with("acme", "app")
        client.list_review_comments.assert_awaited_once_with("acme", "app", 42)
        client.list_issue_comments.assert_awaited_once_with("acme", "app", 42)
        client.list_reviews.assert_awaited_once_with("acme", "app", 42)

    async def test_handled_status(self, client: AsyncMock):
        fetched = await fetch_pull_request_comments(client, "acme", "app", "feature/login")
        assert fetched.handled_status == {101: False, 102: False, 103: False, 104: True, 105: True, 201: False}

    async def test_no_pr_raises_not_found(self, client: AsyncMock):
        with pytest.raises(PullRequestNotFoundError, match="No open pull request found for branch: nope") as exc_info:
            await fetch_pull_request_comments(client, "acme", "app", "nope")
        assert exc_info.value.repo == "acme/app"
        assert exc_info.value.branch == "nope"
        client.list_review_comments.assert_not_awaited()

    async def test_fetch_error_propagates(self, client: AsyncMock):
        client.list_reviews.side_effect = GitHubNotFoundError("GitHub resource not found: Not Found")
        with pytest.raises(GitHubNotFoundError):
            await fetch_pull_request_comments(client, "acme", "app", "feature/login")

    async def test_failure_cancels_pending_requests(self, client: AsyncMock):
        cancelled = asyncio.Event()

        async def slow_issue_comments(owner: str, repo: str, pull_number: int) -> list:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return []

        client.list_issue_comments.side_effect = slow_issue_comments
        client.list_reviews.side_effect = GitHubNotFoundError("GitHub resource not found: Not Found")

        with pytest.raises(GitHubNotFoundError, match="GitHub resource not found"):
            await fetch_pull_request_comments(client, "acme", "app", "feature/login")
        assert cancelled.is_set()

    async def test_reports_progress_to_context(self, client: AsyncMock):
        ctx = AsyncMock()
        await fetch_pull_request_comments(client, "acme", "app", "feature/login", ctx=ctx)
        ctx.info.assert_awaited_once()
        assert "PR #42" in ctx.info.call_args.args[0]


# ---------------------------------------------------------------------------
# get_pull_request_comments
# ---------------------------------------------------------------------------


class TestGetPullRequestComments:
    async def test_filters_for_detected_author(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "acme/app", "feature/login")
        # src/auth.py:12 has bob then alice, and alice (the PR author) replied last
        assert [c.comment_id for c in result.comments] == [103]
        assert result.pr_author == "alice"
        assert result.pr_number == 42
        assert result.repository == "acme/app"
        assert result.branch == "feature/login"
        assert result.error is None

    async def test_explicit_author_overrides_detected(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "acme/app", "feature/login", explicit_pr_author="bob")
        assert result.pr_author == "bob"
        # bob is now the author, and in src/auth.py:12 the reviewer (alice) replied last
        assert [c.comment_id for c in result.comments] == [102, 101, 103]

    async def test_blank_explicit_author_uses_detected(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "acme/app", "feature/login", explicit_pr_author="  ")
        assert result.pr_author == "alice"

    async def test_default_owner_for_bare_repo(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "app", "feature/login", default_owner="acme")
        client.list_open_pulls.assert_awaited_once_with("acme", "app")
        assert result.repository == "acme/app"

    async def test_steps_forward_included(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "acme/app", "feature/login")
        assert result.steps_forward == STEPS_FORWARD
        assert len(STEPS_FORWARD) == 24

    async def test_comments_carry_sequence_numbers(self, client: AsyncMock):
        result = await get_pull_request_comments(client, "acme/app", "feature/login")
        [comment] = result.comments
        assert comment.sequence_number == 3
        assert comment.file_path == "src/db.py"
        assert (comment.start_line, comment.end_line) == (3, 3)

    async def test_invalid_repo_rejected_before_fetch(self, client: AsyncMock):
        with pytest.raises(InputValidationError, match="Invalid repository name format"):
            await get_pull_request_comments(client, "acme/app; rm", "feature/login")
        client.list_open_pulls.assert_not_awaited()

    async def test_missing_owner_rejected(self, client: AsyncMock):
        with pytest.raises(InputValidationError, match="No owner"):
            await get_pull_request_comments(client, "app", "feature/login")

    async def test_invalid_branch_rejected(self, client: AsyncMock):
        with pytest.raises(InputValidationError, match="Invalid branch name format"):
            await get_pull_request_comments(client, "acme/app", "bad branch")
