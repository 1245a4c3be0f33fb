"""Fetch a PR's comments by branch and return the ones that still need attention."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from prcomments.errors import PullRequestNotFoundError
from prcomments.models import FetchedComments, PRCommentsResult, PullRequest, RawComment, Review
from prcomments.triage import classify_handled, simplify_and_filter
from prcomments.validation import split_repo, validate_branch

if TYPE_CHECKING:
    from fastmcp.server.context import Context

    from prcomments.github_api import GitHubClient

logger = logging.getLogger(__name__)

STEPS_FORWARD: list[str] = [
    "1. Display all unhandled PR comments in a clear, organized list",
    "2. Always ask the user if they want to handle all comments or specific ones",
    "3. For each comment, analyze its type and context before proceeding",
    "4. Identify if comment is: a) Actionable fix b) Question c) Feedback d) Multiple related comments",
    "5. For unclear or complex comments, request additional context from user",
    "6. For multiple comments on same line, analyze them together for combined context",
    "7. For each comment, outline a short plan (required file changes, new files, tests to add or modify, "
    "dependencies to update, impact analysis)",
    "8. When moving code between files: a) Identify all usages of the code being moved b) Update every import "
    "that uses it c) Remove the original code only after all imports are updated d) Never leave unused imports",
    "9. For code moves: a) Search for all usages b) Verify each usage is updated c) Test that behavior is preserved",
    "10. After moving code: a) Run the code b) Check for errors c) Verify imports d) Remove unused imports",
    "11. For actionable fixes: implement changes without separate confirmations",
    "12. For questions: request user input before proceeding",
    "13. For feedback: acknowledge and determine if action needed",
    "14. For unclear comments: request clarification before proceeding",
    "15. Design each solution end-to-end, considering: a) Code best practices b) Existing logic reuse "
    "c) Unused variable removal d) Import fixes e) Cross-file impact f) Error verification",
    "16. Ensure solution maintains existing functionality while implementing fixes",
    "17. Verify all changes for potential side effects, edge cases, and errors",
    "18. After handling comments, ask the user if they want you to commit and push the changes",
    "19. If committing: suggest a commit message and run the git commands",
    '20. Git commands sequence: "git add ." -> "git commit -m <message>" -> "git push"',
    "21. Handle any git push errors by analyzing and reporting them to the user",
    "22. After git operations, ask the user if they want to mark comments as handled",
    "23. For marking comments: request confirmation and reaction emoji preference",
    "24. Never run git operations or mark comments without explicit user confirmation",
]


def find_pull_request_by_branch(pulls: list[dict[str, Any]], branch: str) -> PullRequest | None:
    """Return the PR whose head ref is exactly *branch*, if any."""
    for pull in pulls:
        if (pull.get("head") or {}).get("ref") == branch:
            return PullRequest.from_api(pull)
    return None


async def fetch_pull_request_comments(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    ctx: Context | None = None,
) -> FetchedComments:
    """Resolve the open PR for *branch* and fetch its comments and reviews.

    Review comments, issue comments and reviews are requested concurrently.

    Raises:
        PullRequestNotFoundError: If no open PR has *branch* as its head.
    """
    pulls = await client.list_open_pulls(owner, repo)
    pull_request = find_pull_request_by_branch(pulls, branch)
    if pull_request is None:
        raise PullRequestNotFoundError(f"{owner}/{repo}", branch)

    if ctx:
        await ctx.info(f"Fetching comments for PR #{pull_request.number} ({branch})")

    # the first failure cancels the other requests and is raised unwrapped
    try:
        async with asyncio.TaskGroup() as tg:
            review_task = tg.create_task(client.list_review_comments(owner, repo, pull_request.number))
            issue_task = tg.create_task(client.list_issue_comments(owner, repo, pull_request.number))
            reviews_task = tg.create_task(client.list_reviews(owner, repo, pull_request.number))
    except ExceptionGroup as group:
        raise group.exceptions[0] from None

    review_payloads, issue_payloads, review_event_payloads = review_task.result(), issue_task.result(), reviews_task.result()

    comments = [RawComment.from_api(p) for p in review_payloads] + [RawComment.from_api(p) for p in issue_payloads]
    reviews = [Review.from_api(p) for p in review_event_payloads]
    logger.debug(
        "PR #%d: %d review comment(s), %d issue comment(s), %d review(s)",
        pull_request.number,
        len(review_payloads),
        len(issue_payloads),
        len(reviews),
    )

    return FetchedComments(
        pull_request=pull_request,
        comments=comments,
        handled_status=classify_handled(comments, reviews),
        pr_author=pull_request.author_login,
    )


async def get_pull_request_comments(
    client: GitHubClient,
    repo: str,
    branch: str,
    explicit_pr_author: str | None = None,
    default_owner: str | None = None,
    ctx: Context | None = None,
) -> PRCommentsResult:
    """Return the unhandled comments on the open PR for *branch*.

    Args:
        client: GitHub client to fetch with.
        repo: ``repo`` or ``owner/repo``.
        branch: Head branch of the PR.
        explicit_pr_author: Login to run the thread filter against instead of the PR's author.
        default_owner: Owner used when *repo* has none.
        ctx: FastMCP context for progress messages. Injected by server tools.
    """
    owner, repo_name = split_repo(repo, default_owner)
    branch = validate_branch(branch)

    fetched = await fetch_pull_request_comments(client, owner, repo_name, branch, ctx=ctx)
    pr_author = (explicit_pr_author or "").strip() or fetched.pr_author
    comments = simplify_and_filter(fetched.comments, fetched.handled_status, pr_author)

    if ctx:
        await ctx.info(f"Found {len(comments)} comment(s) needing attention on PR #{fetched.pull_request.number}")

    return PRCommentsResult(
        repository=f"{owner}/{repo_name}",
        branch=branch,
        pr_number=fetched.pull_request.number,
        pr_author=pr_author,
        comments=comments,
        steps_forward=list(STEPS_FORWARD),
    )
