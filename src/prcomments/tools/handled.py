"""Mark review comments as handled: optional reply, then a reaction."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

from prcomments import errors
from prcomments.models import FixedComment, MarkCommentResult, MarkCommentsResult
from prcomments.validation import split_repo, validate_fixed_comments

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastmcp.server.context import Context

    from prcomments.github_api import GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_REACTION = "rocket"
DEFAULT_REPLY_SUFFIX = "(By AI)"

_PULL_NUMBER_RE = re.compile(r"/pulls/(\d+)$")


def format_handled_reply(fix_summary: str, suffix: str = DEFAULT_REPLY_SUFFIX) -> str:
    """Build the reply posted under a fixed comment."""
    reply = f"Done - {fix_summary.strip()}"
    return f"{reply} {suffix}" if suffix else reply


def extract_pull_number(comment_payload: dict[str, Any]) -> int | None:
    """Read the PR number from a review comment's ``pull_request_url``."""
    match = _PULL_NUMBER_RE.search(comment_payload.get("pull_request_url") or "")
    return int(match.group(1)) if match else None


async def mark_comment_as_handled(  # noqa: PLR0913, PLR0917
    client: GitHubClient,
    owner: str,
    repo: str,
    fixed: FixedComment,
    default_reaction: str = DEFAULT_REACTION,
    reply_suffix: str = DEFAULT_REPLY_SUFFIX,
) -> MarkCommentResult:
    """Reply to and react on one comment. Never raises; failures are returned."""
    comment_id = fixed.fixed_comment_id
    try:
        payload = await client.get_review_comment(owner, repo, comment_id)
        pull_number = extract_pull_number(payload)
        if pull_number is None:
            msg = errors.pull_number_not_found(comment_id=comment_id)
            return MarkCommentResult(comment_id=comment_id, success=False, message=msg, error=msg)

        summary = (fixed.fix_summary or "").strip()
        if summary:
            await client.reply_to_review_comment(
                owner,
                repo,
                pull_number,
                comment_id,
                format_handled_reply(summary, reply_suffix),
            )

        await client.add_review_comment_reaction(owner, repo, comment_id, fixed.reaction or default_reaction)
    except Exception as exc:
        logger.warning("Marking comment #%d as handled failed: %s", comment_id, exc)
        return MarkCommentResult(
            comment_id=comment_id,
            success=False,
            message=errors.mark_comment_failed(comment_id=comment_id, reason=str(exc)),
            error=str(exc),
        )

    return MarkCommentResult(comment_id=comment_id, success=True, message=errors.mark_comment_success(comment_id=comment_id))


async def mark_comments_as_handled(  # noqa: PLR0913, PLR0917
    client: GitHubClient,
    owner: str,
    repo: str,
    fixed_comments: Sequence[FixedComment],
    default_reaction: str = DEFAULT_REACTION,
    reply_suffix: str = DEFAULT_REPLY_SUFFIX,
) -> list[MarkCommentResult]:
    """Mark every comment concurrently, one result per comment in request order."""
    return list(
        await asyncio.gather(*(
            mark_comment_as_handled(client, owner, repo, fixed, default_reaction, reply_suffix) for fixed in fixed_comments
        ))
    )


async def handle_fixed_comments(  # noqa: PLR0913
    client: GitHubClient,
    repo: str,
    fixed_comments: Sequence[FixedComment],
    *,
    default_owner: str | None = None,
    default_reaction: str = DEFAULT_REACTION,
    reply_suffix: str = DEFAULT_REPLY_SUFFIX,
    ctx: Context | None = None,
) -> MarkCommentsResult:
    """Validate the request, mark each comment and summarize the outcomes."""
    owner, repo_name = split_repo(repo, default_owner)
    fixed_comments = validate_fixed_comments(fixed_comments)

    results = await mark_comments_as_handled(client, owner, repo_name, fixed_comments, default_reaction, reply_suffix)
    summary = MarkCommentsResult.from_results(results)

    if ctx:
        await ctx.info(f"Marked {summary.successful}/{summary.total} comment(s) as handled")
        if summary.failed:
            await ctx.warning(f"{summary.failed} comment(s) could not be marked as handled")

    return summary
