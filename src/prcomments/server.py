"""FastMCP server for prcomments.

Exposes tools for fetching the PR review comments that still need attention
and for marking comments as handled once they are fixed. When served over HTTP
the same operations are also reachable as plain JSON routes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_context
from fastmcp.server.lifespan import lifespan
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware
from fastmcp.utilities.async_utils import call_sync_fn_in_threadpool
from pydantic import Field, ValidationError
from starlette.responses import JSONResponse

from prcomments.config import get_config, get_config_path, github_settings, load_config, set_config
from prcomments.errors import classify_error
from prcomments.github_api import GitHubAuthError, GitHubClient, _resolve_token_sync
from prcomments.models import (
    ConfigInfo,
    ErrorKind,
    FixedComment,
    MarkCommentsResult,
    PRCommentsResult,
    ToolError,
)
from prcomments.tools import comments, handled

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastmcp.server.context import Context
    from starlette.requests import Request

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.BAD_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTERNAL: 500,
}


@lifespan
async def load_settings(server: FastMCP) -> AsyncIterator[dict[str, object] | None]:  # noqa: ARG001
    """Load configuration and verify a GitHub token is available on startup."""
    config, config_path = load_config()
    set_config(config, config_path=config_path)
    await call_sync_fn_in_threadpool(check_prerequisites)
    yield {}


mcp = FastMCP(
    "prcomments",
    lifespan=load_settings,
    instructions="""\
Fetch the GitHub pull request review comments that still need attention, and
mark them as handled once they are fixed.

## Workflow

1. **Fetch** with `fix_pr_comments(repo, branch)`. Take the branch from
   `git branch --show-current` if the user did not give one. Comments that are
   outdated, belong to an approved or changes-requested review, or sit in a
   thread where the PR author replied last are already left out.
2. **Work through** the comments following the returned `steps_forward`.
3. **Mark as handled** with `mark_comments_as_handled(repo, fixed_comments)`,
   passing each `comment_id` with a short `fix_summary`. Each comment gets a
   "Done - <summary>" reply and a reaction. Ask the user first.

## Results and errors

`mark_comments_as_handled` reports each comment separately: one failure does not
stop the others, so check `failed` and the per-item `error` fields.

On failure tools return an `error` object with a `kind`:
- `bad_input`: fix the arguments (repo is `repo` or `owner/repo`).
- `not_found`: no open PR for that branch, or the repository is not visible.
- `upstream`: GitHub failed or rate-limited the call; retry later.
- `internal`: report it to the user.

Call `show_config` to see the default owner, reaction and retry settings.
""",
)


mcp.add_middleware(ErrorHandlingMiddleware(include_traceback=True, transform_errors=True))
mcp.add_middleware(TimingMiddleware())
mcp.add_middleware(LoggingMiddleware(include_payloads=True, max_payload_length=500))


def _client() -> GitHubClient:
    return GitHubClient(github_settings())


async def _get_pr_comments(
    repo: str,
    branch: str,
    pr_author: str | None = None,
    ctx: Context | None = None,
) -> PRCommentsResult:
    """Shared body of the ``fix_pr_comments`` tool and its HTTP route."""
    try:
        async with _client() as client:
            return await comments.get_pull_request_comments(
                client,
                repo,
                branch,
                explicit_pr_author=pr_author,
                default_owner=get_config().github.owner,
                ctx=ctx,
            )
    except Exception as exc:
        logger.exception("fix_pr_comments failed for %s@%s", repo, branch)
        return PRCommentsResult(
            repository=repo,
            branch=branch,
            error=classify_error(exc, tool_name="fix_pr_comments", repo=repo, branch=branch),
        )


async def _mark_handled(
    repo: str,
    fixed_comments: list[FixedComment],
    ctx: Context | None = None,
) -> MarkCommentsResult:
    """Shared body of the ``mark_comments_as_handled`` tool and its HTTP route."""
    config = get_config()
    try:
        async with _client() as client:
            return await handled.handle_fixed_comments(
                client,
                repo,
                fixed_comments,
                default_owner=config.github.owner,
                default_reaction=config.handling.default_reaction,
                reply_suffix=config.handling.reply_suffix,
                ctx=ctx,
            )
    except Exception as exc:
        logger.exception("mark_comments_as_handled failed for %s", repo)
        return MarkCommentsResult(error=classify_error(exc, tool_name="mark_comments_as_handled", repo=repo))


@mcp.tool(tags={"query"})
async def fix_pr_comments(
    repo: Annotated[
        str,
        Field(description="The GitHub repository name, 'repo' or 'owner/repo' (try the root package name first)"),
    ],
    branch: Annotated[
        str,
        Field(description="The branch of the pull request; use `git branch --show-current` if not given"),
    ],
    pr_author: Annotated[
        str | None,
        Field(description="Optional: GitHub username to treat as the PR author when collapsing threads"),
    ] = None,
) -> PRCommentsResult:
    """Fetch the review comments on a branch's open PR that still need attention.

    Leaves out outdated comments, comments from approved or changes-requested
    reviews, and threads where the PR author and a reviewer both replied and
    the author spoke last. Only the repo and branch are needed.

    Returns:
        The remaining comments (with ``comment_id`` for marking them handled later)
        and ``steps_forward`` describing how to work through them.
    """
    try:
        return await _get_pr_comments(repo, branch, pr_author, ctx=get_context())
    except asyncio.CancelledError:
        logger.warning("fix_pr_comments cancelled for %s@%s", repo, branch)
        return PRCommentsResult(
            repository=repo,
            branch=branch,
            error=ToolError(kind=ErrorKind.INTERNAL, message="Cancelled"),
        )


@mcp.tool(tags={"command"})
async def mark_comments_as_handled(
    repo: Annotated[str, Field(description="The GitHub repository containing the PR comments")],
    fixed_comments: Annotated[list[FixedComment], Field(description="List of comments to mark as fixed")],
) -> MarkCommentsResult:
    """Mark PR review comments as handled by replying with a summary and adding a reaction.

    Each comment is processed independently; a failure on one does not stop
    the rest. Comments without a ``fix_summary`` only get the reaction.
    """
    try:
        return await _mark_handled(repo, fixed_comments, ctx=get_context())
    except asyncio.CancelledError:
        logger.warning("mark_comments_as_handled cancelled for %s", repo)
        return MarkCommentsResult(error=ToolError(kind=ErrorKind.INTERNAL, message="Cancelled"))


@mcp.tool(tags={"discovery"})
def show_config() -> ConfigInfo:
    """Show the active prcomments configuration.

    The GitHub token is never included.
    """
    config = get_config()
    path = get_config_path()

    parts = [
        f"Default owner: {config.github.owner}." if config.github.owner else "No default owner; pass 'owner/repo'.",
        f"GitHub API: {config.github.api_url} (timeout {config.github.timeout_seconds:g}s, "
        f"{config.github.max_retries} retries).",
        f"Default reaction: {config.handling.default_reaction}.",
    ]
    return ConfigInfo(
        config=config.model_dump(mode="json"),
        source=str(path) if path else "defaults",
        explanation=" ".join(parts),
    )


@mcp.prompt
def address_pr_comments(repo: str, branch: str) -> str:
    """Work through the open review comments on a branch end to end."""
    return f"""\
Address the open review comments on branch `{branch}` of `{repo}`:

1. Call `fix_pr_comments(repo="{repo}", branch="{branch}")` and show the user the
   returned comments grouped by file.
2. Ask which comments to handle. For each one, fix the code, answer the question,
   or ask the user when the comment is unclear.
3. Ask before committing and pushing.
4. Ask before calling `mark_comments_as_handled`, with a 3-15 word `fix_summary`
   per comment and the user's preferred reaction.
5. Report how many comments were marked and list any failures.
"""


# ---------------------------------------------------------------------------
# HTTP routes (``prcomments serve --http``)
# ---------------------------------------------------------------------------


def _error_response(error: ToolError) -> JSONResponse:
    return JSONResponse({"error": error.model_dump(mode="json")}, status_code=_STATUS_BY_KIND[error.kind])


async def _json_body(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return _error_response(ToolError(kind=ErrorKind.BAD_INPUT, message="Request body must be valid JSON"))
    if not isinstance(body, dict):
        return _error_response(ToolError(kind=ErrorKind.BAD_INPUT, message="Request body must be a JSON object"))
    return body


@mcp.custom_route("/health", methods=["GET"])
async def health(request: Request) -> JSONResponse:  # noqa: ARG001, RUF029
    return JSONResponse({"status": "healthy"})


@mcp.custom_route("/get-cr-comments", methods=["POST"])
async def get_cr_comments(request: Request) -> JSONResponse:
    """HTTP form of ``fix_pr_comments``: body ``{repo, branch, prAuthor?}``."""
    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    repo, branch = body.get("repo"), body.get("branch")
    if not repo or not branch:
        return _error_response(ToolError(kind=ErrorKind.BAD_INPUT, message="Both repo and branch are required"))

    pr_author = body.get("prAuthor") or body.get("pr_author")
    if pr_author is not None and not isinstance(pr_author, str):
        return _error_response(ToolError(kind=ErrorKind.BAD_INPUT, message="prAuthor must be a string"))

    result = await _get_pr_comments(str(repo), str(branch), pr_author)
    if result.error:
        return _error_response(result.error)
    return JSONResponse(result.model_dump(mode="json", exclude={"error"}))


@mcp.custom_route("/mark-comments-as-handled", methods=["POST"])
async def mark_comments_as_handled_route(request: Request) -> JSONResponse:
    """HTTP form of ``mark_comments_as_handled``: body ``{repo, fixedComments: [...]}``."""
    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    raw_items = body.get("fixedComments", body.get("fixed_comments"))
    if not isinstance(raw_items, list):
        raw_items = []
    try:
        fixed_comments = [FixedComment.model_validate(item) for item in raw_items]
    except ValidationError as exc:
        return _error_response(classify_error(exc, tool_name="mark_comments_as_handled", repo=body.get("repo")))

    result = await _mark_handled(str(body.get("repo") or ""), fixed_comments)
    if result.error:
        return _error_response(result.error)
    return JSONResponse(result.model_dump(mode="json", exclude={"error"}))


# ---------------------------------------------------------------------------
# Startup checks
# ---------------------------------------------------------------------------


def check_prerequisites() -> None:
    """Verify that a GitHub token is available before serving requests."""
    if github_settings().token:
        logger.info("Using GitHub token from --gh-api-key or PRC_GITHUB_TOKEN")
        return
    if _resolve_token_sync() is None:
        logger.error("No GitHub token found. Pass --gh-api-key, set GH_TOKEN, or run: gh auth login")
        raise GitHubAuthError
    logger.info("Using GitHub token from environment or gh CLI")
