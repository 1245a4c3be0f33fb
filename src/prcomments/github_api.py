"""GitHub REST client using httpx with token authentication.

Authentication priority (resolved once per client, then reused):
1. Token passed explicitly (``--gh-api-key`` or ``PRC_GITHUB_TOKEN``)
2. ``GH_TOKEN`` env var
3. ``GITHUB_TOKEN`` env var
4. ``gh auth token`` subprocess, reads local ``~/.config/gh/hosts.yml``, no network
5. Raises :exc:`GitHubAuthError` with setup URL

New users: https://github.com/settings/tokens/new?scopes=repo&description=prcomments
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess  # noqa: S404
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "prcomments-mcp-server"
TOKEN_CREATE_URL = "https://github.com/settings/tokens/new?scopes=repo&description=prcomments"  # noqa: S105

_PER_PAGE = 100


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """Raised when GitHub authentication fails or no token is available."""

    def __init__(self, detail: str = "", status_code: int = 401) -> None:
        msg = (
            "GitHub token not found or rejected. "
            "Pass --gh-api-key, set GH_TOKEN or GITHUB_TOKEN, or run 'gh auth login'.\n"
            f"Create a token (permissions pre-filled): {TOKEN_CREATE_URL}"
        )
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=status_code)


class GitHubNotFoundError(GitHubError):
    """Raised on 404, which GitHub also returns for private repos the token cannot see."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class GitHubRateLimitError(GitHubError):
    """Raised when the primary or secondary rate limit is exhausted."""


class GitHubValidationError(GitHubError):
    """Raised on 422, e.g. replying to a comment that cannot take replies."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=422)


# ---------------------------------------------------------------------------
# Settings and token resolution
# ---------------------------------------------------------------------------


class GitHubSettings(BaseModel):
    """Connection settings, built once at startup and handed to each client."""

    token: str | None = Field(default=None, repr=False, description="Explicit token, resolved from env/gh when None")
    api_url: str = Field(default=DEFAULT_API_URL, description="REST API base URL")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(default=2, ge=0, description="Retries for failed GET requests")
    backoff_seconds: float = Field(default=0.5, ge=0, description="Base delay, doubled after each retry")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header sent to GitHub")


def _resolve_token_sync() -> str | None:
    """Resolve a GitHub token from the environment. Safe to run in a thread."""
    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        logger.debug("GitHub token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            logger.debug("GitHub token resolved from gh auth token")
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        logger.debug("gh auth token unavailable")

    return None


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_UNPROCESSABLE = 422
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
        msg = body.get("message", response.text) if isinstance(body, dict) else response.text
    except ValueError:
        msg = response.text
    return msg or response.reason_phrase


def _raise_for_status(response: httpx.Response) -> None:
    """Raise appropriate :exc:`GitHubError` subclass for non-2xx responses."""
    if response.is_success:
        return

    status = response.status_code
    if status == _HTTP_UNAUTHORIZED:
        raise GitHubAuthError

    msg = _error_message(response)

    if status == _HTTP_TOO_MANY_REQUESTS or (status == _HTTP_FORBIDDEN and "rate limit" in msg.lower()):
        msg = f"GitHub API rate limit exceeded: {msg}"
        raise GitHubRateLimitError(msg, status_code=status)
    if status == _HTTP_FORBIDDEN:
        msg = f"GitHub API access forbidden: {msg}"
        raise GitHubAuthError(msg, status_code=status)
    if status == _HTTP_NOT_FOUND:
        msg = f"GitHub resource not found: {msg}"
        raise GitHubNotFoundError(msg)
    if status == _HTTP_UNPROCESSABLE:
        msg = f"GitHub API validation failed: {msg}"
        raise GitHubValidationError(msg)
    if status >= _HTTP_SERVER_ERROR:
        msg = f"GitHub server error (HTTP {status}): {msg}"
        raise GitHubError(msg, status_code=status)

    msg = f"GitHub API error (HTTP {status}): {msg}"
    raise GitHubError(msg, status_code=status)


def _is_retryable(response: httpx.Response) -> bool:
    return response.status_code >= _HTTP_SERVER_ERROR or response.status_code == _HTTP_TOO_MANY_REQUESTS


def _parse_next_link(link_header: str) -> str | None:
    """Parse a ``Link:`` header and return the ``next`` URL if present."""
    if not link_header:
        return None
    match = re.search(r'<([^>]+)>;\s*rel="next"', link_header)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GitHubClient:
    """Async GitHub REST client bound to one set of :class:`GitHubSettings`.

    Use as an async context manager so the underlying connection pool is closed::

        async with GitHubClient(settings) as client:
            pulls = await client.list_open_pulls("owner", "repo")
    """

    def __init__(self, settings: GitHubSettings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._token = settings.token
        self._http = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=httpx.Timeout(settings.timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_token(self) -> str:
        """Return the token, resolving it from env or ``gh`` on first use.

        Raises:
            GitHubAuthError: If no token can be found.
        """
        if self._token is None:
            self._token = await asyncio.to_thread(_resolve_token_sync)
        if self._token is None:
            raise GitHubAuthError
        return self._token

    async def _headers(self) -> dict[str, str]:
        token = await self.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self.settings.user_agent,
        }

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying GETs on transport errors, 5xx and 429."""
        retries = self.settings.max_retries if method.upper() == "GET" else 0
        attempt = 0
        while True:
            try:
                response = await self._http.request(method, url, headers=headers, params=params, json=json_body)
            except httpx.TransportError as exc:
                if attempt >= retries:
                    msg = f"GitHub request failed: {type(exc).__name__}: {exc}"
                    raise GitHubError(msg) from exc
                logger.warning("GitHub %s %s failed (%s), retrying", method, url, type(exc).__name__)
            else:
                if attempt >= retries or not _is_retryable(response):
                    _raise_for_status(response)
                    return response
                logger.warning("GitHub %s %s returned %d, retrying", method, url, response.status_code)
            await asyncio.sleep(self.settings.backoff_seconds * 2**attempt)
            attempt += 1

    async def rest(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        paginate: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a GitHub REST API call.

        Args:
            endpoint: REST API endpoint path (e.g. ``/repos/owner/repo/pulls``).
            method: HTTP method (default ``GET``).
            paginate: If ``True``, follow ``Link:`` headers to collect all pages.
                Returns a flat list combining all page results.
            **kwargs: Query parameters (GET) or JSON body fields (non-GET).

        Returns:
            Parsed JSON response, or a flat list when ``paginate=True``.

        Raises:
            GitHubError: On HTTP failure.
            GitHubAuthError: On authentication failure.
        """
        headers = await self._headers()
        logger.debug("GitHub %s %s", method, endpoint)

        if paginate:
            return await self._paginate(endpoint, headers, **kwargs)

        upper = method.upper()
        params = dict(kwargs) if upper == "GET" and kwargs else None
        json_body = dict(kwargs) if upper != "GET" and kwargs else None
        response = await self._send(upper, endpoint, headers, params=params, json_body=json_body)
        if not response.content:
            return None
        return response.json()

    async def _paginate(self, endpoint: str, headers: dict[str, str], **kwargs: Any) -> list[Any]:
        """Follow ``Link:`` headers to collect all pages into a flat list."""
        results: list[Any] = []
        next_url: str | None = endpoint
        params: dict[str, Any] | None = {"per_page": _PER_PAGE, **kwargs}

        while next_url:
            response = await self._send("GET", next_url, headers, params=params)
            page = response.json()
            if isinstance(page, list):
                results.extend(page)
            elif page is not None:
                results.append(page)
            next_url = _parse_next_link(response.headers.get("link", ""))
            # next links already carry the query string
            params = None

        return results

    # -- Endpoints ---------------------------------------------------------------

    async def list_open_pulls(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self.rest(f"/repos/{owner}/{repo}/pulls", paginate=True, state="open")

    async def list_review_comments(self, owner: str, repo: str, pull_number: int) -> list[dict[str, Any]]:
        return await self.rest(f"/repos/{owner}/{repo}/pulls/{pull_number}/comments", paginate=True)

    async def list_issue_comments(self, owner: str, repo: str, pull_number: int) -> list[dict[str, Any]]:
        return await self.rest(f"/repos/{owner}/{repo}/issues/{pull_number}/comments", paginate=True)

    async def list_reviews(self, owner: str, repo: str, pull_number: int) -> list[dict[str, Any]]:
        return await self.rest(f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews", paginate=True)

    async def get_review_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        return await self.rest(f"/repos/{owner}/{repo}/pulls/comments/{comment_id}")

    async def reply_to_review_comment(
        self,
        owner: str,
        repo: str,
        pull_number: int,
        comment_id: int,
        body: str,
    ) -> dict[str, Any]:
        return await self.rest(
            f"/repos/{owner}/{repo}/pulls/{pull_number}/comments/{comment_id}/replies",
            method="POST",
            body=body,
        )

    async def add_review_comment_reaction(self, owner: str, repo: str, comment_id: int, content: str) -> dict[str, Any]:
        return await self.rest(
            f"/repos/{owner}/{repo}/pulls/comments/{comment_id}/reactions",
            method="POST",
            content=content,
        )
