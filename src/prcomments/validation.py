"""Input checks for tool arguments, raising :exc:`InputValidationError`."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from prcomments import errors
from prcomments.errors import InputValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from prcomments.models import FixedComment

_REPO_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")
_MAX_REPO_PARTS = 2


def validate_repo(repo: str | None) -> str:
    """Check a ``repo`` or ``owner/repo`` string and return it stripped."""
    repo = (repo or "").strip()
    if not repo:
        raise InputValidationError(errors.missing_repo())
    if not _REPO_PATTERN.match(repo):
        raise InputValidationError(errors.invalid_repo_format(repo=repo))
    parts = repo.split("/")
    if len(parts) > _MAX_REPO_PARTS or not all(parts) or any(part in {".", ".."} for part in parts):
        raise InputValidationError(errors.invalid_repo_structure(repo=repo))
    return repo


def split_repo(repo: str | None, default_owner: str | None = None) -> tuple[str, str]:
    """Resolve *repo* to ``(owner, name)``, falling back to *default_owner*."""
    repo = validate_repo(repo)
    owner, _, name = repo.rpartition("/")
    owner = owner or (default_owner or "").strip()
    if not owner:
        raise InputValidationError(errors.missing_owner(repo=repo))
    return owner, name


def validate_branch(branch: str | None) -> str:
    """Check a branch name against git's ref rules that matter for lookup."""
    branch = (branch or "").strip()
    if not branch:
        raise InputValidationError(errors.missing_branch())
    if (
        branch.startswith(("-", "/"))
        or branch.endswith(("/", ".", ".lock"))
        or ".." in branch
        or "@{" in branch
        or any(ch.isspace() or ord(ch) < 0x20 or ch in "~^:?*[\\\x7f" for ch in branch)  # noqa: PLR2004
    ):
        raise InputValidationError(errors.invalid_branch_format(branch=branch))
    return branch


def validate_fixed_comments(fixed_comments: Sequence[FixedComment] | None) -> list[FixedComment]:
    """Require at least one comment, each with a positive ID."""
    if not fixed_comments:
        raise InputValidationError(errors.missing_fixed_comments())
    for fixed in fixed_comments:
        if fixed.fixed_comment_id <= 0:
            raise InputValidationError(errors.invalid_comment_id(comment_id=fixed.fixed_comment_id))
    return list(fixed_comments)
