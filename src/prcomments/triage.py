"""Comment triage: decide which PR comments still need the author's attention.

Three pure steps run over already-fetched data:

1. :func:`classify_handled` marks comments that are outdated (their diff
   location is gone) or resolved (their review was approved or had changes
   requested).
2. :func:`simplify_comments` keeps file comments only and normalizes their
   line range.
3. :func:`filter_for_author` groups comments into threads by
   ``(file_path, start_line, end_line)`` and hides threads where both the PR
   author and a reviewer took part and the author replied last.

:func:`simplify_and_filter` chains steps 2 and 3. Nothing here performs I/O
or reads configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prcomments.models import ReviewState, SimplifiedComment

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from prcomments.models import RawComment, Review

logger = logging.getLogger(__name__)

RESOLVING_REVIEW_STATES = frozenset({ReviewState.APPROVED, ReviewState.CHANGES_REQUESTED})

ThreadKey = tuple[str, int | None, int | None]


def is_outdated(comment: RawComment) -> bool:
    """True when the comment's location no longer exists in the current diff."""
    return comment.position is None and comment.original_position is not None


def classify_handled(comments: Iterable[RawComment], reviews: Iterable[Review]) -> dict[int, bool]:
    """Map each comment ID to whether it is already handled (outdated or resolved)."""
    review_states = {review.id: review.state for review in reviews}
    handled: dict[int, bool] = {}
    for comment in comments:
        resolved = comment.review_id is not None and review_states.get(comment.review_id) in RESOLVING_REVIEW_STATES
        handled[comment.id] = is_outdated(comment) or resolved
    return handled


def _first_present(*values: int | None) -> int | None:
    for value in values:
        if value is not None:
            return value
    return None


def simplify_comments(comments: Iterable[RawComment], handled_status: Mapping[int, bool]) -> list[SimplifiedComment]:
    """Normalize file comments, numbering them in their original order.

    Comments without a file path are dropped. The start line prefers the
    current diff (``start_line``), then the original diff, then the end line
    field; the end line prefers ``line``, then ``original_line``, then the
    resolved start line.
    """
    file_comments = [c for c in comments if c.file_path]
    simplified: list[SimplifiedComment] = []
    for index, comment in enumerate(file_comments, start=1):
        start_line = _first_present(comment.start_line, comment.original_start_line, comment.line)
        end_line = _first_present(comment.line, comment.original_line, start_line)
        simplified.append(
            SimplifiedComment(
                sequence_number=index,
                comment_id=comment.id,
                file_path=comment.file_path or "",
                author_login=comment.author,
                message=comment.body,
                is_handled=handled_status.get(comment.id, False),
                start_line=start_line,
                end_line=end_line,
                created_at=comment.created_at,
            )
        )
    return simplified


def thread_key(comment: SimplifiedComment) -> ThreadKey:
    """Key identifying the conversation a comment belongs to."""
    return (comment.file_path, comment.start_line, comment.end_line)


def is_waiting_on_reviewer(thread: list[SimplifiedComment], pr_author: str) -> bool:
    """True when author and reviewer both spoke and the newest comment is the author's.

    *thread* must already be sorted newest first.
    """
    if not thread:
        return False
    has_author_comment = any(c.author_login == pr_author for c in thread)
    has_reviewer_comment = any(c.author_login != pr_author for c in thread)
    return has_author_comment and has_reviewer_comment and thread[0].author_login == pr_author


def group_threads(comments: Iterable[SimplifiedComment]) -> dict[ThreadKey, list[SimplifiedComment]]:
    """Group comments by thread key, keeping threads in first-seen order."""
    threads: dict[ThreadKey, list[SimplifiedComment]] = {}
    for comment in comments:
        threads.setdefault(thread_key(comment), []).append(comment)
    return threads


def filter_for_author(comments: Iterable[SimplifiedComment], pr_author: str) -> list[SimplifiedComment]:
    """Drop threads that are waiting on a reviewer and handled comments.

    Output is the unhandled unthreaded comments in input order, followed by
    each kept thread's unhandled comments newest first. Threads appear in the
    order they were first seen. Comments with equal timestamps keep their
    input order.
    """
    unthreaded: list[SimplifiedComment] = []
    threaded: list[SimplifiedComment] = []
    for comment in comments:
        if comment.start_line is None and comment.end_line is None:
            unthreaded.append(comment)
        else:
            threaded.append(comment)

    result = [c for c in unthreaded if not c.is_handled]

    for key, thread in group_threads(threaded).items():
        ordered = sorted(thread, key=lambda c: c.created_at, reverse=True)
        if is_waiting_on_reviewer(ordered, pr_author):
            logger.debug("Hiding thread %s: %s replied last", key, pr_author)
            continue
        result.extend(c for c in ordered if not c.is_handled)

    return result


def simplify_and_filter(
    comments: Iterable[RawComment],
    handled_status: Mapping[int, bool],
    pr_author: str | None = None,
) -> list[SimplifiedComment]:
    """Return the file comments that still need attention.

    Handled comments are removed before threading. Without *pr_author* no
    thread collapsing happens and every unhandled comment is returned.
    """
    unhandled = [c for c in simplify_comments(comments, handled_status) if not c.is_handled]
    if not pr_author:
        logger.debug("No PR author given, returning %d unhandled comment(s) unfiltered", len(unhandled))
        return unhandled
    kept = filter_for_author(unhandled, pr_author)
    logger.debug("Kept %d of %d unhandled comment(s) for %s", len(kept), len(unhandled), pr_author)
    return kept
