"""Review comment thread grouping and chunking."""

from __future__ import annotations

from typing import Collection, Iterable, Sequence

from review_knowledge.ingest.chunker import DEFAULT_OVERLAP_SIZE, DEFAULT_WINDOW_SIZE, sliding_window
from review_knowledge.ingest.types import ReviewCommentInput
from review_knowledge.models.entities import Chunk, ThreadKey
from review_knowledge.utils.text import count_tokens

DEFAULT_BOT_LOGINS = frozenset({"dependabot", "renovate", "kodiai", "github-actions", "codecov"})


def is_bot(login: str, bot_logins: Collection[str] | None = None) -> bool:
    """Explicit bot logins (case-insensitive) or any ``[bot]`` account."""
    logins = DEFAULT_BOT_LOGINS if bot_logins is None else {name.lower() for name in bot_logins}
    lowered = login.lower()
    return lowered in logins or lowered.endswith("[bot]")


def thread_key_for(comment: ReviewCommentInput) -> ThreadKey:
    """File position first, then review id, then the comment's own id."""
    if comment.file_path and comment.original_position is not None:
        return ThreadKey(comment.repo, comment.pr_number, comment.file_path, comment.original_position)
    if comment.review_id is not None:
        return ThreadKey(comment.repo, comment.pr_number, "general", comment.review_id)
    return ThreadKey(comment.repo, comment.pr_number, "general", comment.comment_id)


def group_threads(comments: Iterable[ReviewCommentInput]) -> dict[ThreadKey, list[ReviewCommentInput]]:
    """Group flat comments into threads ordered by creation time.

    Replies follow ``in_reply_to_id`` up to their root and join the root's
    thread. Comments without a root in the batch are grouped by position.
    """
    comments = list(comments)
    by_id = {comment.comment_id: comment for comment in comments}
    threads: dict[ThreadKey, list[ReviewCommentInput]] = {}
    for comment in comments:
        root = _find_root(comment, by_id)
        threads.setdefault(thread_key_for(root), []).append(comment)
    for members in threads.values():
        members.sort(key=lambda item: (item.created_at, item.comment_id))
    return threads


def format_comment(comment: ReviewCommentInput) -> str:
    return f"@{comment.author_login} ({comment.created_at.date().isoformat()}): {comment.body}"


def chunk_review_thread(
    thread: Sequence[ReviewCommentInput],
    bot_logins: Collection[str] | None = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
) -> list[Chunk]:
    """Concatenate the human comments of a thread and window the result.

    A thread whose comments all come from bots yields no chunks.
    """
    humans = [comment for comment in thread if not is_bot(comment.author_login, bot_logins)]
    if not humans:
        return []

    root = humans[0]
    key = thread_key_for(root)
    thread_text = "\n".join(format_comment(comment) for comment in humans)
    metadata = {
        "repo": root.repo,
        "pr_number": root.pr_number,
        "pr_title": root.pr_title,
        "thread_id": str(key),
        "comment_id": root.comment_id,
        "in_reply_to_id": root.in_reply_to_id,
        "file_path": root.file_path,
        "start_line": root.start_line,
        "end_line": root.end_line,
        "diff_hunk": root.diff_hunk,
        "author_login": root.author_login,
        "author_association": root.author_association,
        "created_at": root.created_at,
        "updated_at": root.updated_at,
        "comment_count": len(humans),
    }
    return [
        Chunk(
            ontology_key=str(key),
            chunk_index=index,
            chunk_text=window.text,
            raw_text=window.text,
            token_count=count_tokens(window.text),
            section_metadata=dict(metadata),
        )
        for index, window in enumerate(sliding_window(thread_text, window_size, overlap_size))
    ]


# ---------------------------------------------------------------------------


def _find_root(
    comment: ReviewCommentInput,
    by_id: dict[int, ReviewCommentInput],
) -> ReviewCommentInput:
    current = comment
    seen = {current.comment_id}
    while current.in_reply_to_id is not None:
        parent = by_id.get(current.in_reply_to_id)
        if parent is None or parent.comment_id in seen:
            break
        seen.add(parent.comment_id)
        current = parent
    return current


__all__ = [
    "DEFAULT_BOT_LOGINS",
    "is_bot",
    "thread_key_for",
    "group_threads",
    "format_comment",
    "chunk_review_thread",
]
