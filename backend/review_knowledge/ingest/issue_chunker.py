"""Issue and issue-comment embedding text."""

from __future__ import annotations

from review_knowledge.ingest.chunker import DEFAULT_OVERLAP_SIZE, DEFAULT_WINDOW_SIZE
from review_knowledge.ingest.review_chunker import DEFAULT_BOT_LOGINS as REVIEW_BOT_LOGINS
from review_knowledge.utils.text import count_tokens, split_words

DEFAULT_BOT_LOGINS = REVIEW_BOT_LOGINS | {"stale", "kodi-butler"}


def build_issue_embedding_text(title: str, body: str | None) -> str:
    if not body:
        return title
    return f"{title}\n\n{body}"


def build_comment_embedding_text(issue_number: int, issue_title: str, comment_body: str) -> str:
    return f"{_prefix(issue_number, issue_title)}{comment_body}"


def chunk_issue_comment(
    issue_number: int,
    issue_title: str,
    comment_body: str,
    max_tokens: int = DEFAULT_WINDOW_SIZE,
    overlap: int = DEFAULT_OVERLAP_SIZE,
) -> list[str]:
    """Window a long comment, repeating the issue prefix on every piece."""
    full_text = build_comment_embedding_text(issue_number, issue_title, comment_body)
    if count_tokens(full_text) <= max_tokens:
        return [full_text]

    prefix = _prefix(issue_number, issue_title)
    body_budget = max_tokens - count_tokens(prefix)
    if body_budget <= 0:
        return [full_text]

    words = split_words(comment_body)
    step = max(1, body_budget - overlap)
    pieces: list[str] = []
    start = 0
    while start < len(words):
        end = min(start + body_budget, len(words))
        pieces.append(prefix + " ".join(words[start:end]))
        if end >= len(words):
            break
        start += step
    return pieces


def _prefix(issue_number: int, issue_title: str) -> str:
    return f"Issue #{issue_number}: {issue_title}\n\n"


__all__ = [
    "DEFAULT_BOT_LOGINS",
    "build_issue_embedding_text",
    "build_comment_embedding_text",
    "chunk_issue_comment",
]
