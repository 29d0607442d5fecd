"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def split_words(text: str) -> list[str]:
    """Split on any whitespace, dropping empty pieces."""
    return [word for word in WHITESPACE_RE.split(text) if word]


def count_tokens(text: str) -> int:
    """Whitespace token count used as the embedding-budget approximation."""
    return len(split_words(text))
