"""Sliding-window chunking shared by the wiki, review and issue chunkers."""

from __future__ import annotations

from dataclasses import dataclass

from review_knowledge.utils.text import split_words

DEFAULT_WINDOW_SIZE = 1024
DEFAULT_OVERLAP_SIZE = 256


@dataclass(slots=True)
class Window:
    text: str
    start_token: int
    end_token: int

    @property
    def token_count(self) -> int:
        return self.end_token - self.start_token


def sliding_window(
    text: str,
    window_size: int = DEFAULT_WINDOW_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
) -> list[Window]:
    """Split ``text`` into whitespace-token windows.

    Text that fits in one window is returned verbatim. Longer text is rejoined
    with single spaces; window ``i + 1`` starts ``window_size - overlap_size``
    tokens after window ``i``, so adjacent windows share ``overlap_size``
    tokens and only the last window may be shorter.
    """
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    if overlap_size < 0 or overlap_size >= window_size:
        raise ValueError("overlap_size must be in [0, window_size)")

    words = split_words(text)
    if not words:
        return []
    if len(words) <= window_size:
        return [Window(text=text.strip(), start_token=0, end_token=len(words))]

    step = window_size - overlap_size
    windows: list[Window] = []
    start = 0
    while start < len(words):
        end = min(start + window_size, len(words))
        windows.append(Window(text=" ".join(words[start:end]), start_token=start, end_token=end))
        if end >= len(words):
            break
        start += step
    return windows


__all__ = [
    "DEFAULT_WINDOW_SIZE",
    "DEFAULT_OVERLAP_SIZE",
    "Window",
    "sliding_window",
]
