"""Unified-diff hunk parsing and per-change hunk capping."""

from __future__ import annotations

import fnmatch
import re
from typing import Iterable, Sequence

from review_knowledge.ingest.types import ParsedHunk
from review_knowledge.retrieval.language import classify_file_language

HUNK_HEADER_RE = re.compile(r"^@@\s+-\d+(?:,\d+)?\s+\+(\d+)(?:,(\d+))?\s+@@\s*(.*)$")
DEFAULT_MIN_CHANGED_LINES = 3


def parse_diff_hunks(
    diff_text: str,
    file_path: str,
    min_changed_lines: int = DEFAULT_MIN_CHANGED_LINES,
    context_files: Sequence[str] | None = None,
) -> list[ParsedHunk]:
    """Split a file's unified diff into hunks carrying only their added lines.

    Context and deletion lines are dropped, so pure-deletion hunks and hunks
    with fewer than ``min_changed_lines`` additions never come back.
    """
    if not diff_text:
        return []

    language = classify_file_language(file_path, context_files)
    hunks: list[ParsedHunk] = []
    current: ParsedHunk | None = None

    for line in diff_text.split("\n"):
        if line.startswith("---") or line.startswith("+++") or line.startswith("\\ "):
            continue
        header = HUNK_HEADER_RE.match(line)
        if header:
            if current is not None and len(current.added_lines) >= min_changed_lines:
                hunks.append(current)
            current = ParsedHunk(
                file_path=file_path,
                start_line=int(header.group(1)),
                line_count=int(header.group(2) or "1"),
                function_context=(header.group(3) or "").strip(),
                added_lines=[],
                language=language,
            )
            continue
        if current is not None and line.startswith("+"):
            current.added_lines.append(line[1:])

    if current is not None and len(current.added_lines) >= min_changed_lines:
        hunks.append(current)
    return hunks


def build_embedding_text(hunk: ParsedHunk, pr_title: str) -> str:
    """``"title | path | function context"`` header followed by the added lines."""
    header = [pr_title, hunk.file_path]
    if hunk.function_context:
        header.append(hunk.function_context)
    return " | ".join(header) + "\n" + "\n".join(hunk.added_lines)


def is_excluded_path(file_path: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        if fnmatch.fnmatch(file_path, pattern):
            return True
        # "**/" also matches files at the repository root
        if pattern.startswith("**/") and fnmatch.fnmatch(file_path, pattern[3:]):
            return True
    return False


def apply_hunk_cap(hunks: Sequence[ParsedHunk], max_hunks: int) -> list[ParsedHunk]:
    """Keep the ``max_hunks`` largest hunks by added-line count.

    ``sorted`` is stable, so equal-sized hunks keep their original order.
    """
    if max_hunks <= 0:
        return []
    if len(hunks) <= max_hunks:
        return list(hunks)
    ranked = sorted(hunks, key=lambda hunk: len(hunk.added_lines), reverse=True)
    return ranked[:max_hunks]


__all__ = [
    "HUNK_HEADER_RE",
    "parse_diff_hunks",
    "build_embedding_text",
    "is_excluded_path",
    "apply_hunk_cap",
]
