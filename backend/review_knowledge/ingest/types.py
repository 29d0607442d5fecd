"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class ParsedHunk:
    """Added lines of one ``@@`` hunk from a unified diff."""

    file_path: str
    start_line: int
    line_count: int
    function_context: str
    added_lines: list[str]
    language: str

    @property
    def end_line(self) -> int:
        return self.start_line + max(self.line_count, 1) - 1


@dataclass(slots=True)
class FileDiff:
    file_path: str
    diff_text: str


@dataclass(slots=True)
class WikiPageInput:
    """Rendered page fetched from the wiki before chunking."""

    page_id: int
    page_title: str
    page_url: str
    html_content: str
    namespace: str = "Main"
    last_modified: datetime | None = None
    revision_id: int | None = None


@dataclass(slots=True)
class ReviewCommentInput:
    """Pull request review comment as returned by the forge API."""

    repo: str
    pr_number: int
    comment_id: int
    author_login: str
    body: str
    created_at: datetime
    pr_title: str | None = None
    in_reply_to_id: int | None = None
    file_path: str | None = None
    original_position: int | None = None
    review_id: int | None = None
    start_line: int | None = None
    end_line: int | None = None
    diff_hunk: str | None = None
    author_association: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class IngestStats:
    """Aggregated ingest statistics."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    embeddings_generated: int = 0
    dedup_hits: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": self.chunks,
            "embeddings_generated": self.embeddings_generated,
            "dedup_hits": self.dedup_hits,
        }


__all__ = [
    "ParsedHunk",
    "FileDiff",
    "WikiPageInput",
    "ReviewCommentInput",
    "IngestStats",
]
