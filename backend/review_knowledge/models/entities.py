"""Internal dataclasses representing chunks, persisted records and identity keys."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from review_knowledge.core.errors import InvalidInputError

R = TypeVar("R")


class SourceType(str, Enum):
    """Closed set of corpora a unified result can come from."""

    CODE = "code"
    REVIEW_COMMENT = "review_comment"
    WIKI = "wiki"
    ISSUE = "issue"


# Identity keys ---------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RepoRef:
    owner: str
    name: str

    @classmethod
    def parse(cls, value: str) -> "RepoRef":
        """Parse ``owner/name``; anything else is rejected."""
        parts = value.strip().split("/") if value else []
        if len(parts) != 2 or not all(part.strip() for part in parts):
            raise InvalidInputError(f"Invalid repository identifier {value!r}; expected 'owner/name'")
        return cls(owner=parts[0].strip(), name=parts[1].strip())

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True, slots=True)
class IssueKey:
    repo: str
    issue_number: int


@dataclass(frozen=True, slots=True)
class ThreadKey:
    """Groups review comments: reply chain root, file position, or review id."""

    repo: str
    pr_number: int
    scope: str
    anchor: int

    def __str__(self) -> str:
        return f"{self.repo}:{self.pr_number}:{self.scope}:{self.anchor}"


@dataclass(frozen=True, slots=True)
class ChunkKey:
    source: SourceType
    ontology_key: str
    chunk_index: int = 0


# Chunks ----------------------------------------------------------------------


@dataclass(slots=True)
class Chunk:
    """Embeddable unit produced by every chunker."""

    ontology_key: str
    chunk_index: int
    chunk_text: str
    raw_text: str
    token_count: int
    section_metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    language_tags: tuple[str, ...] = ()


# Persisted records -----------------------------------------------------------


@dataclass(slots=True)
class ContentHashRecord:
    content_hash: str
    embedded_text: str
    embedding: list[float] | None
    language: str
    embedding_model: str | None = None
    stale: bool = False


@dataclass(slots=True)
class Occurrence:
    content_hash: str
    repo: str
    origin_location: str
    pr_number: int | None = None
    pr_title: str | None = None
    file_path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    function_context: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class CodeSnippetRecord:
    """A content-addressed snippet joined with its most recent occurrence."""

    content_hash: str
    embedded_text: str
    language: str
    repo: str
    pr_number: int | None
    pr_title: str | None
    file_path: str | None
    start_line: int | None
    end_line: int | None
    created_at: str | None = None


@dataclass(slots=True)
class ReviewCommentRecord:
    repo: str
    pr_number: int
    thread_id: str
    chunk_index: int
    chunk_text: str
    author_login: str
    pr_title: str | None = None
    file_path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    author_association: str | None = None
    created_at: str | None = None


@dataclass(slots=True)
class WikiPageRecord:
    page_id: int
    page_title: str
    page_url: str
    chunk_index: int
    chunk_text: str
    raw_text: str
    namespace: str = "Main"
    section_heading: str | None = None
    section_anchor: str | None = None
    last_modified: str | None = None
    language_tags: tuple[str, ...] = ()
    deleted: bool = False


@dataclass(slots=True)
class IssueRecord:
    repo: str
    issue_number: int
    title: str
    body: str | None
    state: str = "closed"
    author_login: str = "unknown"
    is_pull_request: bool = False
    created_at: str | None = None

    @property
    def key(self) -> IssueKey:
        return IssueKey(self.repo, self.issue_number)


@dataclass(slots=True)
class IssueCommentRecord:
    repo: str
    issue_number: int
    comment_id: int
    author_login: str
    body: str
    created_at: str | None = None


@dataclass(slots=True)
class SyncState:
    """Cursor and completion flag persisted per sync source."""

    source_key: str
    last_synced_at: datetime | None = None
    cursor: str | None = None
    total_synced: int = 0
    complete: bool = False


# Search hits -----------------------------------------------------------------


@dataclass(slots=True)
class VectorHit(Generic[R]):
    """Vector search row; cosine distance in [0, 2], lower is closer."""

    record: R
    distance: float


@dataclass(slots=True)
class LexicalHit(Generic[R]):
    """Full-text search row; higher rank is a better match."""

    record: R
    rank: float


__all__ = [
    "SourceType",
    "RepoRef",
    "IssueKey",
    "ThreadKey",
    "ChunkKey",
    "Chunk",
    "ContentHashRecord",
    "Occurrence",
    "CodeSnippetRecord",
    "ReviewCommentRecord",
    "WikiPageRecord",
    "IssueRecord",
    "IssueCommentRecord",
    "SyncState",
    "VectorHit",
    "LexicalHit",
]
