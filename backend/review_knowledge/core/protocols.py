"""Protocols for the embedding provider and the per-corpus stores.

Retrieval code depends only on these interfaces; the SQLite snippet store and
the in-memory fakes used by tests both satisfy them structurally.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol, Sequence, runtime_checkable

from review_knowledge.models.entities import (
    Chunk,
    CodeSnippetRecord,
    ContentHashRecord,
    IssueCommentRecord,
    IssueRecord,
    LexicalHit,
    Occurrence,
    ReviewCommentRecord,
    SyncState,
    VectorHit,
    WikiPageRecord,
)

EmbeddingPurpose = Literal["document", "query"]
IssueState = Literal["open", "closed"]


@dataclass(slots=True)
class EmbeddingResult:
    vector: list[float]
    model: str
    dimensions: int


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Async embedding source. ``None`` means no vector could be produced."""

    @property
    def model(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    async def generate(self, text: str, purpose: EmbeddingPurpose) -> EmbeddingResult | None: ...


@runtime_checkable
class SyncStateStore(Protocol):
    async def get_sync_state(self, source_key: str) -> SyncState | None: ...

    async def update_sync_state(self, state: SyncState) -> None: ...


@runtime_checkable
class CodeSnippetStore(Protocol):
    """Content-addressed hunk snippets plus their occurrences."""

    async def has_snippet(self, content_hash: str) -> bool:
        """True once the hash row exists with an embedding."""
        ...

    async def write_snippet(self, record: ContentHashRecord, occurrence: Occurrence) -> None:
        """Insert the hash row if absent or fill in its missing embedding, always insert the occurrence row."""
        ...

    async def search_by_embedding(
        self,
        embedding: Sequence[float],
        repo: str,
        top_k: int,
        language: str | None = None,
    ) -> list[VectorHit[CodeSnippetRecord]]: ...

    async def search_by_full_text(
        self, query: str, repo: str, top_k: int
    ) -> list[LexicalHit[CodeSnippetRecord]]: ...


@runtime_checkable
class ReviewCommentStore(SyncStateStore, Protocol):
    async def write_chunks(self, chunks: Sequence[Chunk]) -> None: ...

    async def search_by_embedding(
        self, embedding: Sequence[float], repo: str, top_k: int
    ) -> list[VectorHit[ReviewCommentRecord]]: ...

    async def search_by_full_text(
        self, query: str, repo: str, top_k: int
    ) -> list[LexicalHit[ReviewCommentRecord]]: ...


@runtime_checkable
class WikiPageStore(SyncStateStore, Protocol):
    async def replace_page_chunks(self, page_id: int, chunks: Sequence[Chunk]) -> None:
        """Swap every chunk of the page for ``chunks`` in one write."""
        ...

    async def delete_page_chunks(self, page_id: int) -> None:
        """Soft-delete; deleted chunks stop matching searches."""
        ...

    async def search_by_embedding(
        self, embedding: Sequence[float], top_k: int
    ) -> list[VectorHit[WikiPageRecord]]: ...

    async def search_by_full_text(self, query: str, top_k: int) -> list[LexicalHit[WikiPageRecord]]: ...


@runtime_checkable
class IssueStore(SyncStateStore, Protocol):
    async def upsert_issue(self, issue: IssueRecord, chunks: Sequence[Chunk]) -> None: ...

    async def write_comment_chunks(self, comment: IssueCommentRecord, chunks: Sequence[Chunk]) -> None: ...

    async def search_by_embedding(
        self,
        embedding: Sequence[float],
        repo: str,
        top_k: int,
        state_filter: IssueState | None = None,
    ) -> list[VectorHit[IssueRecord]]: ...

    async def search_by_full_text(
        self,
        query: str,
        repo: str,
        top_k: int,
        state_filter: IssueState | None = None,
    ) -> list[LexicalHit[IssueRecord]]: ...

    async def get_by_number(self, repo: str, issue_number: int) -> IssueRecord | None: ...

    async def get_comments(self, repo: str, issue_number: int) -> list[IssueCommentRecord]:
        """Comments in chronological order."""
        ...

    async def search_comments_by_embedding(
        self, embedding: Sequence[float], repo: str, top_k: int
    ) -> list[VectorHit[IssueCommentRecord]]: ...


__all__ = [
    "EmbeddingPurpose",
    "IssueState",
    "EmbeddingResult",
    "EmbeddingProvider",
    "SyncStateStore",
    "CodeSnippetStore",
    "ReviewCommentStore",
    "WikiPageStore",
    "IssueStore",
]
