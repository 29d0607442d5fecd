"""Per-corpus retrieval wrappers.

Each wrapper embeds the query, runs the corpus store's vector and full-text
searches concurrently, keeps vector rows whose distance is at or under the
threshold, and RRF-merges both lists into one corpus ranking. The branch
helpers return ``Ok``/``Err`` so tests can see which branch failed; the public
``search_*`` functions collapse any ``Err`` into an empty contribution.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, ClassVar, Hashable, Sequence, TypeVar, Union

from review_knowledge.core.errors import EmbeddingUnavailableError, Err, Ok, Result, RetrievalError, StoreError
from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.metrics import CORPUS_FAILURES
from review_knowledge.core.protocols import (
    CodeSnippetStore,
    EmbeddingProvider,
    IssueState,
    IssueStore,
    ReviewCommentStore,
    WikiPageStore,
)
from review_knowledge.models.entities import (
    ChunkKey,
    CodeSnippetRecord,
    IssueRecord,
    LexicalHit,
    ReviewCommentRecord,
    SourceType,
    VectorHit,
    WikiPageRecord,
)
from review_knowledge.retrieval.hybrid import DEFAULT_RRF_K, HybridSearchResult, hybrid_search_merge
from review_knowledge.retrieval.language import classify_file_language, UNKNOWN_LANGUAGE
from review_knowledge.utils.time import parse_timestamp

logger = get_logger(__name__)

DEFAULT_DISTANCE_THRESHOLD = 0.7
ISSUE_BODY_PREVIEW_CHARS = 2000
GITHUB_URL = "https://github.com"

R = TypeVar("R")
M = TypeVar("M")


# Matches ---------------------------------------------------------------------


@dataclass(slots=True)
class CodeSnippetMatch:
    source: ClassVar[SourceType] = SourceType.CODE

    content_hash: str
    embedded_text: str
    language: str
    repo: str
    pr_number: int | None
    pr_title: str | None
    file_path: str | None
    start_line: int | None
    end_line: int | None
    created_at: str | None
    distance: float | None = None

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(self.source, self.content_hash)

    def to_unified(self) -> "UnifiedResultChunk":
        url = f"{GITHUB_URL}/{self.repo}/pull/{self.pr_number}" if self.pr_number else None
        return UnifiedResultChunk(
            key=self.key,
            source=self.source,
            source_label=f"[code: {self.file_path or 'unknown'}]",
            text=self.embedded_text,
            source_url=url,
            vector_distance=self.distance,
            created_at=parse_timestamp(self.created_at),
            languages=(self.language,) if self.language and self.language != UNKNOWN_LANGUAGE else (),
            metadata={
                "content_hash": self.content_hash,
                "repo": self.repo,
                "pr_number": self.pr_number,
                "pr_title": self.pr_title,
                "file_path": self.file_path,
                "start_line": self.start_line,
                "end_line": self.end_line,
            },
        )


@dataclass(slots=True)
class ReviewCommentMatch:
    source: ClassVar[SourceType] = SourceType.REVIEW_COMMENT

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
    distance: float | None = None

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(self.source, self.thread_id, self.chunk_index)

    def to_unified(self) -> "UnifiedResultChunk":
        language = classify_file_language(self.file_path) if self.file_path else UNKNOWN_LANGUAGE
        return UnifiedResultChunk(
            key=self.key,
            source=self.source,
            source_label=f"[review: PR #{self.pr_number}]",
            text=self.chunk_text,
            source_url=f"{GITHUB_URL}/{self.repo}/pull/{self.pr_number}",
            vector_distance=self.distance,
            created_at=parse_timestamp(self.created_at),
            languages=() if language == UNKNOWN_LANGUAGE else (language,),
            metadata={
                "repo": self.repo,
                "pr_number": self.pr_number,
                "pr_title": self.pr_title,
                "file_path": self.file_path,
                "author_login": self.author_login,
                "author_association": self.author_association,
                "start_line": self.start_line,
                "end_line": self.end_line,
            },
        )


@dataclass(slots=True)
class WikiKnowledgeMatch:
    source: ClassVar[SourceType] = SourceType.WIKI

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
    distance: float | None = None

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(self.source, str(self.page_id), self.chunk_index)

    @property
    def section_url(self) -> str:
        return f"{self.page_url}#{self.section_anchor}" if self.section_anchor else self.page_url

    def to_unified(self) -> "UnifiedResultChunk":
        return UnifiedResultChunk(
            key=self.key,
            source=self.source,
            source_label=f"[wiki: {self.page_title}]",
            text=self.chunk_text,
            source_url=self.section_url,
            vector_distance=self.distance,
            created_at=parse_timestamp(self.last_modified),
            languages=tuple(tag for tag in self.language_tags if tag != "general"),
            metadata={
                "page_id": self.page_id,
                "page_title": self.page_title,
                "namespace": self.namespace,
                "section_heading": self.section_heading,
            },
        )


@dataclass(slots=True)
class IssueKnowledgeMatch:
    source: ClassVar[SourceType] = SourceType.ISSUE

    repo: str
    issue_number: int
    title: str
    chunk_text: str
    state: str
    author_login: str
    is_pull_request: bool = False
    created_at: str | None = None
    distance: float | None = None

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(self.source, self.repo, self.issue_number)

    @property
    def url(self) -> str:
        return f"{GITHUB_URL}/{self.repo}/issues/{self.issue_number}"

    def to_unified(self) -> "UnifiedResultChunk":
        return UnifiedResultChunk(
            key=self.key,
            source=self.source,
            source_label=f"[issue: #{self.issue_number}]",
            text=self.chunk_text,
            source_url=self.url,
            vector_distance=self.distance,
            created_at=parse_timestamp(self.created_at),
            metadata={
                "repo": self.repo,
                "issue_number": self.issue_number,
                "title": self.title,
                "state": self.state,
                "author_login": self.author_login,
            },
        )


KnowledgeMatch = Union[CodeSnippetMatch, ReviewCommentMatch, WikiKnowledgeMatch, IssueKnowledgeMatch]


@dataclass(slots=True)
class UnifiedResultChunk:
    """One ranked item in the cross-corpus result list."""

    key: Hashable
    source: SourceType
    source_label: str
    text: str
    source_url: str | None = None
    vector_distance: float | None = None
    rrf_score: float = 0.0
    created_at: datetime | None = None
    languages: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    alternate_sources: list[str] = field(default_factory=list)


# Record mappers --------------------------------------------------------------


def snippet_to_match(record: CodeSnippetRecord, distance: float | None) -> CodeSnippetMatch:
    return CodeSnippetMatch(
        content_hash=record.content_hash,
        embedded_text=record.embedded_text,
        language=record.language,
        repo=record.repo,
        pr_number=record.pr_number,
        pr_title=record.pr_title,
        file_path=record.file_path,
        start_line=record.start_line,
        end_line=record.end_line,
        created_at=record.created_at,
        distance=distance,
    )


def review_to_match(record: ReviewCommentRecord, distance: float | None) -> ReviewCommentMatch:
    return ReviewCommentMatch(
        repo=record.repo,
        pr_number=record.pr_number,
        thread_id=record.thread_id,
        chunk_index=record.chunk_index,
        chunk_text=record.chunk_text,
        author_login=record.author_login,
        pr_title=record.pr_title,
        file_path=record.file_path,
        start_line=record.start_line,
        end_line=record.end_line,
        author_association=record.author_association,
        created_at=record.created_at,
        distance=distance,
    )


def wiki_to_match(record: WikiPageRecord, distance: float | None) -> WikiKnowledgeMatch:
    return WikiKnowledgeMatch(
        page_id=record.page_id,
        page_title=record.page_title,
        page_url=record.page_url,
        chunk_index=record.chunk_index,
        chunk_text=record.chunk_text,
        raw_text=record.raw_text,
        namespace=record.namespace,
        section_heading=record.section_heading,
        section_anchor=record.section_anchor,
        last_modified=record.last_modified,
        language_tags=tuple(record.language_tags),
        distance=distance,
    )


def issue_to_match(record: IssueRecord, distance: float | None) -> IssueKnowledgeMatch:
    body = (record.body or "")[:ISSUE_BODY_PREVIEW_CHARS]
    return IssueKnowledgeMatch(
        repo=record.repo,
        issue_number=record.issue_number,
        title=record.title,
        chunk_text=f"#{record.issue_number} {record.title}\n\n{body}",
        state=record.state,
        author_login=record.author_login,
        is_pull_request=record.is_pull_request,
        created_at=record.created_at,
        distance=distance,
    )


# Branch helpers --------------------------------------------------------------


def within_threshold(distance: float, threshold: float | None) -> bool:
    """Inclusive boundary: a distance equal to the threshold is kept."""
    return threshold is None or distance <= threshold


async def vector_branch(
    corpus: SourceType,
    query: str,
    embedding_provider: EmbeddingProvider,
    search: Callable[[list[float]], Awaitable[Sequence[VectorHit[R]]]],
    to_match: Callable[[R, float | None], M],
    distance_threshold: float | None,
) -> Result[list[M]]:
    """Embed and run the vector search; ``Err`` says why nothing came back."""
    try:
        embedding = await embedding_provider.generate(query, "query")
    except Exception as exc:
        return Err(EmbeddingUnavailableError("Embedding provider raised", cause=exc, context={"corpus": corpus.value}))
    if embedding is None:
        return Err(EmbeddingUnavailableError("Embedding unavailable", context={"corpus": corpus.value}))
    try:
        hits = await search(embedding.vector)
    except Exception as exc:
        return Err(StoreError("Vector search failed", cause=exc, context={"corpus": corpus.value}))
    return Ok([to_match(hit.record, hit.distance) for hit in hits if within_threshold(hit.distance, distance_threshold)])


async def lexical_branch(
    corpus: SourceType,
    search: Callable[[], Awaitable[Sequence[LexicalHit[R]]]],
    to_match: Callable[[R, float | None], M],
) -> Result[list[M]]:
    try:
        hits = await search()
    except Exception as exc:
        return Err(StoreError("Full-text search failed", cause=exc, context={"corpus": corpus.value}))
    return Ok([to_match(hit.record, None) for hit in hits])


def collapse(result: Result[list[M]], corpus: SourceType, branch: str) -> list[M]:
    """Public fail-open boundary: log an ``Err`` and contribute nothing."""
    if isinstance(result, Ok):
        return result.value
    error: RetrievalError = result.error
    CORPUS_FAILURES.labels(corpus=corpus.value, branch=branch).inc()
    if isinstance(error, EmbeddingUnavailableError) and error.cause is None:
        logger.debug("%s search skipped: %s", corpus.value, error, extra=log_context(corpus=corpus.value, branch=branch))
    else:
        logger.warning(
            "%s %s search failed (fail-open): %s",
            corpus.value,
            branch,
            error,
            extra=log_context(corpus=corpus.value, branch=branch, code=error.code.value),
        )
    return []


async def hybrid_corpus_search(
    corpus: SourceType,
    query: str,
    embedding_provider: EmbeddingProvider,
    vector_search: Callable[[list[float]], Awaitable[Sequence[VectorHit[R]]]],
    lexical_search: Callable[[], Awaitable[Sequence[LexicalHit[R]]]] | None,
    to_match: Callable[[R, float | None], M],
    distance_threshold: float | None,
    top_k: int,
    k: int = DEFAULT_RRF_K,
) -> list[HybridSearchResult[M]]:
    branches = [vector_branch(corpus, query, embedding_provider, vector_search, to_match, distance_threshold)]
    if lexical_search is not None:
        branches.append(lexical_branch(corpus, lexical_search, to_match))
    results = await asyncio.gather(*branches)
    vector_matches = collapse(results[0], corpus, "vector")
    lexical_matches = collapse(results[1], corpus, "lexical") if len(results) > 1 else []
    return hybrid_search_merge(
        vector_matches,
        lexical_matches,
        get_key=lambda match: match.key,
        k=k,
        top_k=top_k,
    )


# Public wrappers -------------------------------------------------------------


async def search_code_snippets(
    store: CodeSnippetStore,
    embedding_provider: EmbeddingProvider,
    query: str,
    repo: str,
    top_k: int,
    distance_threshold: float | None = DEFAULT_DISTANCE_THRESHOLD,
    language: str | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[HybridSearchResult[CodeSnippetMatch]]:
    return await hybrid_corpus_search(
        SourceType.CODE,
        query,
        embedding_provider,
        lambda embedding: store.search_by_embedding(embedding, repo, top_k, language=language),
        lambda: store.search_by_full_text(query, repo, top_k),
        snippet_to_match,
        distance_threshold,
        top_k,
        k,
    )


async def search_review_comments(
    store: ReviewCommentStore,
    embedding_provider: EmbeddingProvider,
    query: str,
    repo: str,
    top_k: int,
    distance_threshold: float | None = DEFAULT_DISTANCE_THRESHOLD,
    k: int = DEFAULT_RRF_K,
) -> list[HybridSearchResult[ReviewCommentMatch]]:
    return await hybrid_corpus_search(
        SourceType.REVIEW_COMMENT,
        query,
        embedding_provider,
        lambda embedding: store.search_by_embedding(embedding, repo, top_k),
        lambda: store.search_by_full_text(query, repo, top_k),
        review_to_match,
        distance_threshold,
        top_k,
        k,
    )


async def search_wiki_pages(
    store: WikiPageStore,
    embedding_provider: EmbeddingProvider,
    query: str,
    top_k: int,
    distance_threshold: float | None = DEFAULT_DISTANCE_THRESHOLD,
    k: int = DEFAULT_RRF_K,
) -> list[HybridSearchResult[WikiKnowledgeMatch]]:
    return await hybrid_corpus_search(
        SourceType.WIKI,
        query,
        embedding_provider,
        lambda embedding: store.search_by_embedding(embedding, top_k),
        lambda: store.search_by_full_text(query, top_k),
        wiki_to_match,
        distance_threshold,
        top_k,
        k,
    )


async def search_issues(
    store: IssueStore,
    embedding_provider: EmbeddingProvider,
    query: str,
    repo: str,
    top_k: int,
    distance_threshold: float | None = DEFAULT_DISTANCE_THRESHOLD,
    state_filter: IssueState | None = None,
    lexical_query: str | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[HybridSearchResult[IssueKnowledgeMatch]]:
    """Issue corpus search; ``lexical_query`` overrides the full-text query."""
    return await hybrid_corpus_search(
        SourceType.ISSUE,
        query,
        embedding_provider,
        lambda embedding: store.search_by_embedding(embedding, repo, top_k, state_filter=state_filter),
        lambda: store.search_by_full_text(lexical_query or query, repo, top_k, state_filter=state_filter),
        issue_to_match,
        distance_threshold,
        top_k,
        k,
    )


__all__ = [
    "DEFAULT_DISTANCE_THRESHOLD",
    "CodeSnippetMatch",
    "ReviewCommentMatch",
    "WikiKnowledgeMatch",
    "IssueKnowledgeMatch",
    "KnowledgeMatch",
    "UnifiedResultChunk",
    "within_threshold",
    "vector_branch",
    "lexical_branch",
    "collapse",
    "hybrid_corpus_search",
    "search_code_snippets",
    "search_review_comments",
    "search_wiki_pages",
    "search_issues",
]
