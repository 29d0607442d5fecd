"""Troubleshooting retrieval: resolved issues first, wiki pages as fallback.

Stages run in order ``EMBEDDING -> SEARCHING -> FILTERING -> ASSEMBLING`` and
end in ``DONE`` with issue threads, or fall through ``WIKI_FALLBACK`` to
``DONE`` with wiki pages or ``NO_MATCH``. Nothing here raises to the caller
once the query has been validated.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Sequence

from review_knowledge.core.config import Settings, get_settings
from review_knowledge.core.errors import Err, Ok, Result, StoreError
from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.metrics import TROUBLESHOOTING_OUTCOMES
from review_knowledge.core.protocols import EmbeddingProvider, IssueStore, WikiPageStore
from review_knowledge.models.dto import TroubleshootingQuery
from review_knowledge.models.entities import IssueRecord, LexicalHit, SourceType, VectorHit
from review_knowledge.retrieval.corpus import (
    DEFAULT_DISTANCE_THRESHOLD,
    WikiKnowledgeMatch,
    collapse,
    vector_branch,
    wiki_to_match,
)
from review_knowledge.retrieval.hybrid import HybridSearchResult, hybrid_search_merge
from review_knowledge.retrieval.thread_assembler import ThreadAssembler

logger = get_logger(__name__)

ISSUE_SEARCH_TOP_K = 10
WIKI_FALLBACK_TOP_K = 2
WIKI_FALLBACK_CANDIDATES = 10
FULL_TEXT_BODY_CHARS = 200
WIKI_QUERY_BODY_CHARS = 500

_QUOTED_RE = re.compile(r'"([^"]{5,})"')
_SINGLE_QUOTED_RE = re.compile(r"'([^']{5,})'")
_ERROR_PHRASE_RE = re.compile(r"(?:error|exception|crash|fatal|failed)[:\s]+\S+(?:\s+\S+){0,3}", re.IGNORECASE)
_PASCAL_CASE_RE = re.compile(r"\b[A-Z][a-zA-Z]{2,}(?:[A-Z][a-z]+)+\b")
_ALL_CAPS_RE = re.compile(r"\b[A-Z]{2,}\b")


class TroubleshootingStage(str, Enum):
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    FILTERING = "filtering"
    ASSEMBLING = "assembling"
    WIKI_FALLBACK = "wiki_fallback"
    DONE = "done"
    NO_MATCH = "no_match"


@dataclass(slots=True)
class TroubleshootingMatch:
    issue_number: int
    title: str
    body: str
    tail_comments: list[str]
    semantic_comments: list[str]
    similarity: float
    total_chars: int


@dataclass(slots=True)
class TroubleshootingResult:
    source: Literal["issues", "wiki"]
    matches: list[TroubleshootingMatch] = field(default_factory=list)
    wiki_results: list[WikiKnowledgeMatch] = field(default_factory=list)


@dataclass(slots=True)
class TroubleshootingOutcome:
    """Final stage plus the result; ``result`` is ``None`` unless the stage is ``DONE``."""

    stage: TroubleshootingStage
    result: TroubleshootingResult | None = None
    stages: list[TroubleshootingStage] = field(default_factory=list)


def extract_keywords(title: str, body: str | None) -> str:
    """Build a lexical query from title words and error-looking fragments of the body."""
    keywords: dict[str, None] = {}
    for word in title.split():
        if len(word) > 2:
            keywords[word] = None
    if body:
        for match in _QUOTED_RE.finditer(body):
            keywords[match.group(1)] = None
        for match in _SINGLE_QUOTED_RE.finditer(body):
            keywords[match.group(1)] = None
        for match in _ERROR_PHRASE_RE.finditer(body):
            keywords[match.group(0)] = None
        for match in _PASCAL_CASE_RE.finditer(body):
            keywords[match.group(0)] = None
        for match in _ALL_CAPS_RE.finditer(body):
            keywords[match.group(0)] = None
    return " ".join(keywords)


class TroubleshootingOrchestrator:
    """Find prior resolutions for an issue from closed issues, else the wiki."""

    def __init__(
        self,
        issue_store: IssueStore,
        embedding_provider: EmbeddingProvider,
        wiki_store: WikiPageStore | None = None,
        settings: Settings | None = None,
        assembler: ThreadAssembler | None = None,
    ) -> None:
        self.issue_store = issue_store
        self.embedding_provider = embedding_provider
        self.wiki_store = wiki_store
        self.settings = settings or get_settings()
        self.assembler = assembler or ThreadAssembler(issue_store)

    async def retrieve(self, query: TroubleshootingQuery) -> TroubleshootingResult | None:
        if not self.settings.troubleshooting_enabled:
            TROUBLESHOOTING_OUTCOMES.labels(source="disabled").inc()
            return None
        outcome = await self.run(query)
        TROUBLESHOOTING_OUTCOMES.labels(source=outcome.result.source if outcome.result else "none").inc()
        return outcome.result

    async def run(self, query: TroubleshootingQuery) -> TroubleshootingOutcome:
        stages = [TroubleshootingStage.EMBEDDING]
        body = query.body or ""
        try:
            embedding = await self.embedding_provider.generate(f"{query.title}\n\n{body}", "query")
        except Exception as exc:
            logger.warning("Troubleshooting embedding failed (fail-open): %s", exc, extra=log_context(repo=query.repo))
            embedding = None
        if embedding is None:
            logger.debug("Troubleshooting retrieval skipped: no query embedding", extra=log_context(repo=query.repo))
            stages.append(TroubleshootingStage.NO_MATCH)
            return TroubleshootingOutcome(TroubleshootingStage.NO_MATCH, None, stages)

        stages.append(TroubleshootingStage.SEARCHING)
        vector_result, lexical_result = await asyncio.gather(
            self._search_vector(embedding.vector, query.repo),
            self._search_full_text(f"{query.title} {body[:FULL_TEXT_BODY_CHARS]}", query.repo),
        )
        vector_hits = collapse(vector_result, SourceType.ISSUE, "vector")
        lexical_hits = collapse(lexical_result, SourceType.ISSUE, "lexical")

        stages.append(TroubleshootingStage.FILTERING)
        candidates = self._filter(vector_hits, lexical_hits)

        if candidates:
            stages.append(TroubleshootingStage.ASSEMBLING)
            matches = await self._assemble(candidates, embedding.vector)
            if matches:
                stages.append(TroubleshootingStage.DONE)
                logger.debug("Troubleshooting matches found", extra=log_context(match_count=len(matches)))
                return TroubleshootingOutcome(
                    TroubleshootingStage.DONE, TroubleshootingResult(source="issues", matches=matches), stages
                )

        stages.append(TroubleshootingStage.WIKI_FALLBACK)
        wiki_results = await self._wiki_fallback(query)
        if not wiki_results:
            logger.debug("No troubleshooting matches found", extra=log_context(repo=query.repo))
            stages.append(TroubleshootingStage.NO_MATCH)
            return TroubleshootingOutcome(TroubleshootingStage.NO_MATCH, None, stages)
        stages.append(TroubleshootingStage.DONE)
        return TroubleshootingOutcome(
            TroubleshootingStage.DONE, TroubleshootingResult(source="wiki", wiki_results=wiki_results), stages
        )

    async def _search_vector(self, embedding: Sequence[float], repo: str) -> Result[list[VectorHit[IssueRecord]]]:
        try:
            hits = await self.issue_store.search_by_embedding(embedding, repo, ISSUE_SEARCH_TOP_K, state_filter="closed")
        except Exception as exc:
            return Err(StoreError("Closed issue vector search failed", cause=exc))
        return Ok(list(hits))

    async def _search_full_text(self, text: str, repo: str) -> Result[list[LexicalHit[IssueRecord]]]:
        try:
            hits = await self.issue_store.search_by_full_text(text, repo, ISSUE_SEARCH_TOP_K, state_filter="closed")
        except Exception as exc:
            return Err(StoreError("Closed issue full-text search failed", cause=exc))
        return Ok(list(hits))

    def _filter(
        self,
        vector_hits: Sequence[VectorHit[IssueRecord]],
        lexical_hits: Sequence[LexicalHit[IssueRecord]],
    ) -> list[tuple[IssueRecord, float]]:
        """RRF-merge, apply the similarity floor, drop pull requests, cap the count.

        Returns ``(record, similarity)`` pairs in RRF order. Lexical-only
        matches pass the floor and are weighted at the floor similarity.
        """
        floor = self.settings.troubleshooting_similarity_threshold
        max_distance = 1 - floor
        vector_distance = {hit.record.key: hit.distance for hit in vector_hits}
        merged: list[HybridSearchResult[IssueRecord]] = hybrid_search_merge(
            [hit.record for hit in vector_hits],
            [hit.record for hit in lexical_hits],
            get_key=lambda record: record.key,
        )
        kept: list[tuple[IssueRecord, float]] = []
        for entry in merged:
            record = entry.item
            distance = vector_distance.get(record.key)
            if distance is not None and distance > max_distance:
                continue
            if record.is_pull_request:
                continue
            kept.append((record, 1 - distance if distance is not None else floor))
        return kept[: self.settings.troubleshooting_max_results]

    async def _assemble(
        self,
        candidates: Sequence[tuple[IssueRecord, float]],
        embedding: Sequence[float],
    ) -> list[TroubleshootingMatch]:
        results = await self.assembler.assemble_many(
            [record.key for record, _ in candidates],
            [similarity for _, similarity in candidates],
            embedding,
            self.settings.troubleshooting_budget_chars,
        )
        matches: list[TroubleshootingMatch] = []
        for (record, similarity), result in zip(candidates, results):
            if isinstance(result, Err):
                logger.warning(
                    "Failed to assemble thread, skipping: %s",
                    result.error,
                    extra=log_context(issue=record.issue_number, code=result.error.code.value),
                )
                continue
            thread = result.value
            matches.append(
                TroubleshootingMatch(
                    issue_number=thread.issue_number,
                    title=thread.title,
                    body=thread.body,
                    tail_comments=thread.tail_comments,
                    semantic_comments=thread.semantic_comments,
                    similarity=similarity,
                    total_chars=thread.total_chars,
                )
            )
        return matches

    async def _wiki_fallback(self, query: TroubleshootingQuery) -> list[WikiKnowledgeMatch]:
        if self.wiki_store is None:
            logger.debug("No wiki store available for fallback")
            return []
        body = query.body or ""
        queries = [f"{query.title} {body[:WIKI_QUERY_BODY_CHARS]}".strip()]
        keyword_query = extract_keywords(query.title, query.body)
        if keyword_query:
            queries.append(keyword_query)

        wiki_store = self.wiki_store
        outcomes = await asyncio.gather(
            *(
                vector_branch(
                    SourceType.WIKI,
                    text,
                    self.embedding_provider,
                    lambda embedding: wiki_store.search_by_embedding(embedding, WIKI_FALLBACK_CANDIDATES),
                    wiki_to_match,
                    DEFAULT_DISTANCE_THRESHOLD,
                )
                for text in queries
            )
        )
        best: dict[int, WikiKnowledgeMatch] = {}
        for outcome in outcomes:
            for match in collapse(outcome, SourceType.WIKI, "fallback"):
                existing = best.get(match.page_id)
                if existing is None or match.distance < existing.distance:
                    best[match.page_id] = match
        ranked = sorted(best.values(), key=lambda match: match.distance)
        return ranked[:WIKI_FALLBACK_TOP_K]


__all__ = [
    "TroubleshootingStage",
    "TroubleshootingMatch",
    "TroubleshootingResult",
    "TroubleshootingOutcome",
    "extract_keywords",
    "TroubleshootingOrchestrator",
]
