"""Top-level cross-corpus retrieval."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from review_knowledge.core.config import Settings, get_settings
from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.metrics import RETRIEVAL_LATENCY, RETRIEVAL_REQUESTS
from review_knowledge.core.protocols import (
    CodeSnippetStore,
    EmbeddingProvider,
    IssueStore,
    ReviewCommentStore,
    WikiPageStore,
)
from review_knowledge.models.dto import Provenance, RetrieveOptions
from review_knowledge.models.entities import SourceType
from review_knowledge.retrieval.adaptive import ThresholdDecision, compute_adaptive_threshold
from review_knowledge.retrieval.corpus import (
    CodeSnippetMatch,
    IssueKnowledgeMatch,
    KnowledgeMatch,
    ReviewCommentMatch,
    UnifiedResultChunk,
    WikiKnowledgeMatch,
    search_code_snippets,
    search_issues,
    search_review_comments,
    search_wiki_pages,
)
from review_knowledge.retrieval.cross_corpus import CrossCorpusRanker, assemble_context_window, to_source_list
from review_knowledge.retrieval.hybrid import HybridSearchResult

logger = get_logger(__name__)

CorpusSearch = Callable[[str], Awaitable[list[HybridSearchResult[KnowledgeMatch]]]]


@dataclass(slots=True)
class RetrieveResult:
    unified_results: list[UnifiedResultChunk]
    context_window: str
    provenance: Provenance
    code_snippets: list[CodeSnippetMatch] = field(default_factory=list)
    review_precedents: list[ReviewCommentMatch] = field(default_factory=list)
    wiki_knowledge: list[WikiKnowledgeMatch] = field(default_factory=list)
    issue_knowledge: list[IssueKnowledgeMatch] = field(default_factory=list)


def merge_query_results(
    per_query: Sequence[Sequence[HybridSearchResult[KnowledgeMatch]]],
) -> list[HybridSearchResult[KnowledgeMatch]]:
    """Union one corpus's results across queries, keeping each key's best score."""
    best: dict[object, HybridSearchResult[KnowledgeMatch]] = {}
    for results in per_query:
        for result in results:
            key = result.item.key
            current = best.get(key)
            if current is None or result.hybrid_score > current.hybrid_score:
                best[key] = result
    return sorted(best.values(), key=lambda result: result.hybrid_score, reverse=True)


def apply_threshold(
    results: Sequence[HybridSearchResult[KnowledgeMatch]], threshold: float
) -> list[HybridSearchResult[KnowledgeMatch]]:
    """Drop vector matches beyond ``threshold``; lexical-only matches pass."""
    return [result for result in results if result.item.distance is None or result.item.distance <= threshold]


class Retriever:
    """Query every configured corpus and fuse the results into one context."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        settings: Settings | None = None,
        code_store: CodeSnippetStore | None = None,
        review_store: ReviewCommentStore | None = None,
        wiki_store: WikiPageStore | None = None,
        issue_store: IssueStore | None = None,
    ) -> None:
        self.embedding_provider = embedding_provider
        self.settings = settings or get_settings()
        self.code_store = code_store
        self.review_store = review_store
        self.wiki_store = wiki_store
        self.issue_store = issue_store

    async def retrieve(self, options: RetrieveOptions) -> RetrieveResult | None:
        """Return ranked context, or ``None`` when disabled, given no queries, or on an internal error."""
        trigger = options.trigger_type or "pr_review"
        if not self.settings.retrieval_enabled:
            RETRIEVAL_REQUESTS.labels(trigger=trigger, outcome="disabled").inc()
            return None
        if not options.queries:
            RETRIEVAL_REQUESTS.labels(trigger=trigger, outcome="no_queries").inc()
            return None

        started = time.perf_counter()
        try:
            result = await self._retrieve(options, trigger)
        except Exception as exc:
            logger.warning("Retrieval failed (fail-open): %s", exc, extra=log_context(repo=options.repo, trigger=trigger))
            RETRIEVAL_REQUESTS.labels(trigger=trigger, outcome="error").inc()
            return None
        finally:
            RETRIEVAL_LATENCY.labels(trigger=trigger).observe(time.perf_counter() - started)
        RETRIEVAL_REQUESTS.labels(trigger=trigger, outcome="ok" if result.unified_results else "empty").inc()
        return result

    async def _retrieve(self, options: RetrieveOptions, trigger: str) -> RetrieveResult:
        settings = self.settings
        top_k = options.top_k or settings.top_k
        distance_threshold = (
            options.distance_threshold if options.distance_threshold is not None else settings.distance_threshold
        )
        adaptive = options.adaptive if options.adaptive is not None else settings.adaptive
        max_context_chars = (
            options.max_context_chars if options.max_context_chars is not None else settings.max_context_chars
        )
        k = options.k or settings.rrf_k

        searches = self._corpus_searches(options, distance_threshold, k)
        per_corpus = await self._run_searches(searches, options.queries)

        candidates = [result for results in per_corpus.values() for result in results]
        decision = ThresholdDecision(distance_threshold, "configured", len(candidates))
        if adaptive:
            distances = [result.item.distance for result in candidates if result.item.distance is not None]
            decision = compute_adaptive_threshold(distances, distance_threshold)
            per_corpus = {source: apply_threshold(results, decision.threshold) for source, results in per_corpus.items()}

        ranker = CrossCorpusRanker(k=k, dedup_threshold=settings.dedup_threshold)
        unified = ranker.rank(
            [to_source_list(source, results) for source, results in per_corpus.items()],
            top_k=top_k,
            trigger_type=trigger,
            pr_languages=options.pr_languages,
        )
        context_window = assemble_context_window(unified, max_context_chars)

        provenance = Provenance(
            query_count=len(options.queries),
            candidate_count=len(candidates),
            threshold_method=decision.method,
            threshold_value=decision.threshold,
            hybrid_search_used=True,
            unified_result_count=len(unified),
            sources=sorted({chunk.source for chunk in unified}, key=lambda source: source.value),
            corpus_counts={source.value: len(results) for source, results in per_corpus.items()},
            rrf_k=k,
            dedup_threshold=settings.dedup_threshold,
            trigger_type=trigger,
        )
        logger.info(
            "Retrieved %d unified results from %d corpora",
            len(unified),
            len(per_corpus),
            extra=log_context(repo=options.repo, trigger=trigger, threshold_method=decision.method),
        )

        def matches(source: SourceType) -> list:
            return [result.item for result in per_corpus.get(source, [])]

        return RetrieveResult(
            unified_results=unified,
            context_window=context_window,
            provenance=provenance,
            code_snippets=matches(SourceType.CODE),
            review_precedents=matches(SourceType.REVIEW_COMMENT),
            wiki_knowledge=matches(SourceType.WIKI),
            issue_knowledge=matches(SourceType.ISSUE),
        )

    def _corpus_searches(
        self, options: RetrieveOptions, distance_threshold: float, k: int
    ) -> dict[SourceType, CorpusSearch]:
        corpus_top_k = self.settings.corpus_top_k
        provider = self.embedding_provider
        searches: dict[SourceType, CorpusSearch] = {}
        if self.code_store is not None:
            store = self.code_store
            searches[SourceType.CODE] = lambda query: search_code_snippets(
                store, provider, query, options.repo, corpus_top_k, distance_threshold, options.language, k
            )
        if self.review_store is not None:
            review_store = self.review_store
            searches[SourceType.REVIEW_COMMENT] = lambda query: search_review_comments(
                review_store, provider, query, options.repo, corpus_top_k, distance_threshold, k
            )
        if self.wiki_store is not None:
            wiki_store = self.wiki_store
            searches[SourceType.WIKI] = lambda query: search_wiki_pages(
                wiki_store, provider, query, corpus_top_k, distance_threshold, k
            )
        if self.issue_store is not None:
            issue_store = self.issue_store
            searches[SourceType.ISSUE] = lambda query: search_issues(
                issue_store, provider, query, options.repo, corpus_top_k, distance_threshold, k=k
            )
        return searches

    async def _run_searches(
        self, searches: dict[SourceType, CorpusSearch], queries: Sequence[str]
    ) -> dict[SourceType, list[HybridSearchResult[KnowledgeMatch]]]:
        """Run every (corpus, query) pair concurrently; a failed pair contributes nothing."""
        pairs = [(source, query) for source in searches for query in queries]
        outcomes = await asyncio.gather(
            *(searches[source](query) for source, query in pairs),
            return_exceptions=True,
        )
        per_query: dict[SourceType, list[list[HybridSearchResult[KnowledgeMatch]]]] = {source: [] for source in searches}
        for (source, query), outcome in zip(pairs, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "Corpus search raised (fail-open): %s",
                    outcome,
                    extra=log_context(corpus=source.value),
                )
                continue
            per_query[source].append(outcome)
        return {source: merge_query_results(lists) for source, lists in per_query.items()}


__all__ = ["Retriever", "RetrieveResult", "merge_query_results", "apply_threshold"]
