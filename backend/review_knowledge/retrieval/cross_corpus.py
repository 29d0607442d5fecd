"""Cross-corpus fusion: RRF across corpora, corpus weighting and language affinity."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Sequence

from review_knowledge.models.dto import TriggerType
from review_knowledge.models.entities import SourceType
from review_knowledge.retrieval.corpus import KnowledgeMatch, UnifiedResultChunk
from review_knowledge.retrieval.dedup import DEFAULT_DEDUP_THRESHOLD, deduplicate_chunks
from review_knowledge.retrieval.hybrid import DEFAULT_RRF_K, HybridSearchResult, rrf_score
from review_knowledge.retrieval.language import language_boost, language_shares
from review_knowledge.utils.time import utc_now

RECENCY_BOOST_DAYS = 30
RECENCY_BOOST_FACTOR = 0.15
CONTEXT_SEPARATOR = "\n\n"

SOURCE_WEIGHTS: Mapping[str, Mapping[SourceType, float]] = {
    "pr_review": {SourceType.CODE: 1.2, SourceType.REVIEW_COMMENT: 1.2, SourceType.WIKI: 1.0},
    "issue": {SourceType.CODE: 1.0, SourceType.REVIEW_COMMENT: 1.0, SourceType.WIKI: 1.2},
    "question": {SourceType.CODE: 1.0, SourceType.REVIEW_COMMENT: 1.0, SourceType.WIKI: 1.2},
    "slack": {SourceType.CODE: 1.0, SourceType.REVIEW_COMMENT: 1.0, SourceType.WIKI: 1.0},
}


@dataclass(slots=True)
class RankedSourceList:
    """One corpus's items, best first."""

    source: SourceType
    items: list[UnifiedResultChunk]


def to_source_list(source: SourceType, results: Sequence[HybridSearchResult[KnowledgeMatch]]) -> RankedSourceList:
    """Unify a corpus's hybrid results, carrying the hybrid score as the initial score."""
    items: list[UnifiedResultChunk] = []
    for result in results:
        chunk = result.item.to_unified()
        chunk.rrf_score = result.hybrid_score
        items.append(chunk)
    return RankedSourceList(source=source, items=items)


def cross_corpus_rrf(
    source_lists: Sequence[RankedSourceList],
    k: int = DEFAULT_RRF_K,
    top_k: int | None = None,
    recency_boost_days: int = RECENCY_BOOST_DAYS,
    recency_boost_factor: float = RECENCY_BOOST_FACTOR,
    now: datetime | None = None,
) -> list[UnifiedResultChunk]:
    """Fuse corpus lists by position; items sharing a key sum their contributions.

    Items created within ``recency_boost_days`` are multiplied by
    ``1 + recency_boost_factor``. Inputs are not mutated.
    """
    merged: dict[object, UnifiedResultChunk] = {}
    for source_list in source_lists:
        for rank, item in enumerate(source_list.items):
            contribution = rrf_score(rank, k)
            existing = merged.get(item.key)
            if existing is None:
                merged[item.key] = replace(item, rrf_score=contribution, alternate_sources=list(item.alternate_sources))
            else:
                existing.rrf_score += contribution

    current = now or utc_now()
    cutoff = timedelta(days=recency_boost_days)
    for chunk in merged.values():
        if chunk.created_at is None:
            continue
        age = current - chunk.created_at
        if timedelta(0) <= age <= cutoff:
            chunk.rrf_score *= 1 + recency_boost_factor

    fused = sorted(merged.values(), key=lambda chunk: chunk.rrf_score, reverse=True)
    return fused[:top_k] if top_k is not None else fused


def apply_source_weights(chunks: Iterable[UnifiedResultChunk], trigger_type: TriggerType | None) -> None:
    """Scale scores by trigger; an unset trigger is treated as a PR review."""
    weights = SOURCE_WEIGHTS.get(trigger_type or "pr_review", SOURCE_WEIGHTS["slack"])
    for chunk in chunks:
        chunk.rrf_score *= weights.get(chunk.source, 1.0)


def apply_language_affinity(chunks: Iterable[UnifiedResultChunk], pr_languages: Sequence[str]) -> None:
    """Add the language boost to each chunk; scores never go down."""
    shares = language_shares(pr_languages)
    if not shares:
        return
    for chunk in chunks:
        chunk.rrf_score += language_boost(chunk.languages, shares, chunk.rrf_score)


def assemble_context_window(chunks: Iterable[UnifiedResultChunk], max_chars: int) -> str:
    """Render ``"{label}: {text}"`` entries until the next one would pass ``max_chars``."""
    parts: list[str] = []
    total = 0
    for chunk in chunks:
        entry = f"{chunk.source_label}: {chunk.text}"
        needed = len(entry) + (len(CONTEXT_SEPARATOR) if parts else 0)
        if total + needed > max_chars:
            break
        parts.append(entry)
        total += needed
    return CONTEXT_SEPARATOR.join(parts)


class CrossCorpusRanker:
    """Blend per-corpus rankings into one trigger- and language-aware list."""

    def __init__(
        self,
        k: int = DEFAULT_RRF_K,
        dedup_threshold: float = DEFAULT_DEDUP_THRESHOLD,
        recency_boost_days: int = RECENCY_BOOST_DAYS,
        recency_boost_factor: float = RECENCY_BOOST_FACTOR,
    ) -> None:
        self.k = k
        self.dedup_threshold = dedup_threshold
        self.recency_boost_days = recency_boost_days
        self.recency_boost_factor = recency_boost_factor

    def rank(
        self,
        source_lists: Sequence[RankedSourceList],
        top_k: int,
        trigger_type: TriggerType | None = None,
        pr_languages: Sequence[str] = (),
        now: datetime | None = None,
    ) -> list[UnifiedResultChunk]:
        deduped = [
            RankedSourceList(
                source=source_list.source,
                items=deduplicate_chunks(source_list.items, "within-corpus", self.dedup_threshold),
            )
            for source_list in source_lists
            if source_list.items
        ]
        fused = cross_corpus_rrf(
            deduped,
            k=self.k,
            top_k=top_k * 2,
            recency_boost_days=self.recency_boost_days,
            recency_boost_factor=self.recency_boost_factor,
            now=now,
        )
        apply_source_weights(fused, trigger_type)
        apply_language_affinity(fused, pr_languages)
        fused.sort(key=lambda chunk: chunk.rrf_score, reverse=True)
        return deduplicate_chunks(fused[:top_k], "cross-corpus", self.dedup_threshold)


__all__ = [
    "SOURCE_WEIGHTS",
    "RankedSourceList",
    "to_source_list",
    "cross_corpus_rrf",
    "apply_source_weights",
    "apply_language_affinity",
    "assemble_context_window",
    "CrossCorpusRanker",
]
