"""Hybrid search utilities: reciprocal rank fusion and BM25 ranking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Sequence, Tuple, TypeVar

from rank_bm25 import BM25Okapi

T = TypeVar("T")

DEFAULT_RRF_K = 60
_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class HybridSearchResult(Generic[T]):
    """One fused item; a ``None`` rank means the item was absent from that list."""

    item: T
    vector_rank: int | None
    bm25_rank: int | None
    hybrid_score: float


def rrf_score(rank: int, k: int = DEFAULT_RRF_K) -> float:
    """Contribution of a 0-indexed position to a fused score."""
    return 1.0 / (k + rank)


def hybrid_search_merge(
    vector_results: Sequence[T],
    bm25_results: Sequence[T],
    get_key: Callable[[T], Hashable],
    k: int = DEFAULT_RRF_K,
    top_k: int | None = None,
) -> list[HybridSearchResult[T]]:
    """Fuse a vector-ranked and a lexical-ranked list for one corpus.

    Both inputs are best-first. Items sharing a key are merged and their
    positional scores summed; the first occurrence's payload is kept. The
    output is sorted by descending score with ties in encounter order.
    """
    merged: dict[Hashable, HybridSearchResult[T]] = {}

    for rank, item in enumerate(vector_results):
        key = get_key(item)
        entry = merged.get(key)
        if entry is None:
            merged[key] = HybridSearchResult(item=item, vector_rank=rank, bm25_rank=None, hybrid_score=rrf_score(rank, k))
        elif entry.vector_rank is None:
            entry.vector_rank = rank
            entry.hybrid_score += rrf_score(rank, k)

    for rank, item in enumerate(bm25_results):
        key = get_key(item)
        entry = merged.get(key)
        if entry is None:
            merged[key] = HybridSearchResult(item=item, vector_rank=None, bm25_rank=rank, hybrid_score=rrf_score(rank, k))
        elif entry.bm25_rank is None:
            entry.bm25_rank = rank
            entry.hybrid_score += rrf_score(rank, k)

    fused = sorted(merged.values(), key=lambda entry: entry.hybrid_score, reverse=True)
    if top_k is not None:
        fused = fused[:top_k]
    return fused


def bm25_rank(query: str, documents: Sequence[Tuple[str, str]]) -> list[Tuple[str, float]]:
    """Score ``(doc_id, text)`` pairs against ``query``, best first.

    Documents sharing no term with the query are dropped.
    """
    if not documents:
        return []
    query_tokens = tokenize(query)
    if not query_tokens:
        return []
    corpus_tokens = [tokenize(text) or [""] for _, text in documents]
    model = BM25Okapi(corpus_tokens)
    scores = model.get_scores(query_tokens)
    query_terms = set(query_tokens)
    ranked = [
        (doc_id, float(score))
        for (doc_id, _), score, tokens in zip(documents, scores, corpus_tokens)
        if query_terms.intersection(tokens)
    ]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


__all__ = ["DEFAULT_RRF_K", "HybridSearchResult", "rrf_score", "hybrid_search_merge", "bm25_rank", "tokenize"]
