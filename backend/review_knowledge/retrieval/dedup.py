"""Near-duplicate collapse for unified result chunks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Sequence

from rapidfuzz import fuzz

if TYPE_CHECKING:
    from review_knowledge.retrieval.corpus import UnifiedResultChunk

DEFAULT_DEDUP_THRESHOLD = 0.9

DedupMode = Literal["within-corpus", "cross-corpus"]


def text_similarity(a: str, b: str) -> float:
    """Token-sort similarity in ``[0, 1]``; two empty texts are identical."""
    if not a.strip() and not b.strip():
        return 1.0
    return fuzz.token_sort_ratio(a, b, processor=str.lower) / 100.0


def deduplicate_chunks(
    chunks: Sequence["UnifiedResultChunk"],
    mode: DedupMode,
    threshold: float = DEFAULT_DEDUP_THRESHOLD,
) -> list["UnifiedResultChunk"]:
    """Drop chunks whose text nearly matches a higher-scoring kept chunk.

    The survivor records each dropped chunk's label in ``alternate_sources``.
    ``within-corpus`` only compares chunks from the same source.
    """
    if len(chunks) <= 1:
        return list(chunks)
    ordered = sorted(chunks, key=lambda chunk: chunk.rrf_score, reverse=True)
    if mode == "cross-corpus":
        return _collapse(ordered, threshold)

    groups: dict[object, list["UnifiedResultChunk"]] = {}
    for chunk in ordered:
        groups.setdefault(chunk.source, []).append(chunk)
    kept: list["UnifiedResultChunk"] = []
    for group in groups.values():
        kept.extend(_collapse(group, threshold))
    kept.sort(key=lambda chunk: chunk.rrf_score, reverse=True)
    return kept


def _collapse(ordered: Sequence["UnifiedResultChunk"], threshold: float) -> list["UnifiedResultChunk"]:
    kept: list["UnifiedResultChunk"] = []
    for candidate in ordered:
        survivor = next((chunk for chunk in kept if text_similarity(candidate.text, chunk.text) >= threshold), None)
        if survivor is None:
            kept.append(candidate)
        elif candidate.source_label not in survivor.alternate_sources:
            survivor.alternate_sources.append(candidate.source_label)
    return kept


__all__ = ["DEFAULT_DEDUP_THRESHOLD", "DedupMode", "text_similarity", "deduplicate_chunks"]
