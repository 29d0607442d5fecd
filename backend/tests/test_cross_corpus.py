"""Tests for language affinity, cross-corpus fusion and near-duplicate collapse."""

from datetime import datetime, timedelta, timezone

import pytest

from review_knowledge.models.entities import ChunkKey, SourceType
from review_knowledge.retrieval.corpus import UnifiedResultChunk
from review_knowledge.retrieval.cross_corpus import (
    CrossCorpusRanker,
    RankedSourceList,
    apply_language_affinity,
    apply_source_weights,
    assemble_context_window,
    cross_corpus_rrf,
)
from review_knowledge.retrieval.dedup import deduplicate_chunks, text_similarity
from review_knowledge.retrieval.language import classify_languages, language_boost, language_shares
from review_knowledge.utils.hashing import content_hash

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
OLD = NOW - timedelta(days=400)


def _chunk(name: str, source: SourceType = SourceType.CODE, text: str | None = None, **overrides) -> UnifiedResultChunk:
    values = dict(
        key=ChunkKey(source, name),
        source=source,
        source_label=f"[{source.value}: {name}]",
        text=text if text is not None else content_hash(name),
        created_at=OLD,
    )
    values.update(overrides)
    return UnifiedResultChunk(**values)


def test_language_shares_and_classification() -> None:
    grouped = classify_languages(["a.py", "b.py", "c.ts", "README"])
    assert grouped == {"python": ["a.py", "b.py"], "typescript": ["c.ts"]}
    shares = language_shares(["python", "python", "typescript", "unknown"])
    assert shares == pytest.approx({"python": 2 / 3, "typescript": 1 / 3})


def test_language_boost_exact_related_and_absent() -> None:
    shares = {"typescript": 1.0}
    assert language_boost(["typescript"], shares, 1.0) == pytest.approx(0.5)
    assert language_boost(["javascript"], shares, 1.0) == pytest.approx(0.25)
    assert language_boost(["rust"], shares, 1.0) == 0.0
    assert language_boost([], shares, 1.0) == 0.0


def test_matching_language_outranks_otherwise_equal_item() -> None:
    python_item = _chunk("a", languages=("python",), rrf_score=0.02)
    go_item = _chunk("b", languages=("go",), rrf_score=0.02)
    apply_language_affinity([python_item, go_item], ["python"])
    assert python_item.rrf_score > go_item.rrf_score


def test_absent_language_is_never_penalized() -> None:
    with_context = _chunk("a", languages=("rust",), rrf_score=0.03)
    without_context = _chunk("a", languages=("rust",), rrf_score=0.03)
    apply_language_affinity([with_context], ["python", "typescript"])
    apply_language_affinity([without_context], [])
    assert with_context.rrf_score >= without_context.rrf_score


def test_source_weights_follow_trigger() -> None:
    code, wiki = _chunk("a", rrf_score=1.0), _chunk("b", SourceType.WIKI, rrf_score=1.0)
    apply_source_weights([code, wiki], "pr_review")
    assert (code.rrf_score, wiki.rrf_score) == pytest.approx((1.2, 1.0))

    code, wiki = _chunk("a", rrf_score=1.0), _chunk("b", SourceType.WIKI, rrf_score=1.0)
    apply_source_weights([code, wiki], "question")
    assert (code.rrf_score, wiki.rrf_score) == pytest.approx((1.0, 1.2))

    issue = _chunk("c", SourceType.ISSUE, rrf_score=1.0)
    apply_source_weights([issue], "issue")
    assert issue.rrf_score == pytest.approx(1.0)


def test_unset_trigger_weights_like_pr_review() -> None:
    ranker = CrossCorpusRanker(k=60)
    lists = [
        RankedSourceList(SourceType.CODE, [_chunk("a")]),
        RankedSourceList(SourceType.WIKI, [_chunk("b", SourceType.WIKI)]),
    ]

    ranked = ranker.rank(lists, top_k=2, trigger_type=None, now=NOW)

    assert [chunk.source for chunk in ranked] == [SourceType.CODE, SourceType.WIKI]
    assert ranked[0].rrf_score == pytest.approx(1.2 / 60)
    assert ranked[1].rrf_score == pytest.approx(1 / 60)


def test_cross_corpus_rrf_sums_shared_keys_and_boosts_recent() -> None:
    shared = _chunk("shared")
    lists = [
        RankedSourceList(SourceType.CODE, [shared, _chunk("code-only")]),
        RankedSourceList(SourceType.REVIEW_COMMENT, [_chunk("recent", SourceType.REVIEW_COMMENT, created_at=NOW), shared]),
    ]
    fused = cross_corpus_rrf(lists, k=60, now=NOW)
    scores = {chunk.key.ontology_key: chunk.rrf_score for chunk in fused}

    assert scores["shared"] == pytest.approx(1 / 60 + 1 / 61)
    assert scores["recent"] == pytest.approx(1.15 / 60)
    assert scores["code-only"] == pytest.approx(1 / 61)
    assert fused[0].key.ontology_key == "shared"
    # inputs are left untouched
    assert shared.rrf_score == 0.0


def test_near_duplicates_collapse_into_alternate_sources() -> None:
    text = "Always close the database handle inside a finally block"
    high = _chunk("a", text=text, rrf_score=0.5)
    low = _chunk("b", SourceType.WIKI, text=text.lower() + ".", rrf_score=0.1)
    other = _chunk("c", text="Unrelated advice about logging", rrf_score=0.3)

    assert text_similarity(high.text, low.text) >= 0.9
    within = deduplicate_chunks([high, low, other], "within-corpus")
    assert len(within) == 3

    cross = deduplicate_chunks([low, other, high], "cross-corpus")
    assert [chunk.key.ontology_key for chunk in cross] == ["a", "c"]
    assert high.alternate_sources == ["[wiki: b]"]


def test_context_window_respects_budget() -> None:
    chunks = [_chunk("a", text="x" * 10), _chunk("b", text="y" * 10), _chunk("c", text="z" * 10)]
    first = f"{chunks[0].source_label}: {chunks[0].text}"
    window = assemble_context_window(chunks, len(first) * 2 + 1)
    assert window.split("\n\n") == [first]
    assert len(assemble_context_window(chunks, 10_000).split("\n\n")) == 3
    assert assemble_context_window(chunks, 5) == ""


def test_ranker_applies_weights_and_top_k() -> None:
    ranker = CrossCorpusRanker(k=60)
    lists = [
        RankedSourceList(SourceType.CODE, [_chunk("code-1"), _chunk("code-2")]),
        RankedSourceList(SourceType.WIKI, [_chunk("wiki-1", SourceType.WIKI)]),
    ]
    ranked = ranker.rank(lists, top_k=2, trigger_type="question", now=NOW)
    assert len(ranked) == 2
    assert ranked[0].key.ontology_key == "wiki-1"
    assert ranked[0].rrf_score == pytest.approx(1.2 / 60)
