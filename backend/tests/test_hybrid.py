"""Tests for reciprocal rank fusion and BM25 ranking."""

import pytest

from review_knowledge.retrieval.hybrid import bm25_rank, hybrid_search_merge, rrf_score


def test_single_list_scores_are_positional() -> None:
    merged = hybrid_search_merge(["a", "b", "c"], [], get_key=lambda item: item)
    assert [entry.item for entry in merged] == ["a", "b", "c"]
    for rank, entry in enumerate(merged):
        assert entry.hybrid_score == pytest.approx(1 / (60 + rank))
        assert entry.vector_rank == rank
        assert entry.bm25_rank is None


def test_two_vector_and_two_lexical_items_sum_closed_form() -> None:
    vector = [("snippet-1", 0.2), ("snippet-2", 0.3)]
    lexical = [("snippet-2", None), ("snippet-3", None)]
    merged = hybrid_search_merge(vector, lexical, get_key=lambda item: item[0])

    scores = {entry.item[0]: entry.hybrid_score for entry in merged}
    assert len(merged) == 3
    assert scores["snippet-2"] == pytest.approx(1 / 61 + 1 / 60)
    assert scores["snippet-1"] == pytest.approx(1 / 60)
    assert scores["snippet-3"] == pytest.approx(1 / 61)
    assert [entry.item[0] for entry in merged] == ["snippet-2", "snippet-1", "snippet-3"]
    # payload from the first list that carried the key wins
    assert merged[0].item == ("snippet-2", 0.3)


def test_same_item_in_both_lists_appears_once() -> None:
    merged = hybrid_search_merge(["x", "y"], ["y", "x"], get_key=lambda item: item)
    assert sorted(entry.item for entry in merged) == ["x", "y"]
    assert merged[0].hybrid_score == pytest.approx(merged[1].hybrid_score)
    # equal scores keep encounter order
    assert [entry.item for entry in merged] == ["x", "y"]


def test_empty_inputs_merge_to_empty() -> None:
    assert hybrid_search_merge([], [], get_key=lambda item: item) == []


def test_top_k_and_custom_k() -> None:
    merged = hybrid_search_merge(["a", "b", "c"], ["d"], get_key=lambda item: item, k=10, top_k=2)
    assert len(merged) == 2
    assert merged[0].hybrid_score == pytest.approx(rrf_score(0, 10))


def test_bm25_rank_drops_documents_without_shared_terms() -> None:
    documents = [
        ("a", "the cache eviction policy for snippets"),
        ("b", "completely unrelated words"),
        ("c", "snippets snippets cache"),
    ]
    ranked = bm25_rank("snippets cache", documents)
    assert {doc_id for doc_id, _ in ranked} == {"a", "c"}
    assert ranked == sorted(ranked, key=lambda item: item[1], reverse=True)
    assert bm25_rank("", documents) == []
    assert bm25_rank("cache", []) == []
