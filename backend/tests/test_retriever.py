"""End-to-end cross-corpus retrieval over the in-memory stores."""

import pytest

from review_knowledge.core.config import Settings
from review_knowledge.core.metrics import REGISTRY
from review_knowledge.models.dto import RetrieveOptions
from review_knowledge.models.entities import ContentHashRecord, Occurrence, SourceType, VectorHit, WikiPageRecord
from review_knowledge.retrieval import Retriever

REPO = "acme/player"
SNIPPET = "Python code from PR 'Fix buffering' in player/buffer.py:\nbuffer.flush()\nbuffer.close()"


def _wiki(page_id: int) -> WikiPageRecord:
    return WikiPageRecord(
        page_id=page_id,
        page_title=f"Page {page_id}",
        page_url=f"https://wiki.example.org/Page_{page_id}",
        chunk_index=0,
        chunk_text=f"Page {page_id}: always flush buffers before closing streams",
        raw_text="always flush buffers before closing streams",
        language_tags=("python",),
    )


@pytest.fixture
async def retriever(provider, snippet_store, wiki_store, issue_store) -> Retriever:
    embedding = await provider.generate(SNIPPET, "document")
    await snippet_store.write_snippet(
        ContentHashRecord("a" * 64, SNIPPET, embedding.vector, "python"),
        Occurrence("a" * 64, REPO, f"{REPO}#3:player/buffer.py:10", pr_number=3, file_path="player/buffer.py"),
    )
    wiki_store.vector_hits = [VectorHit(record=_wiki(1), distance=0.2)]
    wiki_store.lexical_hits = []
    issue_store.vector_error = RuntimeError("database is locked")
    issue_store.lexical_error = RuntimeError("database is locked")
    return Retriever(
        provider,
        settings=Settings(),
        code_store=snippet_store,
        wiki_store=wiki_store,
        issue_store=issue_store,
    )


async def test_disabled_or_empty_queries_return_none(provider) -> None:
    options = RetrieveOptions(queries=["buffer flush"], repo=REPO)
    assert await Retriever(provider, settings=Settings(retrieval_enabled=False)).retrieve(options) is None

    blank = RetrieveOptions(queries=["", "   "], repo=REPO)
    assert blank.queries == []
    assert await Retriever(provider, settings=Settings()).retrieve(blank) is None


def test_options_reject_bad_repo() -> None:
    with pytest.raises(ValueError):
        RetrieveOptions(queries=["x"], repo="acme")


async def test_retrieve_fuses_corpora_and_records_provenance(retriever) -> None:
    options = RetrieveOptions(
        queries=[SNIPPET, "flush buffers"],
        repo=REPO,
        trigger_type="question",
        pr_languages=["Python"],
        max_context_chars=500,
    )

    result = await retriever.retrieve(options)

    assert result is not None
    provenance = result.provenance
    assert provenance.query_count == 2
    assert provenance.threshold_method == "configured"
    assert provenance.threshold_value == pytest.approx(0.7)
    assert provenance.corpus_counts == {"code": 1, "wiki": 1, "issue": 0}
    assert set(provenance.sources) == {SourceType.CODE, SourceType.WIKI}
    assert provenance.trigger_type == "question"
    assert [match.content_hash for match in result.code_snippets] == ["a" * 64]
    assert [match.page_id for match in result.wiki_knowledge] == [1]
    assert result.issue_knowledge == []
    assert "[wiki: Page 1]" in result.context_window
    assert len(result.context_window) <= 500


async def test_adaptive_threshold_is_reported(retriever) -> None:
    options = RetrieveOptions(queries=[SNIPPET], repo=REPO, adaptive=True)

    result = await retriever.retrieve(options)

    assert result.provenance.threshold_method == "percentile"
    assert result.provenance.threshold_value == pytest.approx(0.2)
    assert result.provenance.candidate_count == 2
    assert {chunk.source for chunk in result.unified_results} == {SourceType.CODE, SourceType.WIKI}


async def test_top_k_caps_unified_results(retriever) -> None:
    result = await retriever.retrieve(RetrieveOptions(queries=[SNIPPET], repo=REPO, top_k=1))
    assert len(result.unified_results) == 1
    assert result.provenance.unified_result_count == 1


async def test_unset_trigger_is_reported_as_pr_review(retriever) -> None:
    result = await retriever.retrieve(RetrieveOptions(queries=[SNIPPET], repo=REPO))
    assert result.provenance.trigger_type == "pr_review"
    assert result.unified_results[0].source is SourceType.CODE


async def test_unexpected_failure_returns_none(retriever, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_window(chunks, max_chars):
        raise RuntimeError("renderer exploded")

    monkeypatch.setattr("review_knowledge.retrieval.retriever.assemble_context_window", broken_window)
    before = REGISTRY.get_sample_value("rkn_retrieval_requests_total", {"trigger": "pr_review", "outcome": "error"}) or 0.0

    assert await retriever.retrieve(RetrieveOptions(queries=[SNIPPET], repo=REPO)) is None
    after = REGISTRY.get_sample_value("rkn_retrieval_requests_total", {"trigger": "pr_review", "outcome": "error"})
    assert after == before + 1
