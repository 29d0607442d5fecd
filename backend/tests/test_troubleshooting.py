"""Tests for troubleshooting retrieval: closed issues first, wiki fallback second."""

import pytest

from review_knowledge.core.config import Settings
from review_knowledge.models.dto import TroubleshootingQuery
from review_knowledge.models.entities import IssueCommentRecord, IssueRecord, LexicalHit, VectorHit, WikiPageRecord
from review_knowledge.retrieval.troubleshooting import (
    TroubleshootingOrchestrator,
    TroubleshootingStage,
    extract_keywords,
)

REPO = "acme/player"


@pytest.fixture
def query() -> TroubleshootingQuery:
    return TroubleshootingQuery(
        repo=REPO,
        title="Playback crashes on resume",
        body='Log shows "Segmentation fault" after ERROR: decoder failed to init',
    )


def _issue(number: int, **overrides) -> IssueRecord:
    values = dict(repo=REPO, issue_number=number, title=f"Issue {number}", body=f"body of {number}", state="closed")
    values.update(overrides)
    return IssueRecord(**values)


def _wiki(page_id: int, chunk_index: int = 0) -> WikiPageRecord:
    return WikiPageRecord(
        page_id=page_id,
        page_title=f"Page {page_id}",
        page_url=f"https://wiki.example.org/Page_{page_id}",
        chunk_index=chunk_index,
        chunk_text=f"Page {page_id} chunk {chunk_index}",
        raw_text=f"chunk {chunk_index}",
    )


def test_extract_keywords() -> None:
    keywords = extract_keywords(
        "Crash on resume",
        'Log: "Segmentation fault" then Error: decoder init failed badly. VideoPlayer HTTP',
    )
    assert keywords == "Crash resume Segmentation fault Error: decoder init failed badly. VideoPlayer HTTP"
    assert extract_keywords("a b", None) == ""


def test_query_validation() -> None:
    with pytest.raises(ValueError):
        TroubleshootingQuery(repo="not-a-repo", title="x")
    with pytest.raises(ValueError):
        TroubleshootingQuery(repo=REPO, title="   ")


async def test_closed_issue_matches_are_assembled(query, provider, issue_store, wiki_store) -> None:
    resolved = _issue(10)
    pull_request = _issue(11, is_pull_request=True)
    too_far = _issue(12)
    for issue in (resolved, pull_request, too_far):
        issue_store.add_issue(issue, [IssueCommentRecord(REPO, issue.issue_number, 1, "dev", "Fixed in 21.1")])
    issue_store.vector_hits = [
        VectorHit(record=resolved, distance=0.2),
        VectorHit(record=pull_request, distance=0.1),
        VectorHit(record=too_far, distance=0.5),
    ]
    issue_store.lexical_hits = []

    orchestrator = TroubleshootingOrchestrator(issue_store, provider, wiki_store, settings=Settings())
    outcome = await orchestrator.run(query)

    assert outcome.stage is TroubleshootingStage.DONE
    assert outcome.stages == [
        TroubleshootingStage.EMBEDDING,
        TroubleshootingStage.SEARCHING,
        TroubleshootingStage.FILTERING,
        TroubleshootingStage.ASSEMBLING,
        TroubleshootingStage.DONE,
    ]
    assert outcome.result.source == "issues"
    [match] = outcome.result.matches
    assert match.issue_number == 10
    assert match.similarity == pytest.approx(0.8)
    assert match.tail_comments == ["Fixed in 21.1"]
    assert outcome.result.wiki_results == []


async def test_no_qualifying_issue_falls_back_to_top_two_wiki_pages(query, provider, issue_store, wiki_store) -> None:
    issue_store.add_issue(_issue(12))
    issue_store.vector_hits = [VectorHit(record=_issue(12), distance=0.5)]
    issue_store.lexical_hits = []
    wiki_store.vector_hits = [
        VectorHit(record=_wiki(1, 0), distance=0.15),
        VectorHit(record=_wiki(1, 1), distance=0.25),
        VectorHit(record=_wiki(3), distance=0.3),
        VectorHit(record=_wiki(4), distance=0.8),
    ]
    wiki_store.lexical_hits = [LexicalHit(record=_wiki(2), rank=3.2)]

    orchestrator = TroubleshootingOrchestrator(issue_store, provider, wiki_store, settings=Settings())
    outcome = await orchestrator.run(query)

    assert outcome.stage is TroubleshootingStage.DONE
    assert TroubleshootingStage.WIKI_FALLBACK in outcome.stages
    assert outcome.result.source == "wiki"
    assert outcome.result.matches == []
    # page 1 appears once at its closest chunk; lexical-only page 2 and distant page 4 do not qualify
    assert [match.page_id for match in outcome.result.wiki_results] == [1, 3]
    assert [match.distance for match in outcome.result.wiki_results] == pytest.approx([0.15, 0.3])


async def test_lexical_only_issue_survives_vector_failure(query, provider, issue_store) -> None:
    issue = _issue(20)
    issue_store.add_issue(issue)
    issue_store.vector_error = RuntimeError("index offline")
    issue_store.lexical_hits = [LexicalHit(record=issue, rank=4.0)]

    settings = Settings(troubleshooting_similarity_threshold=0.7)
    result = await TroubleshootingOrchestrator(issue_store, provider, settings=settings).retrieve(query)

    assert result is not None
    assert [match.issue_number for match in result.matches] == [20]
    assert result.matches[0].similarity == pytest.approx(0.7)


async def test_failed_assembly_is_skipped(query, provider, issue_store) -> None:
    present = _issue(30)
    issue_store.add_issue(present)
    issue_store.vector_hits = [
        VectorHit(record=_issue(31), distance=0.1),
        VectorHit(record=present, distance=0.2),
    ]
    issue_store.lexical_hits = []

    result = await TroubleshootingOrchestrator(issue_store, provider, settings=Settings()).retrieve(query)

    assert [match.issue_number for match in result.matches] == [30]


async def test_returns_none_when_nothing_matches(query, provider, issue_store, wiki_store) -> None:
    issue_store.vector_hits = []
    issue_store.lexical_hits = []
    wiki_store.vector_hits = []
    wiki_store.lexical_hits = []

    orchestrator = TroubleshootingOrchestrator(issue_store, provider, wiki_store, settings=Settings())
    outcome = await orchestrator.run(query)

    assert outcome.stage is TroubleshootingStage.NO_MATCH
    assert outcome.result is None
    assert await orchestrator.retrieve(query) is None
    assert await TroubleshootingOrchestrator(issue_store, provider, settings=Settings()).retrieve(query) is None


async def test_disabled_or_no_embedding_returns_none(query, provider, issue_store) -> None:
    issue_store.add_issue(_issue(40))
    issue_store.vector_hits = [VectorHit(record=_issue(40), distance=0.1)]

    disabled = Settings(troubleshooting_enabled=False)
    assert await TroubleshootingOrchestrator(issue_store, provider, settings=disabled).retrieve(query) is None

    provider.unavailable = True
    outcome = await TroubleshootingOrchestrator(issue_store, provider, settings=Settings()).run(query)
    assert outcome.stage is TroubleshootingStage.NO_MATCH
    assert outcome.stages == [TroubleshootingStage.EMBEDDING, TroubleshootingStage.NO_MATCH]
