"""Tests for the ingest pipeline across all four corpora."""

from datetime import datetime, timezone

import pytest

from review_knowledge.ingest.pipeline import IngestPipeline
from review_knowledge.ingest.types import FileDiff, ReviewCommentInput, WikiPageInput
from review_knowledge.models.entities import IssueCommentRecord, IssueKey, IssueRecord

REPO = "acme/player"
CREATED = datetime(2024, 5, 1, tzinfo=timezone.utc)

DIFF = """@@ -10,3 +10,6 @@ class SnippetCache:
 def get(self, key):
+    if key in self._items:
+        self.hits += 1
+        return self._items[key]
     return None
@@ -80 +81,3 @@
+a = 1
+b = 2
+c = 3
"""

FILLER = "Settings are stored per profile and loaded when the player starts. " * 12


@pytest.fixture
def pipeline(settings, provider, snippet_store, review_store, wiki_store, issue_store) -> IngestPipeline:
    return IngestPipeline(
        settings,
        provider,
        code_store=snippet_store,
        review_store=review_store,
        wiki_store=wiki_store,
        issue_store=issue_store,
    )


def _review(comment_id: int, author: str, body: str, **overrides) -> ReviewCommentInput:
    values = dict(
        repo=REPO,
        pr_number=9,
        comment_id=comment_id,
        author_login=author,
        body=body,
        created_at=CREATED,
        file_path="src/cache.py",
        original_position=comment_id,
    )
    values.update(overrides)
    return ReviewCommentInput(**values)


async def test_repeated_hunks_are_embedded_once(pipeline, provider, snippet_store) -> None:
    diffs = [FileDiff("src/cache.py", DIFF), FileDiff("package-lock.json", DIFF)]

    first = await pipeline.ingest_pull_request(REPO, 1, "Count cache hits", diffs, CREATED)
    second = await pipeline.ingest_pull_request(REPO, 2, "Count cache hits", diffs[:1], CREATED)

    assert (first.processed, first.skipped, first.embeddings_generated, first.dedup_hits) == (2, 1, 2, 0)
    assert (second.processed, second.embeddings_generated, second.dedup_hits) == (2, 0, 2)
    assert len(snippet_store.snippets) == 2
    assert all(record.embedding is not None for record in snippet_store.snippets.values())
    assert [occurrence.pr_number for occurrence in snippet_store.occurrences] == [1, 1, 2, 2]
    assert snippet_store.occurrences[0].origin_location == f"{REPO}#1:src/cache.py:10"
    assert len(provider.calls) == 2


async def test_hunk_cap_and_min_changed_lines(settings, provider, snippet_store) -> None:
    settings.max_hunks_per_pr = 1
    pipeline = IngestPipeline(settings, provider, code_store=snippet_store)
    assert len(pipeline.collect_hunks([FileDiff("src/cache.py", DIFF)])) == 1

    settings.max_hunks_per_pr = 100
    settings.min_changed_lines = 4
    assert pipeline.collect_hunks([FileDiff("src/cache.py", DIFF)]) == []


async def test_wiki_pages_replace_and_soft_delete(pipeline, wiki_store) -> None:
    page = WikiPageInput(7, "Add-on development", "https://wiki.example.org/Add-on_development", f"<p>{FILLER}</p>")
    stats = await pipeline.ingest_wiki_pages([page])
    assert (stats.processed, stats.chunks) == (1, 1)
    assert wiki_store.pages[7][0].embedding is not None

    redirect = WikiPageInput(7, "Add-on development", page.page_url, "<p>#REDIRECT [[Add-ons]]</p>")
    stats = await pipeline.ingest_wiki_pages([redirect])
    assert stats.skipped == 1
    assert 7 in wiki_store.deleted

    stats = await pipeline.ingest_wiki_pages([page])
    assert 7 not in wiki_store.deleted
    await pipeline.delete_wiki_page(7)
    assert 7 in wiki_store.deleted


async def test_embedding_failure_stores_chunk_without_vector(pipeline, provider, wiki_store) -> None:
    provider.error = RuntimeError("model not loaded")
    page = WikiPageInput(8, "Skins", "https://wiki.example.org/Skins", f"<p>{FILLER}</p>")

    stats = await pipeline.ingest_wiki_pages([page])

    assert stats.processed == 1
    assert stats.embeddings_generated == 0
    assert wiki_store.pages[8][0].embedding is None


async def test_review_threads_skip_bot_only_threads(pipeline, review_store) -> None:
    comments = [
        _review(1, "alice", "Please guard against a missing key here."),
        _review(2, "bob", "Good catch, fixed.", in_reply_to_id=1, original_position=None),
        _review(3, "codecov[bot]", "Coverage dropped by 0.1%", original_position=40),
    ]

    stats = await pipeline.ingest_review_comments(comments)

    assert (stats.processed, stats.skipped) == (1, 1)
    [chunk] = review_store.chunks
    assert "alice" in chunk.chunk_text and "bob" in chunk.chunk_text
    assert chunk.section_metadata["comment_count"] == 2


async def test_issue_comments_from_bots_are_skipped(pipeline, issue_store) -> None:
    issue = IssueRecord(REPO, 5, "Playback stutters", "Stutters after seeking", state="closed", author_login="carol")
    comments = [
        IssueCommentRecord(REPO, 5, 100, "dave", "Disable hardware decoding to work around it."),
        IssueCommentRecord(REPO, 5, 101, "stale", "This issue has been automatically marked as stale."),
        IssueCommentRecord(REPO, 5, 102, "renovate[bot]", "Dependency update"),
    ]

    stats = await pipeline.ingest_issue(issue, comments)

    assert (stats.processed, stats.skipped) == (2, 2)
    [issue_chunk] = issue_store.issue_chunks[IssueKey(REPO, 5)]
    assert issue_chunk.ontology_key == "issue:acme/player#5"
    assert issue_chunk.chunk_text == "Playback stutters\n\nStutters after seeking"
    [comment_chunk] = issue_store.comment_chunks[100]
    assert comment_chunk.ontology_key == "issue-comment:acme/player#5:100"
    assert "Disable hardware decoding" in comment_chunk.chunk_text
    assert [comment.comment_id for comment in await issue_store.get_comments(REPO, 5)] == [100]


async def test_missing_store_is_an_error(settings, provider) -> None:
    pipeline = IngestPipeline(settings, provider)
    with pytest.raises(RuntimeError):
        await pipeline.ingest_pull_request(REPO, 1, "title", [FileDiff("src/cache.py", DIFF)])
