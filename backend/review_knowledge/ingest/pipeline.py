"""Ingest pipeline orchestration."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from review_knowledge.core.config import Settings
from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.protocols import (
    CodeSnippetStore,
    EmbeddingProvider,
    IssueStore,
    ReviewCommentStore,
    WikiPageStore,
)
from review_knowledge.ingest.chunker import sliding_window
from review_knowledge.ingest.dedupe import SnippetWriter
from review_knowledge.ingest.diff_chunker import apply_hunk_cap, is_excluded_path, parse_diff_hunks
from review_knowledge.ingest.embeddings import HashedEmbeddingProvider
from review_knowledge.ingest.issue_chunker import (
    DEFAULT_BOT_LOGINS as ISSUE_BOT_LOGINS,
    build_issue_embedding_text,
    chunk_issue_comment,
)
from review_knowledge.ingest.review_chunker import chunk_review_thread, group_threads, is_bot
from review_knowledge.ingest.types import FileDiff, IngestStats, ParsedHunk, ReviewCommentInput, WikiPageInput
from review_knowledge.ingest.wiki_chunker import chunk_wiki_page
from review_knowledge.models.entities import Chunk, IssueCommentRecord, IssueRecord
from review_knowledge.utils.text import count_tokens

logger = get_logger(__name__)


class IngestPipeline:
    """Coordinate chunking, embeddings, and persistence for every corpus.

    A failure on one hunk, page, thread or comment is logged and counted in
    ``IngestStats.failed``; the rest of the batch still goes through.
    """

    def __init__(
        self,
        settings: Settings,
        embedding_provider: EmbeddingProvider | None = None,
        code_store: CodeSnippetStore | None = None,
        review_store: ReviewCommentStore | None = None,
        wiki_store: WikiPageStore | None = None,
        issue_store: IssueStore | None = None,
    ) -> None:
        self.settings = settings
        self.embedding_provider = embedding_provider or HashedEmbeddingProvider.get(
            settings.embedding_model, settings.embedding_dimensions
        )
        self.code_store = code_store
        self.review_store = review_store
        self.wiki_store = wiki_store
        self.issue_store = issue_store

    # Pull request diffs -------------------------------------------------

    async def ingest_pull_request(
        self,
        repo: str,
        pr_number: int,
        pr_title: str,
        file_diffs: Sequence[FileDiff],
        created_at: datetime | None = None,
    ) -> IngestStats:
        """Parse, filter and cap the PR's hunks, then write them content-addressed."""
        writer = SnippetWriter(self._require(self.code_store, "code snippet"), self.embedding_provider)
        stats = IngestStats()
        hunks = self.collect_hunks(file_diffs)
        stats.skipped += sum(1 for diff in file_diffs if is_excluded_path(diff.file_path, self.settings.exclude_paths))
        for hunk in hunks:
            try:
                outcome = await writer.write_hunk(hunk, repo, pr_number, pr_title, created_at)
            except Exception as exc:
                logger.exception(
                    "Failed to store hunk %s:%s: %s",
                    hunk.file_path,
                    hunk.start_line,
                    exc,
                    extra=log_context(repo=repo, pr_number=pr_number),
                )
                stats.failed += 1
                stats.errors.append(f"{hunk.file_path}:{hunk.start_line}: {exc}")
                continue
            stats.processed += 1
            stats.chunks += 1
            if outcome.dedup_hit:
                stats.dedup_hits += 1
            if outcome.embedded:
                stats.embeddings_generated += 1
        logger.info(
            "Ingested %d hunks (%d dedup hits)",
            stats.processed,
            stats.dedup_hits,
            extra=log_context(repo=repo, pr_number=pr_number),
        )
        return stats

    def collect_hunks(self, file_diffs: Sequence[FileDiff]) -> list[ParsedHunk]:
        context_files = [diff.file_path for diff in file_diffs]
        hunks: list[ParsedHunk] = []
        for diff in file_diffs:
            if is_excluded_path(diff.file_path, self.settings.exclude_paths):
                logger.debug("Skipping excluded path %s", diff.file_path)
                continue
            hunks.extend(
                parse_diff_hunks(
                    diff.diff_text,
                    diff.file_path,
                    min_changed_lines=self.settings.min_changed_lines,
                    context_files=context_files,
                )
            )
        return apply_hunk_cap(hunks, self.settings.max_hunks_per_pr)

    # Wiki pages ---------------------------------------------------------

    async def ingest_wiki_pages(self, pages: Sequence[WikiPageInput]) -> IngestStats:
        stats = IngestStats()
        for page in pages:
            try:
                await self._ingest_wiki_page(page, stats)
            except Exception as exc:
                logger.exception("Failed to ingest wiki page %s: %s", page.page_title, exc)
                stats.failed += 1
                stats.errors.append(f"wiki:{page.page_id}: {exc}")
        return stats

    async def _ingest_wiki_page(self, page: WikiPageInput, stats: IngestStats) -> None:
        store = self._require(self.wiki_store, "wiki page")
        chunks = chunk_wiki_page(page, self.settings.window_size, self.settings.overlap_size)
        if not chunks:
            # redirects, stubs and disambiguation pages stop matching
            await self.delete_wiki_page(page.page_id)
            stats.skipped += 1
            return
        await self._embed_chunks(chunks, stats)
        await store.replace_page_chunks(page.page_id, chunks)
        stats.processed += 1
        stats.chunks += len(chunks)

    async def delete_wiki_page(self, page_id: int) -> None:
        """Soft-delete a page removed upstream so its chunks stop matching."""
        await self._require(self.wiki_store, "wiki page").delete_page_chunks(page_id)

    # Review threads -----------------------------------------------------

    async def ingest_review_comments(self, comments: Sequence[ReviewCommentInput]) -> IngestStats:
        store = self._require(self.review_store, "review comment")
        stats = IngestStats()
        for key, thread in group_threads(comments).items():
            chunks = chunk_review_thread(
                thread,
                bot_logins=self.settings.bot_logins,
                window_size=self.settings.window_size,
                overlap_size=self.settings.overlap_size,
            )
            if not chunks:
                stats.skipped += 1
                continue
            try:
                await self._embed_chunks(chunks, stats)
                await store.write_chunks(chunks)
            except Exception as exc:
                logger.exception("Failed to store review thread %s: %s", key, exc)
                stats.failed += 1
                stats.errors.append(f"{key}: {exc}")
                continue
            stats.processed += 1
            stats.chunks += len(chunks)
        return stats

    # Issues -------------------------------------------------------------

    async def ingest_issue(self, issue: IssueRecord, comments: Sequence[IssueCommentRecord] = ()) -> IngestStats:
        store = self._require(self.issue_store, "issue")
        stats = IngestStats()
        issue_text = build_issue_embedding_text(issue.title, issue.body)
        chunks = [
            Chunk(
                ontology_key=f"issue:{issue.repo}#{issue.issue_number}",
                chunk_index=index,
                chunk_text=window.text,
                raw_text=window.text,
                token_count=window.token_count,
                section_metadata={"repo": issue.repo, "issue_number": issue.issue_number, "state": issue.state},
            )
            for index, window in enumerate(
                sliding_window(issue_text, self.settings.window_size, self.settings.overlap_size)
            )
        ]
        await self._embed_chunks(chunks, stats)
        await store.upsert_issue(issue, chunks)
        stats.processed += 1
        stats.chunks += len(chunks)

        bot_logins = set(self.settings.bot_logins) | ISSUE_BOT_LOGINS
        for comment in comments:
            if is_bot(comment.author_login, bot_logins):
                stats.skipped += 1
                continue
            try:
                await self._ingest_issue_comment(issue, comment, stats)
            except Exception as exc:
                logger.exception("Failed to store issue comment %s: %s", comment.comment_id, exc)
                stats.failed += 1
                stats.errors.append(f"comment:{comment.comment_id}: {exc}")
        return stats

    async def _ingest_issue_comment(self, issue: IssueRecord, comment: IssueCommentRecord, stats: IngestStats) -> None:
        store = self._require(self.issue_store, "issue")
        pieces = chunk_issue_comment(
            issue.issue_number,
            issue.title,
            comment.body,
            max_tokens=self.settings.window_size,
            overlap=self.settings.overlap_size,
        )
        chunks = [
            Chunk(
                ontology_key=f"issue-comment:{comment.repo}#{comment.issue_number}:{comment.comment_id}",
                chunk_index=index,
                chunk_text=piece,
                raw_text=comment.body,
                token_count=count_tokens(piece),
                section_metadata={"comment_id": comment.comment_id, "author_login": comment.author_login},
            )
            for index, piece in enumerate(pieces)
        ]
        await self._embed_chunks(chunks, stats)
        await store.write_comment_chunks(comment, chunks)
        stats.processed += 1
        stats.chunks += len(chunks)

    # Internal helpers -------------------------------------------------

    async def _embed_chunks(self, chunks: Sequence[Chunk], stats: IngestStats) -> None:
        """Attach embeddings in place; a chunk that can't be embedded is stored without one."""
        for chunk in chunks:
            try:
                result = await self.embedding_provider.generate(chunk.chunk_text, "document")
            except Exception as exc:
                logger.warning(
                    "Embedding failed, storing chunk without embedding: %s",
                    exc,
                    extra=log_context(ontology_key=chunk.ontology_key, chunk_index=chunk.chunk_index),
                )
                continue
            if result is None:
                continue
            chunk.embedding = result.vector
            stats.embeddings_generated += 1

    @staticmethod
    def _require(store, kind: str):
        if store is None:
            raise RuntimeError(f"No {kind} store configured")
        return store


__all__ = ["IngestPipeline"]
