"""Content-addressed deduplication for diff hunk snippets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.metrics import SNIPPET_DEDUP
from review_knowledge.core.protocols import CodeSnippetStore, EmbeddingProvider
from review_knowledge.ingest.diff_chunker import build_embedding_text
from review_knowledge.ingest.types import ParsedHunk
from review_knowledge.models.entities import ContentHashRecord, Occurrence
from review_knowledge.utils.hashing import content_hash

logger = get_logger(__name__)


@dataclass(slots=True)
class SnippetWrite:
    content_hash: str
    dedup_hit: bool
    embedded: bool


class SnippetWriter:
    """Write hunks to a content-addressed store, embedding each text at most once.

    A hash row stored while the provider was down counts as a miss, so the
    next sighting embeds it. An occurrence row is written for every hunk so
    the same snippet can be traced to every pull request it appeared in.
    """

    def __init__(self, store: CodeSnippetStore, embedding_provider: EmbeddingProvider) -> None:
        self.store = store
        self.embedding_provider = embedding_provider

    async def write_hunk(
        self,
        hunk: ParsedHunk,
        repo: str,
        pr_number: int,
        pr_title: str,
        created_at: datetime | None = None,
    ) -> SnippetWrite:
        embedded_text = build_embedding_text(hunk, pr_title)
        digest = content_hash(embedded_text)
        occurrence = Occurrence(
            content_hash=digest,
            repo=repo,
            origin_location=f"{repo}#{pr_number}:{hunk.file_path}:{hunk.start_line}",
            pr_number=pr_number,
            pr_title=pr_title,
            file_path=hunk.file_path,
            start_line=hunk.start_line,
            end_line=hunk.end_line,
            function_context=hunk.function_context or None,
            created_at=created_at,
        )

        if await self.store.has_snippet(digest):
            SNIPPET_DEDUP.labels(outcome="hit").inc()
            await self.store.write_snippet(
                ContentHashRecord(content_hash=digest, embedded_text=embedded_text, embedding=None, language=hunk.language),
                occurrence,
            )
            return SnippetWrite(content_hash=digest, dedup_hit=True, embedded=False)

        SNIPPET_DEDUP.labels(outcome="miss").inc()
        embedding = await self.embedding_provider.generate(embedded_text, "document")
        if embedding is None:
            logger.debug("Storing snippet without embedding", extra=log_context(content_hash=digest))
        record = ContentHashRecord(
            content_hash=digest,
            embedded_text=embedded_text,
            embedding=embedding.vector if embedding else None,
            language=hunk.language,
            embedding_model=embedding.model if embedding else None,
        )
        await self.store.write_snippet(record, occurrence)
        return SnippetWrite(content_hash=digest, dedup_hit=False, embedded=embedding is not None)


__all__ = ["SnippetWrite", "SnippetWriter"]
