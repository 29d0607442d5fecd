"""SQLite-backed code snippet corpus."""

from __future__ import annotations

import sqlite3
from typing import Iterable, Sequence

from review_knowledge.core.logging import get_logger
from review_knowledge.db.sqlite import SQLiteDatabase
from review_knowledge.ingest.embeddings import cosine_distance, vector_from_bytes, vector_to_bytes
from review_knowledge.models.entities import (
    CodeSnippetRecord,
    ContentHashRecord,
    LexicalHit,
    Occurrence,
    SyncState,
    VectorHit,
)
from review_knowledge.retrieval.hybrid import bm25_rank
from review_knowledge.utils.time import now_ms, parse_timestamp

logger = get_logger(__name__)

# Join each snippet with its most recent occurrence in the requested repo.
_SNIPPET_SELECT = """
SELECT s.content_hash, s.embedded_text, s.language, s.embedding,
       o.repo, o.pr_number, o.pr_title, o.file_path, o.start_line, o.end_line, o.created_at
FROM code_snippets s
JOIN code_snippet_occurrences o ON o.id = (
  SELECT o2.id FROM code_snippet_occurrences o2
  WHERE o2.content_hash = s.content_hash AND o2.repo = ?
  ORDER BY o2.inserted_at DESC, o2.id DESC
  LIMIT 1
)
WHERE s.stale = 0
"""


class SQLiteSnippetStore:
    """Content-addressed snippet rows plus per-PR occurrences.

    Implements ``CodeSnippetStore`` and ``SyncStateStore``. Vector search is
    a brute-force cosine scan; rows that are stale or have no embedding are
    never returned by it.
    """

    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database
        self.db.ensure_schema()

    # Writes -----------------------------------------------------------

    async def has_snippet(self, content_hash: str) -> bool:
        return await self.db.run(self._has_snippet, content_hash)

    async def write_snippet(self, record: ContentHashRecord, occurrence: Occurrence) -> None:
        await self.db.run(self._write_snippet, record, occurrence)

    async def write_occurrence(self, occurrence: Occurrence) -> None:
        await self.db.run(self._write_occurrences, [occurrence])

    async def mark_stale(self, content_hashes: Iterable[str]) -> int:
        return await self.db.run(self._mark_stale, list(content_hashes))

    # Search -----------------------------------------------------------

    async def search_by_embedding(
        self,
        embedding: Sequence[float],
        repo: str,
        top_k: int,
        language: str | None = None,
    ) -> list[VectorHit[CodeSnippetRecord]]:
        return await self.db.run(self._search_by_embedding, list(embedding), repo, top_k, language)

    async def search_by_full_text(self, query: str, repo: str, top_k: int) -> list[LexicalHit[CodeSnippetRecord]]:
        return await self.db.run(self._search_by_full_text, query, repo, top_k)

    # Sync state -------------------------------------------------------

    async def get_sync_state(self, source_key: str) -> SyncState | None:
        return await self.db.run(self._get_sync_state, source_key)

    async def update_sync_state(self, state: SyncState) -> None:
        await self.db.run(self._update_sync_state, state)

    # Internal helpers -------------------------------------------------

    def _has_snippet(self, content_hash: str) -> bool:
        rows = self.db.query("SELECT 1 FROM code_snippets WHERE content_hash = ? AND embedding IS NOT NULL", [content_hash])
        return bool(rows)

    def _write_snippet(self, record: ContentHashRecord, occurrence: Occurrence) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO code_snippets (
                  content_hash, embedded_text, language, embedding, embedding_model, stale, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(content_hash) DO UPDATE SET
                  embedding = excluded.embedding,
                  embedding_model = excluded.embedding_model
                WHERE code_snippets.embedding IS NULL AND excluded.embedding IS NOT NULL
                """,
                [
                    record.content_hash,
                    record.embedded_text,
                    record.language,
                    vector_to_bytes(record.embedding) if record.embedding is not None else None,
                    record.embedding_model,
                    int(record.stale),
                    now_ms(),
                ],
            )
            cursor.execute(_INSERT_OCCURRENCE, _occurrence_params(occurrence))

    def _write_occurrences(self, occurrences: Sequence[Occurrence]) -> None:
        with self.db.transaction() as cursor:
            cursor.executemany(_INSERT_OCCURRENCE, [_occurrence_params(item) for item in occurrences])

    def _mark_stale(self, content_hashes: list[str]) -> int:
        if not content_hashes:
            return 0
        placeholders = ",".join("?" for _ in content_hashes)
        with self.db.transaction() as cursor:
            cursor.execute(f"UPDATE code_snippets SET stale = 1 WHERE content_hash IN ({placeholders})", content_hashes)
            return cursor.rowcount

    def _search_by_embedding(
        self,
        embedding: list[float],
        repo: str,
        top_k: int,
        language: str | None,
    ) -> list[VectorHit[CodeSnippetRecord]]:
        sql = _SNIPPET_SELECT + " AND s.embedding IS NOT NULL"
        params: list[object] = [repo]
        if language:
            sql += " AND s.language = ?"
            params.append(language.lower())
        hits: list[VectorHit[CodeSnippetRecord]] = []
        for row in self.db.query(sql, params):
            vector = vector_from_bytes(row["embedding"])
            if len(vector) != len(embedding):
                logger.debug("Skipping snippet %s with mismatched dimensions", row["content_hash"])
                continue
            hits.append(VectorHit(record=_row_to_record(row), distance=cosine_distance(embedding, vector)))
        hits.sort(key=lambda hit: hit.distance)
        return hits[:top_k]

    def _search_by_full_text(self, query: str, repo: str, top_k: int) -> list[LexicalHit[CodeSnippetRecord]]:
        rows = {row["content_hash"]: row for row in self.db.query(_SNIPPET_SELECT, [repo])}
        ranked = bm25_rank(query, [(content_hash, row["embedded_text"]) for content_hash, row in rows.items()])
        return [LexicalHit(record=_row_to_record(rows[content_hash]), rank=score) for content_hash, score in ranked[:top_k]]

    def _get_sync_state(self, source_key: str) -> SyncState | None:
        rows = self.db.query(
            "SELECT source_key, last_synced_at, cursor, total_synced, complete FROM sync_state WHERE source_key = ?",
            [source_key],
        )
        if not rows:
            return None
        row = rows[0]
        return SyncState(
            source_key=row["source_key"],
            last_synced_at=parse_timestamp(row["last_synced_at"]),
            cursor=row["cursor"],
            total_synced=int(row["total_synced"]),
            complete=bool(row["complete"]),
        )

    def _update_sync_state(self, state: SyncState) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO sync_state (source_key, last_synced_at, cursor, total_synced, complete, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_key) DO UPDATE SET
                  last_synced_at = excluded.last_synced_at,
                  cursor = excluded.cursor,
                  total_synced = excluded.total_synced,
                  complete = excluded.complete,
                  updated_at = excluded.updated_at
                """,
                [
                    state.source_key,
                    state.last_synced_at.isoformat() if state.last_synced_at else None,
                    state.cursor,
                    state.total_synced,
                    int(state.complete),
                    now_ms(),
                ],
            )


# ---------------------------------------------------------------------------

_INSERT_OCCURRENCE = """
INSERT INTO code_snippet_occurrences (
  content_hash, repo, origin_location, pr_number, pr_title, file_path,
  start_line, end_line, function_context, created_at, inserted_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _occurrence_params(occurrence: Occurrence) -> list[object]:
    return [
        occurrence.content_hash,
        occurrence.repo,
        occurrence.origin_location,
        occurrence.pr_number,
        occurrence.pr_title,
        occurrence.file_path,
        occurrence.start_line,
        occurrence.end_line,
        occurrence.function_context,
        occurrence.created_at.isoformat() if occurrence.created_at else None,
        now_ms(),
    ]


def _row_to_record(row: sqlite3.Row) -> CodeSnippetRecord:
    return CodeSnippetRecord(
        content_hash=row["content_hash"],
        embedded_text=row["embedded_text"],
        language=row["language"],
        repo=row["repo"],
        pr_number=row["pr_number"],
        pr_title=row["pr_title"],
        file_path=row["file_path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        created_at=row["created_at"],
    )


__all__ = ["SQLiteSnippetStore"]
