"""Budgeted assembly of issue resolution threads."""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass, field
from typing import Sequence

from review_knowledge.core.errors import AssemblyError, Err, Ok, RecordNotFoundError, Result
from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.protocols import IssueStore
from review_knowledge.models.entities import IssueCommentRecord, IssueKey

logger = get_logger(__name__)

BODY_MAX_CHARS = 500
TAIL_BUDGET_SHARE = 0.6
SEMANTIC_SEARCH_TOP_K = 20
ELLIPSIS = "..."
_PARAGRAPH_RE = re.compile(r"\n\n+")


@dataclass(slots=True)
class ThreadAssemblyResult:
    issue_number: int
    title: str
    body: str
    tail_comments: list[str] = field(default_factory=list)
    semantic_comments: list[str] = field(default_factory=list)
    total_chars: int = 0
    repo: str = ""

    def render(self) -> str:
        parts = [f"#{self.issue_number} {self.title}", self.body]
        parts.extend(self.semantic_comments)
        parts.extend(self.tail_comments)
        return "\n\n".join(part for part in parts if part)


@dataclass(slots=True)
class TailSelection:
    selected: list[IssueCommentRecord]
    remaining: list[IssueCommentRecord]
    chars_used: int


def truncate_issue_body(body: str, max_chars: int = BODY_MAX_CHARS) -> str:
    """Keep short bodies; otherwise first and last paragraph around ``[...]``."""
    if len(body) <= max_chars:
        return body
    paragraphs = [paragraph for paragraph in _PARAGRAPH_RE.split(body) if paragraph]
    if len(paragraphs) <= 2:
        return body[:max_chars] + ELLIPSIS
    condensed = f"{paragraphs[0]}\n\n[...]\n\n{paragraphs[-1]}"
    if len(condensed) > max_chars * 1.5:
        return condensed[:max_chars] + ELLIPSIS
    return condensed


def select_tail_comments(comments: Sequence[IssueCommentRecord], char_budget: int) -> TailSelection:
    """Walk back from the newest comment while it fits; stop at the first that doesn't."""
    if not comments or char_budget <= 0:
        return TailSelection(selected=[], remaining=list(comments), chars_used=0)
    selected: list[IssueCommentRecord] = []
    used = 0
    for comment in reversed(comments):
        if used + len(comment.body) > char_budget:
            break
        selected.append(comment)
        used += len(comment.body)
    selected.reverse()
    chosen = {comment.comment_id for comment in selected}
    remaining = [comment for comment in comments if comment.comment_id not in chosen]
    return TailSelection(selected=selected, remaining=remaining, chars_used=used)


def compute_budget_distribution(similarities: Sequence[float], total_budget: int) -> list[int]:
    """Split ``total_budget`` in proportion to each match's similarity.

    Shares are floored. A single match gets everything; an all-zero set
    splits evenly.
    """
    if not similarities:
        return []
    if len(similarities) == 1:
        return [total_budget]
    clipped = [max(0.0, similarity) for similarity in similarities]
    total = sum(clipped)
    if total == 0:
        even = total_budget // len(clipped)
        return [even for _ in clipped]
    return [math.floor(total_budget * similarity / total) for similarity in clipped]


class ThreadAssembler:
    """Assemble issue threads from an issue store under character budgets."""

    def __init__(self, store: IssueStore, semantic_top_k: int = SEMANTIC_SEARCH_TOP_K) -> None:
        self.store = store
        self.semantic_top_k = semantic_top_k

    async def assemble(
        self,
        key: IssueKey,
        query_embedding: Sequence[float],
        char_budget: int,
    ) -> Result[ThreadAssemblyResult]:
        """Assemble one thread; ``Err`` when the issue is missing or the store fails."""
        try:
            record = await self.store.get_by_number(key.repo, key.issue_number)
        except Exception as exc:
            return Err(AssemblyError("Issue lookup failed", cause=exc, context={"issue": key.issue_number}))
        if record is None:
            return Err(RecordNotFoundError(f"Issue {key.repo}#{key.issue_number} not found"))

        body = _fit(truncate_issue_body(record.body or ""), char_budget)
        remaining_budget = max(0, char_budget - len(body))
        try:
            comments = await self.store.get_comments(key.repo, key.issue_number)
        except Exception as exc:
            return Err(AssemblyError("Comment lookup failed", cause=exc, context={"issue": key.issue_number}))

        tail = select_tail_comments(comments, math.floor(remaining_budget * TAIL_BUDGET_SHARE))
        semantic_budget = remaining_budget - tail.chars_used
        semantic: list[str] = []
        semantic_chars = 0
        if tail.remaining and semantic_budget > 0:
            try:
                hits = await self.store.search_comments_by_embedding(query_embedding, key.repo, self.semantic_top_k)
            except Exception as exc:
                return Err(AssemblyError("Comment search failed", cause=exc, context={"issue": key.issue_number}))
            candidates = {comment.comment_id for comment in tail.remaining}
            relevant = sorted(
                (hit for hit in hits if hit.record.comment_id in candidates and hit.record.issue_number == key.issue_number),
                key=lambda hit: hit.distance,
            )
            for hit in relevant:
                if semantic_chars + len(hit.record.body) > semantic_budget:
                    break
                semantic.append(hit.record.body)
                semantic_chars += len(hit.record.body)

        result = ThreadAssemblyResult(
            issue_number=key.issue_number,
            title=record.title,
            body=body,
            tail_comments=[comment.body for comment in tail.selected],
            semantic_comments=semantic,
            total_chars=len(body) + tail.chars_used + semantic_chars,
            repo=key.repo,
        )
        logger.debug(
            "Thread assembled",
            extra=log_context(
                issue=key.issue_number,
                body_chars=len(body),
                tail_chars=tail.chars_used,
                semantic_chars=semantic_chars,
                total_chars=result.total_chars,
            ),
        )
        return Ok(result)

    async def assemble_many(
        self,
        keys: Sequence[IssueKey],
        similarities: Sequence[float],
        query_embedding: Sequence[float],
        total_budget: int,
    ) -> list[Result[ThreadAssemblyResult]]:
        """Assemble several threads concurrently under one shared budget."""
        budgets = compute_budget_distribution(similarities, total_budget)
        return list(
            await asyncio.gather(
                *(self.assemble(key, query_embedding, budget) for key, budget in zip(keys, budgets))
            )
        )


def _fit(text: str, budget: int) -> str:
    if len(text) <= budget:
        return text
    if budget <= len(ELLIPSIS):
        return text[: max(0, budget)]
    return text[: budget - len(ELLIPSIS)] + ELLIPSIS


__all__ = [
    "ThreadAssemblyResult",
    "TailSelection",
    "truncate_issue_body",
    "select_tail_comments",
    "compute_budget_distribution",
    "ThreadAssembler",
]
