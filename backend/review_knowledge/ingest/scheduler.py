"""Periodic corpus sync with resumable cursors."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

from review_knowledge.core.logging import get_logger, log_context
from review_knowledge.core.metrics import SYNC_RUNS
from review_knowledge.core.protocols import SyncStateStore
from review_knowledge.ingest.types import IngestStats
from review_knowledge.models.entities import SyncState
from review_knowledge.utils.time import utc_now

logger = get_logger(__name__)

LOW_QUOTA_SHARE = 0.2
MEDIUM_QUOTA_SHARE = 0.5
LOW_QUOTA_DELAY = 3.0
MEDIUM_QUOTA_DELAY = 1.5


@dataclass(slots=True)
class SyncPage:
    """One page from a forge or wiki listing plus the rate-limit headers seen with it."""

    items: list[Any]
    next_cursor: str | None = None
    rate_remaining: int | None = None
    rate_limit: int | None = None


FetchPage = Callable[[str | None, datetime | None], Awaitable[SyncPage]]
HandleItems = Callable[[Sequence[Any]], Awaitable[IngestStats]]


@dataclass(slots=True)
class SyncJob:
    name: str
    source_key: str
    store: SyncStateStore
    fetch_page: FetchPage
    handle: HandleItems
    max_pages: int | None = None


@dataclass(slots=True)
class SyncReport:
    job: str
    status: str
    pages: int = 0
    stats: IngestStats = field(default_factory=IngestStats)
    error: str | None = None


def adaptive_delay(remaining: int | None, limit: int | None) -> float:
    """Seconds to wait before the next page given the remaining API quota."""
    if remaining is None or not limit:
        return 0.0
    share = remaining / limit
    if share < LOW_QUOTA_SHARE:
        return LOW_QUOTA_DELAY
    if share < MEDIUM_QUOTA_SHARE:
        return MEDIUM_QUOTA_DELAY
    return 0.0


class SyncScheduler:
    """Run sync jobs every ``interval_seconds`` on a task this object owns.

    Each job resumes from the cursor persisted in its store, and the state
    is written back after every page so an interrupted backfill picks up
    where it stopped.
    """

    def __init__(
        self,
        jobs: Sequence[SyncJob],
        interval_seconds: float = 3600.0,
        page_delay_ms: int = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.jobs = list(jobs)
        self.interval_seconds = interval_seconds
        self.page_delay_ms = page_delay_ms
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="review-knowledge-sync")
        logger.info("Sync scheduler started", extra=log_context(jobs=[job.name for job in self.jobs]))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def run_once(self) -> list[SyncReport]:
        """Run every job once, in order; one job failing does not stop the others."""
        reports: list[SyncReport] = []
        for job in self.jobs:
            try:
                report = await self.run_job(job)
            except Exception as exc:
                logger.exception("Sync job %s failed: %s", job.name, exc)
                report = SyncReport(job=job.name, status="error", error=str(exc))
            SYNC_RUNS.labels(job=job.name, status=report.status).inc()
            reports.append(report)
        return reports

    async def run_job(self, job: SyncJob) -> SyncReport:
        state = await job.store.get_sync_state(job.source_key) or SyncState(source_key=job.source_key)
        since = state.last_synced_at
        report = SyncReport(job=job.name, status="ok")
        cursor = state.cursor
        while job.max_pages is None or report.pages < job.max_pages:
            page = await job.fetch_page(cursor, since)
            page_stats = await job.handle(page.items)
            _accumulate(report.stats, page_stats)
            report.pages += 1

            cursor = page.next_cursor
            state.cursor = cursor
            state.total_synced += page_stats.processed
            state.complete = cursor is None
            if state.complete:
                state.last_synced_at = utc_now()
            await job.store.update_sync_state(state)
            logger.debug(
                "Synced page %d",
                report.pages,
                extra=log_context(job=job.name, items=len(page.items), cursor=cursor),
            )
            if cursor is None:
                break

            delay = max(adaptive_delay(page.rate_remaining, page.rate_limit), self.page_delay_ms / 1000)
            if delay > 0:
                await self._sleep(delay)
        logger.info(
            "Sync job %s finished after %d pages",
            job.name,
            report.pages,
            extra=log_context(job=job.name, complete=state.complete, **report.stats.to_dict()),
        )
        return report

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


# ---------------------------------------------------------------------------


def _accumulate(total: IngestStats, page: IngestStats) -> None:
    total.processed += page.processed
    total.skipped += page.skipped
    total.failed += page.failed
    total.chunks += page.chunks
    total.embeddings_generated += page.embeddings_generated
    total.dedup_hits += page.dedup_hits
    total.errors.extend(page.errors)


__all__ = ["SyncPage", "SyncJob", "SyncReport", "SyncScheduler", "adaptive_delay"]
