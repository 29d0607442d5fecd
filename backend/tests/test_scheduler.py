"""Tests for the periodic sync scheduler."""

import asyncio

from review_knowledge.ingest.scheduler import SyncJob, SyncPage, SyncScheduler, adaptive_delay
from review_knowledge.ingest.types import IngestStats
from review_knowledge.models.entities import SyncState


class FakeSource:
    """Serves pages keyed by cursor and records every request."""

    def __init__(self, pages: dict, fail_on: str | None = "never") -> None:
        self.pages = pages
        self.fail_on = fail_on
        self.requests: list = []
        self.handled: list = []

    async def fetch_page(self, cursor, since):
        self.requests.append((cursor, since))
        if cursor == self.fail_on:
            raise RuntimeError("502 Bad Gateway")
        return self.pages[cursor]

    async def handle(self, items):
        self.handled.extend(items)
        return IngestStats(processed=len(items), chunks=len(items))


def _recording_sleep(delays: list):
    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return sleep


def test_adaptive_delay() -> None:
    assert adaptive_delay(None, 5000) == 0.0
    assert adaptive_delay(100, 0) == 0.0
    assert adaptive_delay(500, 5000) == 3.0
    assert adaptive_delay(2000, 5000) == 1.5
    assert adaptive_delay(4000, 5000) == 0.0


async def test_run_job_walks_pages_and_completes(wiki_store) -> None:
    source = FakeSource(
        {
            None: SyncPage(items=[1, 2], next_cursor="p2", rate_remaining=100, rate_limit=5000),
            "p2": SyncPage(items=[3], next_cursor=None),
        }
    )
    delays: list = []
    scheduler = SyncScheduler([], page_delay_ms=250, sleep=_recording_sleep(delays))
    job = SyncJob("wiki", "wiki:main", wiki_store, source.fetch_page, source.handle)

    report = await scheduler.run_job(job)

    assert report.status == "ok"
    assert report.pages == 2
    assert report.stats.processed == 3
    assert source.handled == [1, 2, 3]
    assert delays == [3.0]
    state = wiki_store.sync_states["wiki:main"]
    assert state.complete is True
    assert state.cursor is None
    assert state.total_synced == 3
    assert state.last_synced_at is not None


async def test_run_job_resumes_from_saved_cursor(wiki_store) -> None:
    await wiki_store.update_sync_state(SyncState(source_key="wiki:main", cursor="p2", total_synced=2))
    source = FakeSource({"p2": SyncPage(items=[3], next_cursor=None)})
    job = SyncJob("wiki", "wiki:main", wiki_store, source.fetch_page, source.handle)

    await SyncScheduler([]).run_job(job)

    assert source.requests == [("p2", None)]
    assert wiki_store.sync_states["wiki:main"].total_synced == 3


async def test_interrupted_backfill_keeps_cursor(issue_store) -> None:
    source = FakeSource({None: SyncPage(items=["a"], next_cursor="p2")}, fail_on="p2")
    failing = SyncJob("issues", "issues:acme/player", issue_store, source.fetch_page, source.handle)
    other = FakeSource({None: SyncPage(items=["b"])})
    healthy = SyncJob("wiki", "wiki:main", issue_store, other.fetch_page, other.handle)
    scheduler = SyncScheduler([failing, healthy], sleep=_recording_sleep([]))

    reports = await scheduler.run_once()

    assert [(report.job, report.status) for report in reports] == [("issues", "error"), ("wiki", "ok")]
    assert "502" in reports[0].error
    saved = issue_store.sync_states["issues:acme/player"]
    assert saved.cursor == "p2"
    assert saved.complete is False
    assert issue_store.sync_states["wiki:main"].complete is True


async def test_max_pages_bounds_a_run(wiki_store) -> None:
    source = FakeSource({None: SyncPage(items=[1], next_cursor="p2"), "p2": SyncPage(items=[2], next_cursor="p3")})
    job = SyncJob("wiki", "wiki:main", wiki_store, source.fetch_page, source.handle, max_pages=1)

    report = await SyncScheduler([]).run_job(job)

    assert report.pages == 1
    assert wiki_store.sync_states["wiki:main"].cursor == "p2"


async def test_start_and_stop(wiki_store) -> None:
    source = FakeSource({None: SyncPage(items=[1])})
    job = SyncJob("wiki", "wiki:main", wiki_store, source.fetch_page, source.handle)
    scheduler = SyncScheduler([job], interval_seconds=60)

    scheduler.start()
    assert scheduler.running
    for _ in range(20):
        if source.requests:
            break
        await asyncio.sleep(0)
    await scheduler.stop()

    assert not scheduler.running
    assert source.requests == [(None, None)]
