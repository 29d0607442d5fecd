"""Test fixtures for the review knowledge engine."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from review_knowledge.core.config import Settings, get_settings  # noqa: E402
from review_knowledge.ingest.embeddings import HashedEmbeddingProvider  # noqa: E402

from fakes import (  # noqa: E402
    FakeEmbeddingProvider,
    InMemoryIssueStore,
    InMemoryReviewStore,
    InMemorySnippetStore,
    InMemoryWikiStore,
)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset cached settings and environment between tests."""
    monkeypatch.setenv("RKN_DB_PATH", str(tmp_path / "rkn.db"))
    monkeypatch.delenv("RKN_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    HashedEmbeddingProvider._instances.clear()
    get_settings.cache_clear()
    yield
    HashedEmbeddingProvider._instances.clear()
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "rkn.db")


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def snippet_store() -> InMemorySnippetStore:
    return InMemorySnippetStore()


@pytest.fixture
def review_store() -> InMemoryReviewStore:
    return InMemoryReviewStore()


@pytest.fixture
def wiki_store() -> InMemoryWikiStore:
    return InMemoryWikiStore()


@pytest.fixture
def issue_store() -> InMemoryIssueStore:
    return InMemoryIssueStore()
