"""Pydantic DTOs for retrieval requests and provenance."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from review_knowledge.models.entities import RepoRef, SourceType

TriggerType = Literal["pr_review", "issue", "question", "slack"]
ThresholdMethod = Literal["configured", "percentile", "adaptive"]


class RetrieveOptions(BaseModel):
    """Per-call ranking options; ``None`` fields fall back to ``Settings``."""

    queries: list[str]
    repo: str
    top_k: int | None = Field(default=None, ge=1, le=100)
    distance_threshold: float | None = Field(default=None, ge=0.0, le=2.0)
    adaptive: bool | None = None
    max_context_chars: int | None = Field(default=None, ge=0)
    k: int | None = Field(default=None, ge=1, description="RRF constant")
    trigger_type: TriggerType | None = None
    pr_languages: list[str] = Field(default_factory=list)
    language: str | None = Field(default=None, description="Restrict code snippets to one language")

    @field_validator("repo")
    @classmethod
    def _check_repo(cls, value: str) -> str:
        return RepoRef.parse(value).full_name

    @field_validator("queries")
    @classmethod
    def _drop_blank_queries(cls, value: list[str]) -> list[str]:
        return [query for query in value if query and query.strip()]

    @field_validator("pr_languages")
    @classmethod
    def _lower_languages(cls, value: list[str]) -> list[str]:
        return [language.strip().lower() for language in value if language and language.strip()]


class TroubleshootingQuery(BaseModel):
    """Issue text to find prior resolutions for."""

    repo: str
    title: str = Field(min_length=1)
    body: str | None = None

    @field_validator("repo")
    @classmethod
    def _check_repo(cls, value: str) -> str:
        return RepoRef.parse(value).full_name

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()


class Provenance(BaseModel):
    query_count: int
    candidate_count: int = 0
    threshold_method: ThresholdMethod = "configured"
    threshold_value: float
    hybrid_search_used: bool = True
    unified_result_count: int = 0
    sources: list[SourceType] = Field(default_factory=list)
    corpus_counts: dict[str, int] = Field(default_factory=dict)
    rrf_k: int = 60
    dedup_threshold: float = 0.9
    trigger_type: TriggerType | None = None


__all__ = ["TriggerType", "ThresholdMethod", "RetrieveOptions", "TroubleshootingQuery", "Provenance"]
