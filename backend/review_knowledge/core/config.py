"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "RKN_"
DEFAULT_CONFIG_PATH = Path("~/.config/review-knowledge/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dimensions"): "embedding_dimensions",
    ("retrieval", "enabled"): "retrieval_enabled",
    ("retrieval", "top_k"): "top_k",
    ("retrieval", "distance_threshold"): "distance_threshold",
    ("retrieval", "adaptive"): "adaptive",
    ("retrieval", "max_context_chars"): "max_context_chars",
    ("retrieval", "rrf_k"): "rrf_k",
    ("retrieval", "dedup_threshold"): "dedup_threshold",
    ("retrieval", "corpus_top_k"): "corpus_top_k",
    ("chunking", "window_size"): "window_size",
    ("chunking", "overlap_size"): "overlap_size",
    ("chunking", "min_changed_lines"): "min_changed_lines",
    ("chunking", "max_hunks_per_pr"): "max_hunks_per_pr",
    ("chunking", "exclude_paths"): "exclude_paths",
    ("chunking", "bot_logins"): "bot_logins",
    ("troubleshooting", "enabled"): "troubleshooting_enabled",
    ("troubleshooting", "similarity_threshold"): "troubleshooting_similarity_threshold",
    ("troubleshooting", "max_results"): "troubleshooting_max_results",
    ("troubleshooting", "total_budget_chars"): "troubleshooting_budget_chars",
    ("sync", "interval_seconds"): "sync_interval_seconds",
    ("sync", "page_delay_ms"): "sync_page_delay_ms",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".review-knowledge" / "snippets.db")
    embedding_model: str = "hashed-384"
    embedding_dimensions: int = Field(default=384, ge=8)

    retrieval_enabled: bool = True
    top_k: int = Field(default=8, ge=1)
    distance_threshold: float = Field(default=0.7, ge=0.0, le=2.0)
    adaptive: bool = False
    max_context_chars: int = Field(default=4000, ge=0)
    rrf_k: int = Field(default=60, ge=1)
    dedup_threshold: float = Field(default=0.9, gt=0.0, le=1.0)
    corpus_top_k: int = Field(default=5, ge=1)

    window_size: int = Field(default=1024, ge=1)
    overlap_size: int = Field(default=256, ge=0)
    min_changed_lines: int = Field(default=3, ge=0)
    max_hunks_per_pr: int = Field(default=100, ge=0)
    exclude_paths: list[str] = Field(
        default_factory=lambda: ["**/*.lock", "**/package-lock.json", "**/vendor/**", "**/*.min.js"]
    )
    bot_logins: list[str] = Field(
        default_factory=lambda: ["dependabot", "renovate", "kodiai", "github-actions", "codecov"]
    )

    troubleshooting_enabled: bool = True
    troubleshooting_similarity_threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    troubleshooting_max_results: int = Field(default=3, ge=1)
    troubleshooting_budget_chars: int = Field(default=12000, ge=0)

    sync_interval_seconds: float = Field(default=3600.0, gt=0)
    sync_page_delay_ms: int = Field(default=500, ge=0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("exclude_paths", "bot_logins", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "Settings":
        if self.overlap_size >= self.window_size:
            raise ValueError("overlap_size must be smaller than window_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RKN_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
