"""Tests for YAML and environment configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from review_knowledge.core.config import Settings, get_settings


def test_defaults() -> None:
    settings = Settings()
    assert settings.top_k == 8
    assert settings.distance_threshold == 0.7
    assert settings.rrf_k == 60
    assert (settings.window_size, settings.overlap_size) == (1024, 256)
    assert settings.troubleshooting_similarity_threshold == 0.65
    assert "dependabot" in settings.bot_logins


def test_yaml_sections_map_to_fields(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RKN_DB_PATH")
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        "  db_path: ~/knowledge.db\n"
        "retrieval:\n"
        "  top_k: 12\n"
        "  adaptive: true\n"
        "troubleshooting:\n"
        "  total_budget_chars: 6000\n"
        "chunking:\n"
        "  exclude_paths: ['**/*.lock']\n",
        encoding="utf-8",
    )

    settings = Settings.from_yaml(config)

    assert settings.db_path == tmp_path / "knowledge.db"
    assert settings.top_k == 12
    assert settings.adaptive is True
    assert settings.troubleshooting_budget_chars == 6000
    assert settings.exclude_paths == ["**/*.lock"]


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("retrieval:\n  top_k: 12\n", encoding="utf-8")
    monkeypatch.setenv("RKN_CONFIG", str(config))
    monkeypatch.setenv("RKN_TOP_K", "3")
    monkeypatch.setenv("RKN_BOT_LOGINS", "ci-bot, release-bot")

    settings = get_settings()

    assert settings.top_k == 3
    assert settings.bot_logins == ["ci-bot", "release-bot"]
    assert settings.db_path == tmp_path / "rkn.db"
    assert get_settings() is settings


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    settings = Settings.from_yaml(tmp_path / "absent.yaml")
    assert settings.top_k == 8


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(window_size=100, overlap_size=100)
    with pytest.raises(ValidationError):
        Settings(top_k=0)
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.troubleshooting_similarity_threshold = 1.5
