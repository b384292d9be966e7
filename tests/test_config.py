"""Tests for config loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from gw2_tracker.config import TrackerConfig, load_config


def test_defaults():
    config = TrackerConfig()
    assert config.api.base_url == "https://api.guildwars2.com/v2"
    assert config.api.proxy_url is None
    assert config.rate_limit.capacity == 600
    assert config.rate_limit.window_ms == 60_000
    assert config.cache.achievements_ms == 86_400_000
    assert config.cache.user_progress_ms == 300_000
    assert config.cache.user_masteries_ms == 900_000
    assert config.sync.max_users == 10
    assert config.sync.chunk_size == 200


def test_base_url_trailing_slash_stripped():
    assert TrackerConfig(api={"base_url": "https://example.test/v2/"}).api.base_url == "https://example.test/v2"


def test_chunk_size_cannot_exceed_upstream_ceiling():
    with pytest.raises(ValidationError):
        TrackerConfig(sync={"chunk_size": 201})


def test_max_users_must_be_positive():
    with pytest.raises(ValidationError):
        TrackerConfig(sync={"max_users": 0})


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "api:\n"
        "  proxy_url: https://edge.example/api/gw2\n"
        "sync:\n"
        "  max_users: 4\n"
        "database:\n"
        "  path: /tmp/tracker.db\n"
    )
    config = load_config(str(path))
    assert config.api.proxy_url == "https://edge.example/api/gw2"
    assert config.sync.max_users == 4
    assert config.database.path == "/tmp/tracker.db"


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == TrackerConfig()


def test_env_var_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("GW2_TRACKER_DB", "/data/gw2.db")
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        "  path: ${GW2_TRACKER_DB}\n"
        "api:\n"
        "  user_agent: ${GW2_TRACKER_UA:-Tracker/2}\n"
    )
    config = load_config(str(path))
    assert config.database.path == "/data/gw2.db"
    assert config.api.user_agent == "Tracker/2"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(str(path))
