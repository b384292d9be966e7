"""Configuration system for gw2-progress-tracker.

All Pydantic models are defined here with sensible defaults, so an empty
YAML file (or no file at all) yields a working configuration.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


# ═══════════════════════════════════════════════════════════════
#  Upstream API
# ═══════════════════════════════════════════════════════════════

class ApiConfig(BaseModel):
    base_url: str = "https://api.guildwars2.com/v2"
    proxy_url: str | None = Field(
        default=None,
        description="Bridging edge endpoint; when set, requests go through it as ?endpoint=...&apiKey=...",
    )
    timeout_seconds: float = 15.0
    max_retries: int = 3
    user_agent: str = "GW2-Progress-Tracker/1.0"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RateLimitConfig(BaseModel):
    """Token bucket matching the upstream per-key budget."""
    capacity: int = Field(default=600, ge=1)
    window_ms: int = Field(default=60_000, ge=1)
    base_backoff_ms: int = 1000
    max_backoff_ms: int = 30_000


# ═══════════════════════════════════════════════════════════════
#  Cache & Storage
# ═══════════════════════════════════════════════════════════════

class CacheTTLConfig(BaseModel):
    achievements_ms: int = 24 * 60 * 60 * 1000
    user_progress_ms: int = 5 * 60 * 1000
    masteries_ms: int = 24 * 60 * 60 * 1000
    user_masteries_ms: int = 15 * 60 * 1000
    maps_ms: int = 24 * 60 * 60 * 1000
    account_info_ms: int = 30 * 60 * 1000
    token_info_ms: int = 60 * 60 * 1000


class DatabaseConfig(BaseModel):
    path: str = "gw2_tracker.db"


# ═══════════════════════════════════════════════════════════════
#  Sync & Scheduling
# ═══════════════════════════════════════════════════════════════

class SyncConfig(BaseModel):
    max_users: int = Field(default=10, ge=1)
    chunk_size: int = Field(default=200, ge=1, le=200, description="Upstream per-request id ceiling")
    interval_minutes: int = Field(default=0, description="Periodic all-user sync; 0 disables")
    cache_sweep_interval_minutes: int = Field(default=60, description="Periodic expired-cache sweep; 0 disables")


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class TrackerConfig(BaseModel):
    """Full tracker config."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheTTLConfig = Field(default_factory=CacheTTLConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> TrackerConfig:
    """Load and validate YAML config file into TrackerConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return TrackerConfig(**raw)
