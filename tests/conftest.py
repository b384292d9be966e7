"""Shared test fixtures for gw2-progress-tracker."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from gw2_tracker.api_client import Gw2ApiClient
from gw2_tracker.cache import CacheLayer
from gw2_tracker.config import TrackerConfig
from gw2_tracker.database import TrackerDatabase
from gw2_tracker.models import User
from gw2_tracker.rate_limiter import TokenBucketRateLimiter
from gw2_tracker.utils import now_ms


# ── Config & storage ─────────────────────────────────────────

@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_tracker.db")


@pytest.fixture
def sample_config(tmp_db_path: str) -> TrackerConfig:
    """TrackerConfig pointing at the temp database."""
    return TrackerConfig(database={"path": tmp_db_path})


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[TrackerDatabase, None]:
    """Provide an initialized database with temp file."""
    db = TrackerDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


class FakeClock:
    """Mutable millisecond clock for cache tests."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(database: TrackerDatabase, clock: FakeClock) -> CacheLayer:
    return CacheLayer(database, logging.getLogger("test"), clock=clock)


@pytest.fixture
def real_cache(database: TrackerDatabase) -> CacheLayer:
    """CacheLayer on the wall clock, for service tests that mix in now_ms()."""
    return CacheLayer(database, logging.getLogger("test"))


# ── Users ────────────────────────────────────────────────────

@pytest.fixture
def make_user(database: TrackerDatabase) -> Callable[..., Any]:
    """Factory that inserts a user directly into the database."""

    async def _make(user_id: str, api_key: str | None = None, name: str | None = None) -> User:
        user = User(
            id=user_id,
            name=name or user_id.title(),
            api_key=api_key or f"KEY-{user_id.upper()}-0000-0000",
            account_name=f"{user_id.title()}.1234",
            account_id=f"acct-{user_id}",
            permissions=["account", "progression"],
            created_at=now_ms(),
        )
        await database.add_user(user, max_users=10)
        return user

    return _make


# ── HTTP mocking ─────────────────────────────────────────────

def _make_response(status: int = 200, json_data: Any = None, text: str = "") -> AsyncMock:
    """Simulate an aiohttp response usable as an async context manager."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


@pytest.fixture
def make_response() -> Callable[..., AsyncMock]:
    return _make_response


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Replaces asyncio.sleep inside the rate limiter; records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def rate_limiter(fake_sleep: AsyncMock) -> TokenBucketRateLimiter:
    return TokenBucketRateLimiter(600, 60_000, sleep=fake_sleep)


@pytest.fixture
def api_client(sample_config: TrackerConfig, cache: CacheLayer, rate_limiter: TokenBucketRateLimiter) -> Gw2ApiClient:
    """Gw2ApiClient with a MagicMock session; set session.get per test."""
    client = Gw2ApiClient(sample_config.api, cache, rate_limiter, logging.getLogger("test"))
    client._session = MagicMock()
    return client


@pytest.fixture
def mock_api() -> MagicMock:
    """Mock Gw2ApiClient; tests route get() calls with a side_effect."""
    api = MagicMock(spec=Gw2ApiClient)
    api.get = AsyncMock(return_value=[])
    api.start = AsyncMock()
    api.stop = AsyncMock()
    return api
