"""Tests for CacheLayer — TTL expiry, typed reads, prefix clears and staleness."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from gw2_tracker.cache import CacheLayer
from gw2_tracker.errors import StorageFailure
from gw2_tracker.models import Waypoint


@pytest.mark.asyncio
async def test_set_then_get(cache):
    await cache.set("account:KEY", {"id": "abc", "name": "Tester.1234"}, 60_000)
    assert await cache.get("account:KEY") == {"id": "abc", "name": "Tester.1234"}


@pytest.mark.asyncio
async def test_missing_key_returns_none(cache):
    assert await cache.get("nope") is None
    assert await cache.has("nope") is False


@pytest.mark.asyncio
async def test_entry_expires_exactly_at_ttl(cache, clock, database):
    await cache.set("k", [1, 2, 3], 1000)
    clock.advance(999)
    assert await cache.get("k") == [1, 2, 3]
    clock.advance(1)
    assert await cache.get("k") is None
    # Expired entries are removed on read
    assert await database.get_cache_entry("k") is None


@pytest.mark.asyncio
async def test_set_overwrites_previous_value(cache):
    await cache.set("k", "old", 1000)
    await cache.set("k", "new", 1000)
    assert await cache.get("k") == "new"


@pytest.mark.asyncio
async def test_typed_read_rebuilds_dataclasses(cache):
    waypoints = [Waypoint(id=1, name="Lion's Arch WP", coord=[1.0, 2.0], map_id=50, map_name="Lion's Arch", floor=1)]
    await cache.set("waypoints:1:1", waypoints, 60_000)
    restored = await cache.get("waypoints:1:1", list[Waypoint])
    assert restored == waypoints
    assert isinstance(restored[0], Waypoint)


@pytest.mark.asyncio
async def test_undecodable_entry_is_discarded(cache, database, clock):
    await database.put_cache_entry("bad", "{not json", clock(), clock() + 60_000)
    assert await cache.get("bad") is None
    assert await database.get_cache_entry("bad") is None


@pytest.mark.asyncio
async def test_delete(cache):
    await cache.set("k", 1, 1000)
    await cache.delete("k")
    assert await cache.has("k") is False


@pytest.mark.asyncio
async def test_clear_with_prefix_only_removes_matching(cache):
    await cache.set("achievements:ids", [1], 1000)
    await cache.set("achievements:user:u1", [], 1000)
    await cache.set("masteries:ids", [2], 1000)

    removed = await cache.clear("achievements:")
    assert removed == 2
    assert await cache.has("masteries:ids")
    assert not await cache.has("achievements:ids")


@pytest.mark.asyncio
async def test_clear_prefix_treats_wildcards_literally(cache):
    await cache.set("a%b", 1, 1000)
    await cache.set("axb", 1, 1000)
    assert await cache.clear("a%") == 1
    assert await cache.has("axb")


@pytest.mark.asyncio
async def test_clear_all(cache):
    await cache.set("a", 1, 1000)
    await cache.set("b", 2, 1000)
    assert await cache.clear() == 2


@pytest.mark.asyncio
async def test_sweep_expired(cache, clock):
    await cache.set("short", 1, 100)
    await cache.set("long", 2, 10_000)
    clock.advance(500)
    assert await cache.sweep_expired() == 1
    assert await cache.get("long") == 2


@pytest.mark.asyncio
async def test_age_ms(cache, clock):
    assert await cache.age_ms("k") is None
    await cache.set("k", 1, 10_000)
    clock.advance(2500)
    assert await cache.age_ms("k") == 2500


@pytest.mark.asyncio
async def test_is_stale_in_last_tenth_of_ttl(cache, clock):
    assert await cache.is_stale("k") is True
    await cache.set("k", 1, 10_000)
    clock.advance(8_000)
    assert await cache.is_stale("k") is False
    clock.advance(1_500)
    assert await cache.is_stale("k") is True


# ═══════════════════════════════════════════════════════════════
#  Storage failures are reported as misses
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_storage_failure_on_read_is_a_miss():
    db = MagicMock()
    db.get_cache_entry = AsyncMock(side_effect=StorageFailure("disk gone"))
    layer = CacheLayer(db, logging.getLogger("test"))
    assert await layer.get("k") is None


@pytest.mark.asyncio
async def test_storage_failure_on_write_is_swallowed():
    db = MagicMock()
    db.put_cache_entry = AsyncMock(side_effect=StorageFailure("read-only"))
    layer = CacheLayer(db, logging.getLogger("test"))
    await layer.set("k", 1, 1000)
    db.put_cache_entry.assert_awaited_once()


@pytest.mark.asyncio
async def test_age_of_expired_entry_is_none(cache, clock, database):
    await cache.set("k", [1], 1000)
    clock.advance(5000)
    assert await cache.age_ms("k") is None
    assert await database.get_cache_entry("k") is None


@pytest.mark.asyncio
async def test_unserializable_value_is_not_cached(cache):
    await cache.set("k", object(), 1000)
    assert await cache.has("k") is False
