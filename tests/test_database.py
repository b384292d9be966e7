"""Tests for TrackerDatabase — schema, users, catalogs, progress and cascade removal."""

from __future__ import annotations

import logging

import pytest

from gw2_tracker.database import TrackerDatabase
from gw2_tracker.errors import DuplicateCredentialError, StorageFailure, UserLimitError
from gw2_tracker.models import (
    Achievement,
    AchievementReward,
    AchievementTier,
    MapEntry,
    Mastery,
    MasteryLevel,
    User,
    UserAchievement,
    UserMapProgress,
    UserMastery,
)
from gw2_tracker.utils import progress_id


def _user(uid: str, key: str | None = None, created_at: int = 1) -> User:
    return User(id=uid, name=uid, api_key=key or f"KEY-{uid}", created_at=created_at)


def _achievement(aid: int, **kw) -> Achievement:
    kw.setdefault("name", f"Achievement {aid}")
    return Achievement(id=aid, **kw)


def _user_achievement(uid: str, aid: int, done: bool = False, ts: int = 1000) -> UserAchievement:
    return UserAchievement(id=progress_id(uid, aid), user_id=uid, achievement_id=aid, done=done, last_updated=ts)


# ═══════════════════════════════════════════════════════════════
#  Schema
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_initialize_is_idempotent(database):
    await database.initialize()
    assert await database.count_rows("users") == 0


@pytest.mark.asyncio
async def test_count_rows_rejects_unknown_table(database):
    with pytest.raises(ValueError):
        await database.count_rows("sqlite_master; DROP TABLE users")


@pytest.mark.asyncio
async def test_sqlite_errors_become_storage_failure(tmp_path):
    broken = TrackerDatabase(str(tmp_path / "missing-dir" / "x.db"), logging.getLogger("test"))
    with pytest.raises(StorageFailure):
        await broken.initialize()


# ═══════════════════════════════════════════════════════════════
#  Users
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_add_and_get_user(database):
    user = _user("u1")
    user.permissions = ["account", "progression"]
    await database.add_user(user, max_users=10)

    loaded = await database.get_user("u1")
    assert loaded == user


@pytest.mark.asyncio
async def test_list_users_in_creation_order(database):
    await database.add_user(_user("b", created_at=2), 10)
    await database.add_user(_user("a", created_at=1), 10)
    assert [u.id for u in await database.list_users()] == ["a", "b"]


@pytest.mark.asyncio
async def test_duplicate_api_key_rejected(database):
    await database.add_user(_user("u1", key="SAME"), 10)
    with pytest.raises(DuplicateCredentialError):
        await database.add_user(_user("u2", key="SAME"), 10)
    assert await database.count_rows("users") == 1


@pytest.mark.asyncio
async def test_user_limit_enforced(database):
    await database.add_user(_user("u1"), 2)
    await database.add_user(_user("u2"), 2)
    with pytest.raises(UserLimitError):
        await database.add_user(_user("u3"), 2)
    assert await database.count_rows("users") == 2


@pytest.mark.asyncio
async def test_update_user(database):
    await database.add_user(_user("u1"), 10)
    assert await database.update_user("u1", name="Renamed", permissions=["account"]) is True
    loaded = await database.get_user("u1")
    assert loaded.name == "Renamed"
    assert loaded.permissions == ["account"]
    assert await database.update_user("ghost", name="x") is False


@pytest.mark.asyncio
async def test_update_user_rejects_unknown_field(database):
    with pytest.raises(ValueError):
        await database.update_user("u1", api_key="new")


@pytest.mark.asyncio
async def test_set_last_synced(database):
    await database.add_user(_user("u1"), 10)
    await database.add_user(_user("u2"), 10)
    await database.set_last_synced(["u1"], 12345)
    assert (await database.get_user("u1")).last_synced == 12345
    assert (await database.get_user("u2")).last_synced is None


@pytest.mark.asyncio
async def test_remove_user_cascades(database):
    await database.add_user(_user("u1", key="KEY-ONE"), 10)
    await database.add_user(_user("u2", key="KEY-TWO"), 10)

    for uid in ("u1", "u2"):
        await database.upsert_user_achievements([_user_achievement(uid, 1)])
        await database.upsert_user_masteries(
            [UserMastery(id=progress_id(uid, 4), user_id=uid, mastery_id=4, level=2, last_updated=1)]
        )
        await database.upsert_user_map_progress(
            [UserMapProgress(id=progress_id(uid, 15), user_id=uid, map_id=15, completed=True, last_updated=1)]
        )
    await database.put_cache_entry("account:KEY-ONE", "{}", 0, 10**15)
    await database.put_cache_entry("achievements:user:u1", "[]", 0, 10**15)
    await database.put_cache_entry("account:KEY-TWO", "{}", 0, 10**15)

    assert await database.remove_user("u1", "KEY-ONE") is True

    assert await database.get_user("u1") is None
    assert await database.list_user_achievements("u1") == []
    assert await database.list_user_masteries("u1") == []
    assert await database.list_user_map_progress("u1") == []
    assert await database.get_cache_entry("account:KEY-ONE") is None
    assert await database.get_cache_entry("achievements:user:u1") is None

    # The other user is untouched
    assert len(await database.list_user_achievements("u2")) == 1
    assert len(await database.list_user_masteries("u2")) == 1
    assert len(await database.list_user_map_progress("u2")) == 1
    assert await database.get_cache_entry("account:KEY-TWO") is not None


@pytest.mark.asyncio
async def test_remove_unknown_user_returns_false(database):
    assert await database.remove_user("ghost", "KEY") is False


# ═══════════════════════════════════════════════════════════════
#  Achievements
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_achievement_round_trip_keeps_nested_fields(database):
    original = _achievement(
        1,
        description="Do the thing",
        requirement="Complete all events",
        type="ItemSet",
        flags=["Pvp", "CategoryDisplay"],
        tiers=[AchievementTier(count=1, points=5), AchievementTier(count=10, points=10)],
        prerequisites=[7],
        rewards=[AchievementReward(type="Item", id=123, count=1)],
        icon="https://render.example/icon.png",
        categories=[2, 5],
    )
    await database.upsert_achievements([original])
    loaded = await database.get_achievement(1)
    assert loaded == original
    assert loaded.total_points == 15


@pytest.mark.asyncio
async def test_achievements_by_category_and_type(database):
    await database.upsert_achievements([
        _achievement(1, categories=[10], type="Default"),
        _achievement(2, categories=[10, 11], type="ItemSet"),
        _achievement(3, categories=[11], type="Default"),
    ])
    assert [a.id for a in await database.get_achievements_by_category(10)] == [1, 2]
    assert [a.id for a in await database.get_achievements_by_category(11)] == [2, 3]
    assert [a.id for a in await database.get_achievements_by_type("Default")] == [1, 3]


@pytest.mark.asyncio
async def test_upsert_replaces_category_membership(database):
    await database.upsert_achievements([_achievement(1, categories=[10])])
    await database.upsert_achievements([_achievement(1, categories=[20])])
    assert await database.get_achievements_by_category(10) == []
    assert [a.id for a in await database.get_achievements_by_category(20)] == [1]


@pytest.mark.asyncio
async def test_user_achievement_queries(database):
    await database.add_user(_user("u1"), 10)
    await database.add_user(_user("u2"), 10)
    await database.upsert_user_achievements([
        _user_achievement("u1", 1, done=True),
        _user_achievement("u1", 2, done=False),
        _user_achievement("u2", 1, done=False),
    ])
    assert [r.achievement_id for r in await database.get_user_achievements_by_done("u1", True)] == [1]
    assert [r.achievement_id for r in await database.get_user_achievements_by_done("u1", False)] == [2]
    row = await database.get_user_achievement("u2", 1)
    assert row is not None and row.done is False
    assert await database.get_user_achievement("u2", 2) is None


@pytest.mark.asyncio
async def test_user_achievement_optional_fields(database):
    await database.add_user(_user("u1"), 10)
    row = UserAchievement(
        id="u1-9", user_id="u1", achievement_id=9, done=False, last_updated=5,
        current=3, max=10, bits=[0, 2], repeated=1, unlocked=True,
    )
    await database.upsert_user_achievements([row])
    assert await database.get_user_achievement("u1", 9) == row


# ═══════════════════════════════════════════════════════════════
#  Masteries & maps
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_mastery_round_trip_and_region_filter(database):
    level = MasteryLevel(name="Gliding", description="d", instruction="i", icon="x.png", point_cost=1, exp_cost=254_000)
    await database.upsert_masteries([
        Mastery(id=2, name="Nuhoch", requirement="", order=2, background="", region="Maguuma", levels=[]),
        Mastery(id=1, name="Gliding", requirement="", order=1, background="", region="Maguuma", levels=[level]),
        Mastery(id=3, name="Skyscale", requirement="", order=1, background="", region="Desert", levels=[]),
    ])
    maguuma = await database.get_masteries_by_region("Maguuma")
    assert [m.id for m in maguuma] == [1, 2]
    assert maguuma[0].levels == [level]


@pytest.mark.asyncio
async def test_map_round_trip_and_filters(database):
    m = MapEntry(
        id=15, name="Queensdale", min_level=1, max_level=15, default_floor=1, type="Public",
        floors=[0, 1], region_id=4, region_name="Kryta", continent_id=1, continent_name="Tyria",
        map_rect=[[-1.0, 2.0], [3.0, 4.0]], continent_rect=[[0.0, 0.0], [1.0, 1.0]],
    )
    other = MapEntry(id=50, name="Lion's Arch", min_level=80, max_level=80, default_floor=1, type="Public",
                     region_id=8, continent_id=1)
    await database.upsert_maps([m, other])
    assert await database.get_map(15) == m
    assert [x.id for x in await database.get_maps_by_region(4)] == [15]
    assert [x.id for x in await database.get_maps_by_continent(1)] == [15, 50]
    assert [x.id for x in await database.get_maps_by_type("Public")] == [15, 50]


# ═══════════════════════════════════════════════════════════════
#  Cache table
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_delete_expired_cache_boundary(database):
    await database.put_cache_entry("a", "1", 0, 100)
    await database.put_cache_entry("b", "1", 0, 101)
    assert await database.delete_expired_cache(100) == 1
    assert await database.get_cache_entry("b") is not None


@pytest.mark.asyncio
async def test_progress_for_missing_user_is_not_written(database):
    await database.add_user(_user("u1"), 10)
    written = await database.upsert_user_achievements([
        _user_achievement("u1", 1),
        _user_achievement("gone", 1),
    ])
    await database.upsert_user_masteries(
        [UserMastery(id="gone-4", user_id="gone", mastery_id=4, level=1, last_updated=1)]
    )
    await database.upsert_user_map_progress(
        [UserMapProgress(id="gone-15", user_id="gone", map_id=15, completed=True, last_updated=1)]
    )

    assert written == 1
    assert await database.list_user_achievements("gone") == []
    assert await database.list_user_masteries("gone") == []
    assert await database.list_user_map_progress("gone") == []
    assert len(await database.list_user_achievements("u1")) == 1
