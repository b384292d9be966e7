"""Locally stored entities.

Catalog entries are immutable snapshots of upstream data; progress entries
are keyed by ``"{user_id}-{entity_id}"``. Timestamps are epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    id: str
    name: str
    api_key: str
    created_at: int
    account_name: str | None = None
    account_id: str | None = None
    permissions: list[str] = field(default_factory=list)
    last_synced: int | None = None


# ── Achievements ─────────────────────────────────────────────

@dataclass
class AchievementTier:
    count: int
    points: int


@dataclass
class AchievementReward:
    type: str
    id: int | None = None
    count: int | None = None
    region: str | None = None


@dataclass
class Achievement:
    id: int
    name: str
    description: str = ""
    requirement: str = ""
    type: str = "Default"
    flags: list[str] = field(default_factory=list)
    tiers: list[AchievementTier] = field(default_factory=list)
    prerequisites: list[int] = field(default_factory=list)
    rewards: list[AchievementReward] = field(default_factory=list)
    icon: str | None = None
    categories: list[int] = field(default_factory=list)

    @property
    def total_points(self) -> int:
        return sum(t.points for t in self.tiers)


@dataclass
class UserAchievement:
    id: str
    user_id: str
    achievement_id: int
    done: bool
    last_updated: int
    current: int | None = None
    max: int | None = None
    bits: list[int] | None = None
    repeated: int | None = None
    unlocked: bool | None = None


# ── Masteries ────────────────────────────────────────────────

@dataclass
class MasteryLevel:
    name: str
    description: str
    instruction: str
    icon: str
    point_cost: int
    exp_cost: int


@dataclass
class Mastery:
    id: int
    name: str
    requirement: str
    order: int
    background: str
    region: str
    levels: list[MasteryLevel] = field(default_factory=list)


@dataclass
class UserMastery:
    id: str
    user_id: str
    mastery_id: int
    level: int  # 1-indexed
    last_updated: int


# ── Maps ─────────────────────────────────────────────────────

@dataclass
class MapEntry:
    id: int
    name: str
    min_level: int
    max_level: int
    default_floor: int
    type: str
    floors: list[int] = field(default_factory=list)
    region_id: int | None = None
    region_name: str | None = None
    continent_id: int | None = None
    continent_name: str | None = None
    map_rect: list[list[float]] | None = None
    continent_rect: list[list[float]] | None = None


@dataclass
class UserMapProgress:
    id: str
    user_id: str
    map_id: int
    completed: bool
    last_updated: int


@dataclass
class Waypoint:
    """Derived from continent floor data; only ever cached, never tabled."""
    id: int
    name: str
    coord: list[float]
    map_id: int
    map_name: str
    floor: int
