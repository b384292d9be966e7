"""Pydantic schemas for GW2 API responses.

Every payload is validated here before it is transformed into a local model.
Anything that fails validation becomes a ValidationFailure instead of being
passed through with the wrong shape. Unknown fields are ignored.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import ValidationFailure

T = TypeVar("T")


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Account ──────────────────────────────────────────────────

class TokenInfoResponse(_Wire):
    id: str
    name: str
    permissions: list[str] = Field(default_factory=list)


class AccountInfoResponse(_Wire):
    id: str
    name: str
    age: int | None = None
    world: int | None = None
    created: str | None = None
    access: list[str] = Field(default_factory=list)


# ── Achievements ─────────────────────────────────────────────

class TierResponse(_Wire):
    count: int
    points: int


class RewardResponse(_Wire):
    type: str
    id: int | None = None
    count: int | None = None
    region: str | None = None


class AchievementResponse(_Wire):
    id: int
    name: str
    description: str = ""
    requirement: str = ""
    type: str = "Default"
    flags: list[str] = Field(default_factory=list)
    tiers: list[TierResponse] = Field(default_factory=list)
    prerequisites: list[int] = Field(default_factory=list)
    rewards: list[RewardResponse] = Field(default_factory=list)
    icon: str | None = None


class AchievementCategoryResponse(_Wire):
    id: int
    name: str
    achievements: list[int] = Field(default_factory=list)


class AccountAchievementResponse(_Wire):
    id: int
    done: bool
    current: int | None = None
    max: int | None = None
    bits: list[int] | None = None
    repeated: int | None = None
    unlocked: bool | None = None


# ── Masteries ────────────────────────────────────────────────

class MasteryLevelResponse(_Wire):
    name: str
    description: str = ""
    instruction: str = ""
    icon: str = ""
    point_cost: int
    exp_cost: int


class MasteryResponse(_Wire):
    id: int
    name: str
    requirement: str = ""
    order: int
    background: str = ""
    region: str
    levels: list[MasteryLevelResponse] = Field(default_factory=list)


class AccountMasteryResponse(_Wire):
    id: int
    level: int = Field(ge=0, description="0-indexed highest unlocked level")


# ── Maps ─────────────────────────────────────────────────────

class MapResponse(_Wire):
    id: int
    name: str
    min_level: int = 0
    max_level: int = 0
    default_floor: int = 0
    type: str = "Unknown"
    floors: list[int] = Field(default_factory=list)
    region_id: int | None = None
    region_name: str | None = None
    continent_id: int | None = None
    continent_name: str | None = None
    map_rect: list[list[float]] | None = None
    continent_rect: list[list[float]] | None = None


class PointOfInterestResponse(_Wire):
    id: int
    name: str = ""
    type: str
    floor: int
    coord: list[float]


class FloorMapResponse(_Wire):
    name: str
    points_of_interest: list[PointOfInterestResponse] = Field(default_factory=list)

    @field_validator("points_of_interest", mode="before")
    @classmethod
    def _keyed_by_id(cls, v: Any) -> Any:
        # Live floor payloads key points of interest by id
        if isinstance(v, dict):
            return list(v.values())
        return v


class FloorRegionResponse(_Wire):
    name: str
    maps: dict[int, FloorMapResponse] = Field(default_factory=dict)


class ContinentFloorResponse(_Wire):
    texture_dims: list[int] = Field(default_factory=list)
    regions: dict[int, FloorRegionResponse] = Field(default_factory=dict)


# ── Validation helpers ───────────────────────────────────────

@lru_cache(maxsize=None)
def _adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


def validate_payload(type_: type[T] | Any, payload: Any, source: str) -> T:
    """Validate *payload* as *type_* or raise ValidationFailure naming *source*."""
    try:
        return _adapter(type_).validate_python(payload)
    except ValidationError as e:
        raise ValidationFailure(
            f"Unexpected response shape from {source}: {e.error_count()} error(s); {e.errors()[0]['msg']}"
        ) from e
