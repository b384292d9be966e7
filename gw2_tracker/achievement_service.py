"""Achievement catalog and per-user achievement progress."""

from __future__ import annotations

from .api_client import CacheSpec
from .catalog_service import CatalogService
from .models import Achievement, AchievementReward, AchievementTier, UserAchievement
from .schemas import (
    AccountAchievementResponse,
    AchievementCategoryResponse,
    AchievementResponse,
    validate_payload,
)
from .utils import now_ms, progress_id


class AchievementService(CatalogService[Achievement, UserAchievement]):
    """Fetches /achievements and /account/achievements."""

    domain = "achievements"
    catalog_path = "/achievements"
    catalog_table = "achievements"
    categories_path = "/achievements/categories"
    progress_path = "/account/achievements"

    @property
    def catalog_ttl_ms(self) -> int:
        return self._config.cache.achievements_ms

    @property
    def progress_ttl_ms(self) -> int:
        return self._config.cache.user_progress_ms

    # ══════════════════════════════════════════════════════════
    #  Catalog
    # ══════════════════════════════════════════════════════════

    async def _fetch_catalog(self, refresh: bool) -> list[Achievement]:
        ids = await self._fetch_ids(refresh)
        details = await self._fetch_details(ids, AchievementResponse)
        categories = await self._fetch_category_index(refresh)
        return [self.transform(a, categories.get(a.id, [])) for a in details]

    async def _fetch_category_index(self, refresh: bool) -> dict[int, list[int]]:
        """Map achievement id → ids of the categories that list it."""
        payload = await self._api.get(
            self.categories_path,
            params={"ids": "all"},
            cache=CacheSpec("achievements:categories", self.catalog_ttl_ms, refresh=refresh),
            deduplicate=True,
        )
        index: dict[int, list[int]] = {}
        for category in validate_payload(list[AchievementCategoryResponse], payload, self.categories_path):
            for achievement_id in category.achievements:
                index.setdefault(achievement_id, []).append(category.id)
        return index

    @staticmethod
    def transform(resp: AchievementResponse, categories: list[int] | None = None) -> Achievement:
        return Achievement(
            id=resp.id,
            name=resp.name,
            description=resp.description,
            requirement=resp.requirement,
            type=resp.type,
            flags=list(resp.flags),
            tiers=[AchievementTier(count=t.count, points=t.points) for t in resp.tiers],
            prerequisites=list(resp.prerequisites),
            rewards=[
                AchievementReward(type=r.type, id=r.id, count=r.count, region=r.region)
                for r in resp.rewards
            ],
            icon=resp.icon,
            categories=sorted(categories or []),
        )

    async def _list_catalog(self) -> list[Achievement]:
        return await self._db.list_achievements()

    async def _store_catalog(self, items: list[Achievement]) -> None:
        await self._db.upsert_achievements(items)

    # ══════════════════════════════════════════════════════════
    #  Progress
    # ══════════════════════════════════════════════════════════

    async def _fetch_progress(self, user_id: str, credential: str, refresh: bool) -> list[UserAchievement]:
        payload = await self._api.get(
            self.progress_path,
            credential=credential,
            cache=self._progress_cache(user_id, refresh),
        )
        updated = now_ms()
        return [
            UserAchievement(
                id=progress_id(user_id, p.id),
                user_id=user_id,
                achievement_id=p.id,
                done=p.done,
                current=p.current,
                max=p.max,
                bits=p.bits,
                repeated=p.repeated,
                unlocked=p.unlocked,
                last_updated=updated,
            )
            for p in validate_payload(list[AccountAchievementResponse], payload, self.progress_path)
        ]

    async def _list_progress(self, user_id: str) -> list[UserAchievement]:
        return await self._db.list_user_achievements(user_id)

    async def _store_progress(self, rows: list[UserAchievement]) -> None:
        await self._db.upsert_user_achievements(rows)

    # ══════════════════════════════════════════════════════════
    #  Local lookups (no network)
    # ══════════════════════════════════════════════════════════

    async def get_by_id(self, achievement_id: int) -> Achievement | None:
        return await self._db.get_achievement(achievement_id)

    async def get_by_category(self, category_id: int) -> list[Achievement]:
        return await self._db.get_achievements_by_category(category_id)

    async def get_by_type(self, achievement_type: str) -> list[Achievement]:
        return await self._db.get_achievements_by_type(achievement_type)

    async def get_user_completed(self, user_id: str) -> list[UserAchievement]:
        return await self._db.get_user_achievements_by_done(user_id, True)

    async def get_user_incomplete(self, user_id: str) -> list[UserAchievement]:
        return await self._db.get_user_achievements_by_done(user_id, False)

    async def get_user_achievement_progress(self, user_id: str, achievement_id: int) -> UserAchievement | None:
        return await self._db.get_user_achievement(user_id, achievement_id)

    async def get_common_incomplete(self, user_ids: list[str]) -> list[Achievement]:
        """Achievements that none of the given users has completed.

        A missing progress row counts as not started.
        """
        if not user_ids:
            return []
        completed: set[int] = set()
        for user_id in user_ids:
            completed.update(row.achievement_id for row in await self.get_user_completed(user_id))
        return [a for a in await self._db.list_achievements() if a.id not in completed]
