"""Mastery catalog and per-user mastery levels."""

from __future__ import annotations

from .catalog_service import CatalogService
from .models import Mastery, MasteryLevel, UserMastery
from .schemas import AccountMasteryResponse, MasteryResponse, validate_payload
from .utils import now_ms, progress_id


class MasteryService(CatalogService[Mastery, UserMastery]):
    """Fetches /masteries and /account/masteries.

    Upstream reports the highest unlocked level 0-indexed; it is stored
    1-indexed. A mastery with no upstream record for a user is locked and has
    no row.
    """

    domain = "masteries"
    catalog_path = "/masteries"
    catalog_table = "masteries"
    progress_path = "/account/masteries"

    @property
    def catalog_ttl_ms(self) -> int:
        return self._config.cache.masteries_ms

    @property
    def progress_ttl_ms(self) -> int:
        return self._config.cache.user_masteries_ms

    async def _fetch_catalog(self, refresh: bool) -> list[Mastery]:
        ids = await self._fetch_ids(refresh)
        return [self.transform(m) for m in await self._fetch_details(ids, MasteryResponse)]

    @staticmethod
    def transform(resp: MasteryResponse) -> Mastery:
        return Mastery(
            id=resp.id,
            name=resp.name,
            requirement=resp.requirement,
            order=resp.order,
            background=resp.background,
            region=resp.region,
            levels=[
                MasteryLevel(
                    name=lvl.name,
                    description=lvl.description,
                    instruction=lvl.instruction,
                    icon=lvl.icon,
                    point_cost=lvl.point_cost,
                    exp_cost=lvl.exp_cost,
                )
                for lvl in resp.levels
            ],
        )

    async def _list_catalog(self) -> list[Mastery]:
        return await self._db.list_masteries()

    async def _store_catalog(self, items: list[Mastery]) -> None:
        await self._db.upsert_masteries(items)

    async def _fetch_progress(self, user_id: str, credential: str, refresh: bool) -> list[UserMastery]:
        payload = await self._api.get(
            self.progress_path,
            credential=credential,
            cache=self._progress_cache(user_id, refresh),
        )
        updated = now_ms()
        return [
            UserMastery(
                id=progress_id(user_id, m.id),
                user_id=user_id,
                mastery_id=m.id,
                level=m.level + 1,
                last_updated=updated,
            )
            for m in validate_payload(list[AccountMasteryResponse], payload, self.progress_path)
        ]

    async def _list_progress(self, user_id: str) -> list[UserMastery]:
        return await self._db.list_user_masteries(user_id)

    async def _store_progress(self, rows: list[UserMastery]) -> None:
        await self._db.upsert_user_masteries(rows)

    # ── Local lookups ────────────────────────────────────────

    async def get_by_region(self, region: str) -> list[Mastery]:
        return await self._db.get_masteries_by_region(region)

    async def get_user_unlocked(self, user_id: str) -> list[UserMastery]:
        return await self._db.list_user_masteries(user_id)
