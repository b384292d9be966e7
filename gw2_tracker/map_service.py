"""Map catalog, waypoint extraction and locally recorded map completion."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .api_client import CacheSpec
from .catalog_service import CatalogService
from .errors import UnknownUserError
from .models import MapEntry, UserMapProgress, Waypoint
from .schemas import ContinentFloorResponse, MapResponse, validate_payload
from .utils import now_ms, progress_id

if TYPE_CHECKING:
    from .api_client import Gw2ApiClient
    from .cache import CacheLayer
    from .config import TrackerConfig
    from .database import TrackerDatabase


class MapService(CatalogService[MapEntry, UserMapProgress]):
    """Fetches /maps and /continents/{c}/floors/{f}.

    The upstream has no per-map completion endpoint, so map progress is
    recorded locally and get_user_progress never touches the network.
    """

    domain = "maps"
    catalog_path = "/maps"
    catalog_table = "maps"

    def __init__(
        self,
        config: TrackerConfig,
        database: TrackerDatabase,
        api: Gw2ApiClient,
        cache: CacheLayer,
        logger: logging.Logger,
    ) -> None:
        super().__init__(config, database, api, logger)
        self._cache = cache

    @property
    def catalog_ttl_ms(self) -> int:
        return self._config.cache.maps_ms

    @property
    def progress_ttl_ms(self) -> int:
        return self._config.cache.maps_ms

    # ══════════════════════════════════════════════════════════
    #  Catalog
    # ══════════════════════════════════════════════════════════

    async def _fetch_catalog(self, refresh: bool) -> list[MapEntry]:
        ids = await self._fetch_ids(refresh)
        return [self.transform(m) for m in await self._fetch_details(ids, MapResponse)]

    @staticmethod
    def transform(resp: MapResponse) -> MapEntry:
        return MapEntry(
            id=resp.id,
            name=resp.name,
            min_level=resp.min_level,
            max_level=resp.max_level,
            default_floor=resp.default_floor,
            type=resp.type,
            floors=list(resp.floors),
            region_id=resp.region_id,
            region_name=resp.region_name,
            continent_id=resp.continent_id,
            continent_name=resp.continent_name,
            map_rect=resp.map_rect,
            continent_rect=resp.continent_rect,
        )

    async def _list_catalog(self) -> list[MapEntry]:
        return await self._db.list_maps()

    async def _store_catalog(self, items: list[MapEntry]) -> None:
        await self._db.upsert_maps(items)

    async def get_by_id(self, map_id: int) -> MapEntry | None:
        return await self._db.get_map(map_id)

    async def get_by_type(self, map_type: str) -> list[MapEntry]:
        return await self._db.get_maps_by_type(map_type)

    async def get_by_region(self, region_id: int) -> list[MapEntry]:
        return await self._db.get_maps_by_region(region_id)

    async def get_by_continent(self, continent_id: int) -> list[MapEntry]:
        return await self._db.get_maps_by_continent(continent_id)

    # ══════════════════════════════════════════════════════════
    #  Waypoints
    # ══════════════════════════════════════════════════════════

    async def get_waypoints(
        self, continent_id: int = 1, floor_id: int = 1, force_refresh: bool = False
    ) -> list[Waypoint]:
        """All waypoints on a continent floor, cached under waypoints:{continent}:{floor}."""
        cache_key = f"waypoints:{continent_id}:{floor_id}"
        if not force_refresh:
            cached = await self._cache.get(cache_key, list[Waypoint])
            if cached is not None:
                return cached

        path = f"/continents/{continent_id}/floors/{floor_id}"
        payload = await self._api.get(
            path,
            cache=CacheSpec(f"floors:{continent_id}:{floor_id}", self.catalog_ttl_ms, refresh=force_refresh),
            deduplicate=True,
        )
        waypoints = self.extract_waypoints(validate_payload(ContinentFloorResponse, payload, path))
        await self._cache.set(cache_key, waypoints, self.catalog_ttl_ms)
        self._logger.debug("Extracted %d waypoints from %s", len(waypoints), path)
        return waypoints

    @staticmethod
    def extract_waypoints(floor: ContinentFloorResponse) -> list[Waypoint]:
        """Flatten regions → maps → points of interest, keeping type == 'waypoint'."""
        return [
            Waypoint(
                id=poi.id,
                name=poi.name,
                coord=list(poi.coord),
                map_id=map_id,
                map_name=map_data.name,
                floor=poi.floor,
            )
            for region in floor.regions.values()
            for map_id, map_data in region.maps.items()
            for poi in map_data.points_of_interest
            if poi.type == "waypoint"
        ]

    async def search_waypoints(self, query: str, continent_id: int = 1, floor_id: int = 1) -> list[Waypoint]:
        """Case-insensitive match on waypoint or map name; blank query returns everything."""
        waypoints = await self.get_waypoints(continent_id, floor_id)
        needle = query.strip().lower()
        if not needle:
            return waypoints
        return [wp for wp in waypoints if needle in wp.name.lower() or needle in wp.map_name.lower()]

    # ══════════════════════════════════════════════════════════
    #  Map completion (local only)
    # ══════════════════════════════════════════════════════════

    async def get_user_progress(
        self, user_id: str, credential: str, force_refresh: bool = False
    ) -> list[UserMapProgress]:
        return await self._list_progress(user_id)

    async def _list_progress(self, user_id: str) -> list[UserMapProgress]:
        return await self._db.list_user_map_progress(user_id)

    async def set_map_completed(self, user_id: str, map_id: int, completed: bool = True) -> UserMapProgress:
        if await self._db.get_user(user_id) is None:
            raise UnknownUserError(f"No user with id {user_id}")
        row = UserMapProgress(
            id=progress_id(user_id, map_id),
            user_id=user_id,
            map_id=map_id,
            completed=completed,
            last_updated=now_ms(),
        )
        await self._db.upsert_user_map_progress([row])
        return row
