"""Shared shape for the achievement, mastery and map services.

A catalog is fetched wholesale (id list → chunked detail requests → bulk
upsert) and afterwards served from SQLite until an explicit refresh. Per-user
progress is served from SQLite while its newest row is younger than the
domain's progress TTL, and refetched otherwise.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .api_client import CacheSpec
from .schemas import validate_payload
from .utils import chunked, now_ms

if TYPE_CHECKING:
    from .api_client import Gw2ApiClient
    from .config import TrackerConfig
    from .database import TrackerDatabase
    from .models import User

CatalogT = TypeVar("CatalogT")
ProgressT = TypeVar("ProgressT")


@dataclass
class SyncReport:
    """Outcome of a multi-user sync. Partial success is a normal outcome."""
    domain: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class CatalogService(Generic[CatalogT, ProgressT]):
    """Base class; subclasses supply the endpoint family and transforms."""

    domain: str = ""
    catalog_path: str = ""
    catalog_table: str = ""

    def __init__(
        self,
        config: TrackerConfig,
        database: TrackerDatabase,
        api: Gw2ApiClient,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._db = database
        self._api = api
        self._logger = logger

    # ── Hooks ────────────────────────────────────────────────

    @property
    def catalog_ttl_ms(self) -> int:
        raise NotImplementedError

    @property
    def progress_ttl_ms(self) -> int:
        raise NotImplementedError

    async def _list_catalog(self) -> list[CatalogT]:
        raise NotImplementedError

    async def _fetch_catalog(self, refresh: bool) -> list[CatalogT]:
        """Fetch, validate and transform the full catalog from upstream.

        With *refresh* the cached id list is bypassed.
        """
        raise NotImplementedError

    async def _store_catalog(self, items: list[CatalogT]) -> None:
        raise NotImplementedError

    async def _list_progress(self, user_id: str) -> list[ProgressT]:
        raise NotImplementedError

    async def _fetch_progress(self, user_id: str, credential: str, refresh: bool) -> list[ProgressT]:
        raise NotImplementedError

    async def _store_progress(self, rows: list[ProgressT]) -> None:
        raise NotImplementedError

    # ══════════════════════════════════════════════════════════
    #  Catalog
    # ══════════════════════════════════════════════════════════

    async def get_all(self, force_refresh: bool = False) -> list[CatalogT]:
        """Return the local catalog, fetching it from upstream on first run or when forced."""
        if not force_refresh and await self._db.count_rows(self.catalog_table) > 0:
            return await self._list_catalog()

        self._logger.info("Fetching %s catalog from upstream (forced=%s)", self.domain, force_refresh)
        items = await self._fetch_catalog(force_refresh)
        await self._store_catalog(items)
        self._logger.info("Stored %d %s catalog entries", len(items), self.domain)
        return items

    async def _fetch_ids(self, refresh: bool) -> list[int]:
        payload = await self._api.get(
            self.catalog_path,
            cache=CacheSpec(f"{self.domain}:ids", self.catalog_ttl_ms, refresh=refresh),
            deduplicate=True,
        )
        return validate_payload(list[int], payload, self.catalog_path)

    async def _fetch_details(self, ids: list[int], model: Any) -> list[Any]:
        """Fetch entities in concurrent chunks bounded by the upstream id ceiling.

        Results are flattened in chunk order; an id returned twice is kept once.
        """
        chunk_size = self._config.sync.chunk_size
        chunks = list(chunked(ids, chunk_size))
        self._logger.debug("Fetching %d %s in %d chunk(s)", len(ids), self.domain, len(chunks))

        payloads = await asyncio.gather(*(
            self._api.get(
                self.catalog_path,
                params={"ids": ",".join(str(i) for i in chunk)},
                deduplicate=True,
            )
            for chunk in chunks
        ))

        seen: set[int] = set()
        merged: list[Any] = []
        for payload in payloads:
            for item in validate_payload(list[model], payload, self.catalog_path):
                if item.id not in seen:
                    seen.add(item.id)
                    merged.append(item)
        return merged

    # ══════════════════════════════════════════════════════════
    #  Per-user progress
    # ══════════════════════════════════════════════════════════

    async def get_user_progress(
        self, user_id: str, credential: str, force_refresh: bool = False
    ) -> list[ProgressT]:
        """Return a user's progress rows, refetching when stale or forced."""
        if not force_refresh:
            cached = await self._list_progress(user_id)
            if cached:
                newest = max(row.last_updated for row in cached)
                if now_ms() - newest < self.progress_ttl_ms:
                    return cached

        rows = await self._fetch_progress(user_id, credential, refresh=force_refresh)
        await self._store_progress(rows)
        self._logger.debug("Stored %d %s progress rows for user %s", len(rows), self.domain, user_id)
        return rows

    async def list_progress(self, user_id: str) -> list[ProgressT]:
        """Locally stored progress rows; never touches the network."""
        return await self._list_progress(user_id)

    def _progress_cache(self, user_id: str, refresh: bool) -> CacheSpec:
        return CacheSpec(f"{self.domain}:user:{user_id}", self.progress_ttl_ms, refresh=refresh)

    async def sync_all_users(self) -> SyncReport:
        """Force-refresh every user's progress; one user's failure never affects another."""
        users = await self._db.list_users()
        report = SyncReport(domain=self.domain)
        if not users:
            return report

        outcomes = await asyncio.gather(
            *(self._sync_user(user) for user in users), return_exceptions=True
        )
        for user, outcome in zip(users, outcomes):
            if isinstance(outcome, BaseException):
                self._logger.error(
                    "Failed to sync %s for user %s (%s): %s", self.domain, user.name, user.id, outcome
                )
                report.failed[user.id] = str(outcome)
            else:
                report.succeeded.append(user.id)

        if report.succeeded:
            await self._db.set_last_synced(report.succeeded, now_ms())
        self._logger.info(
            "%s sync finished: %d succeeded, %d failed",
            self.domain, len(report.succeeded), len(report.failed),
        )
        return report

    async def _sync_user(self, user: User) -> list[ProgressT]:
        return await self.get_user_progress(user.id, user.api_key, force_refresh=True)
