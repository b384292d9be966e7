"""Application orchestrator — TrackerApp.

Builds every component exactly once and passes each one to the components
that need it: config → DB init → cache sweep → API session → services →
stores. open()/close() own the lifecycle; run() adds the background scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from . import __version__
from .account_service import AccountService
from .achievement_service import AchievementService
from .api_client import Gw2ApiClient
from .cache import CacheLayer
from .catalog_service import SyncReport
from .config import TrackerConfig, load_config
from .database import TrackerDatabase
from .map_service import MapService
from .mastery_service import MasteryService
from .rate_limiter import TokenBucketRateLimiter
from .scheduler import Scheduler
from .stores import CatalogStore, UserStore


class TrackerApp:
    """Top-level application: owns the database, cache, API client and services."""

    def __init__(self, config: TrackerConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("gw2_tracker")

        self.db = TrackerDatabase(config.database.path, self.logger.getChild("db"))
        self.cache = CacheLayer(self.db, self.logger.getChild("cache"))
        self.rate_limiter = TokenBucketRateLimiter(
            config.rate_limit.capacity,
            config.rate_limit.window_ms,
            base_backoff_ms=config.rate_limit.base_backoff_ms,
            max_backoff_ms=config.rate_limit.max_backoff_ms,
        )
        self.api = Gw2ApiClient(config.api, self.cache, self.rate_limiter, self.logger.getChild("api"))

        self.accounts = AccountService(config, self.db, self.api, self.logger.getChild("accounts"))
        self.achievements = AchievementService(config, self.db, self.api, self.logger.getChild("achievements"))
        self.masteries = MasteryService(config, self.db, self.api, self.logger.getChild("masteries"))
        self.maps = MapService(config, self.db, self.api, self.cache, self.logger.getChild("maps"))

        self.user_store = UserStore(self.accounts, self.logger.getChild("users"))
        self.achievement_store = CatalogStore(self.achievements, self.logger.getChild("achievements"))
        self.mastery_store = CatalogStore(self.masteries, self.logger.getChild("masteries"))
        self.map_store = CatalogStore(self.maps, self.logger.getChild("maps"))

        self.scheduler = Scheduler(config, self.cache, self.sync_all, self.logger.getChild("scheduler"))
        self._opened = False
        self._stop_event = asyncio.Event()

    @classmethod
    def from_config_file(cls, config_path: str | Path) -> TrackerApp:
        return cls(load_config(str(config_path)))

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    async def open(self) -> None:
        """Initialize storage, sweep expired cache entries and start the HTTP session."""
        if self._opened:
            return
        self.logger.info("gw2-progress-tracker %s starting (db: %s)", __version__, self.config.database.path)
        await self.db.initialize()
        await self.cache.sweep_expired()
        await self.api.start()
        await self.user_store.load_users()
        self._opened = True

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.api.stop()
        self._opened = False
        self.logger.info("Shut down (api stats: %s)", self.api.stats)

    async def __aenter__(self) -> TrackerApp:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def run(self) -> None:
        """Run the background scheduler until stop() is called."""
        await self.open()
        await self.scheduler.start()
        self.logger.info("Running; %d user(s) tracked", len(self.user_store.users))
        await self._stop_event.wait()

    def stop(self) -> None:
        self._stop_event.set()

    # ══════════════════════════════════════════════════════════
    #  Cross-domain operations
    # ══════════════════════════════════════════════════════════

    async def refresh_catalogs(self, force_refresh: bool = True) -> None:
        """Load all three catalogs; each store records its own failure."""
        await asyncio.gather(
            self.achievement_store.load(force_refresh),
            self.mastery_store.load(force_refresh),
            self.map_store.load(force_refresh),
        )

    async def sync_all(self) -> list[SyncReport]:
        """Sync achievement and mastery progress for every user."""
        reports = [
            await self.achievement_store.sync_all_users(),
            await self.mastery_store.sync_all_users(),
        ]
        await self.user_store.load_users()
        return reports

    async def remove_user(self, user_id: str) -> None:
        await self.user_store.remove_user(user_id)
        for store in (self.achievement_store, self.mastery_store, self.map_store):
            store.forget_user(user_id)
