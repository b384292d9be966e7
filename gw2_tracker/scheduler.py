"""Scheduler module — periodic background tasks.

Expired-cache sweep and optional all-user progress sync. Each loop survives
failures of a single run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .cache import CacheLayer
    from .config import TrackerConfig


class Scheduler:
    """Central module for all periodic tasks."""

    def __init__(
        self,
        config: TrackerConfig,
        cache: CacheLayer,
        sync_all: Callable[[], Awaitable[object]],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._cache = cache
        self._sync_all = sync_all
        self._logger = logger or logging.getLogger("gw2_tracker.scheduler")
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start all scheduled tasks."""
        sweep_minutes = self._config.sync.cache_sweep_interval_minutes
        if sweep_minutes > 0:
            self._tasks.append(asyncio.create_task(self._sweep_loop(sweep_minutes * 60)))
            self._logger.info("Cache sweep task started (interval: %d min)", sweep_minutes)

        sync_minutes = self._config.sync.interval_minutes
        if sync_minutes > 0:
            self._tasks.append(asyncio.create_task(self._sync_loop(sync_minutes * 60)))
            self._logger.info("Progress sync task started (interval: %d min)", sync_minutes)

    async def stop(self) -> None:
        """Cancel all tasks."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ══════════════════════════════════════════════════════════
    #  Loops
    # ══════════════════════════════════════════════════════════

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self._cache.sweep_expired()
            except Exception:
                self._logger.exception("Cache sweep failed")

    async def _sync_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self._sync_all()
            except Exception:
                self._logger.exception("Scheduled sync failed")
