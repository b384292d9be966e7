"""TTL cache policy over the database's generic ``cache`` table.

Values cross a JSON serialization boundary: they are encoded with pydantic on
write and, when the caller passes a type, decoded back into that type on read.
The cache is best-effort: storage errors are logged and reported as a miss
(reads) or ignored (writes and deletes).
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .errors import StorageFailure
from .utils import now_ms

if TYPE_CHECKING:
    from .database import TrackerDatabase

T = TypeVar("T")

STALE_FRACTION = 0.1

_ANY = TypeAdapter(Any)


class CacheLayer:
    """get/set/delete/clear/sweep plus age and staleness queries, all TTL-based."""

    def __init__(
        self,
        database: TrackerDatabase,
        logger: logging.Logger,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = database
        self._logger = logger
        self._clock = clock

    async def _entry(self, key: str) -> dict | None:
        try:
            return await self._db.get_cache_entry(key)
        except StorageFailure as e:
            self._logger.error("Cache read failed for '%s': %s", key, e)
            return None

    async def get(self, key: str, type_: Any = None) -> Any | None:
        """Return the cached value, or None if absent or expired.

        Expired entries are deleted on the way out.
        """
        entry = await self._entry(key)
        if entry is None:
            return None

        if entry["expires_at"] <= self._clock():
            await self.delete(key)
            return None

        try:
            value = json.loads(entry["data"])
            if type_ is not None:
                value = TypeAdapter(type_).validate_python(value)
        except (ValueError, ValidationError) as e:
            self._logger.warning("Discarding undecodable cache entry '%s': %s", key, e)
            await self.delete(key)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_ms: int) -> None:
        timestamp = self._clock()
        try:
            data = _ANY.dump_json(value).decode("utf-8")
        except PydanticSerializationError as e:
            self._logger.error("Cache value for '%s' is not serializable: %s", key, e)
            return
        try:
            await self._db.put_cache_entry(key, data, timestamp, timestamp + ttl_ms)
        except StorageFailure as e:
            self._logger.error("Cache write failed for '%s': %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._db.delete_cache_entry(key)
        except StorageFailure as e:
            self._logger.error("Cache delete failed for '%s': %s", key, e)

    async def clear(self, prefix: str | None = None) -> int:
        """Delete all entries, or only those whose key starts with *prefix*."""
        try:
            removed = await self._db.delete_cache_prefix(prefix)
        except StorageFailure as e:
            self._logger.error("Cache clear failed (prefix=%r): %s", prefix, e)
            return 0
        self._logger.debug("Cleared %d cache entries (prefix=%r)", removed, prefix)
        return removed

    async def sweep_expired(self) -> int:
        """Eagerly purge every expired entry. Hygiene only; get() never serves them."""
        try:
            removed = await self._db.delete_expired_cache(self._clock())
        except StorageFailure as e:
            self._logger.error("Cache sweep failed: %s", e)
            return 0
        if removed:
            self._logger.info("Swept %d expired cache entries", removed)
        return removed

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def age_ms(self, key: str) -> int | None:
        """Milliseconds since the entry was written, or None if absent or expired."""
        entry = await self._entry(key)
        if entry is None:
            return None
        if entry["expires_at"] <= self._clock():
            await self.delete(key)
            return None
        return self._clock() - entry["timestamp"]

    async def is_stale(self, key: str) -> bool:
        """True when less than 10% of the original TTL remains, or the key is absent."""
        entry = await self._entry(key)
        if entry is None:
            return True
        ttl = entry["expires_at"] - entry["timestamp"]
        remaining = entry["expires_at"] - self._clock()
        return remaining < ttl * STALE_FRACTION
