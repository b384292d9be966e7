"""GW2 API client — async HTTP wrapper with rate limiting, retries, dedup and caching.

Request pipeline for get():
  cache read → in-flight dedup → [rate limiter → HTTP GET]* with backoff → cache write.

Only 429 responses and transport failures (no complete response) are retried.
401/403 and 404 fail immediately. All tests mock the HTTP layer; none call
the real API.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

from .errors import (
    ApiError,
    InvalidCredentialError,
    NetworkFailure,
    NotFoundError,
    RateLimitedError,
    ValidationFailure,
)

if TYPE_CHECKING:
    from .cache import CacheLayer
    from .config import ApiConfig
    from .rate_limiter import TokenBucketRateLimiter


@dataclass(frozen=True)
class CacheSpec:
    """Where and for how long a response is cached.

    ``refresh`` skips the cache read (forced refresh) but still writes through.
    """
    key: str
    ttl_ms: int
    refresh: bool = False


class Gw2ApiClient:
    """Async client for the GW2 v2 API, direct or through the bridging proxy."""

    def __init__(
        self,
        config: ApiConfig,
        cache: CacheLayer,
        rate_limiter: TokenBucketRateLimiter,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._logger = logger
        self._session: aiohttp.ClientSession | None = None
        self._in_flight: dict[str, asyncio.Future] = {}

        # Counters
        self.requests_sent = 0
        self.cache_hits = 0
        self.dedup_hits = 0
        self.retries = 0

    @property
    def proxied(self) -> bool:
        return bool(self._config.proxy_url)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "requests_sent": self.requests_sent,
            "cache_hits": self.cache_hits,
            "dedup_hits": self.dedup_hits,
            "retries": self.retries,
            "in_flight": len(self._in_flight),
        }

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": self._config.user_agent},
            timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def get(
        self,
        path: str,
        *,
        credential: str | None = None,
        params: dict[str, Any] | None = None,
        cache: CacheSpec | None = None,
        deduplicate: bool = False,
        max_retries: int | None = None,
    ) -> Any:
        """GET *path* and return the decoded JSON body."""
        if cache is not None and not cache.refresh:
            cached = await self._cache.get(cache.key)
            if cached is not None:
                self.cache_hits += 1
                return cached

        retries = self._config.max_retries if max_retries is None else max_retries

        if not deduplicate:
            return await self._execute(path, credential, params, cache, retries)

        # Lookup and registration happen with no suspension in between, so a
        # racing caller always sees the first caller's pending task.
        request_key = self.request_key(path, params)
        pending = self._in_flight.get(request_key)
        if pending is not None:
            self.dedup_hits += 1
            self._logger.debug("Joining in-flight request %s", request_key)
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._execute(path, credential, params, cache, retries))
        self._in_flight[request_key] = task
        task.add_done_callback(lambda t: self._release(request_key, t))
        return await asyncio.shield(task)

    @staticmethod
    def request_key(path: str, params: dict[str, Any] | None) -> str:
        """Dedup signature: path plus params normalised by key order."""
        return f"{path}:{json.dumps(params or {}, sort_keys=True, default=str)}"

    def _release(self, request_key: str, task: asyncio.Future) -> None:
        if self._in_flight.get(request_key) is task:
            del self._in_flight[request_key]
        # Mark the outcome as observed even if every caller walked away.
        if not task.cancelled():
            task.exception()

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _execute(
        self,
        path: str,
        credential: str | None,
        params: dict[str, Any] | None,
        cache: CacheSpec | None,
        max_retries: int,
    ) -> Any:
        """One logical call: retry loop around _request, then cache write-through."""
        attempt = 0
        while True:
            try:
                data = await self._request(path, credential, params)
                break
            except (RateLimitedError, NetworkFailure) as e:
                if attempt >= max_retries:
                    self._logger.error("Giving up on %s after %d attempt(s): %s", path, attempt + 1, e)
                    raise
                delay = self._rate_limiter.backoff_delay_ms(attempt)
                self._logger.warning(
                    "%s; retry %d/%d in %dms", e, attempt + 1, max_retries, delay
                )
                self.retries += 1
                await self._rate_limiter.backoff(attempt)
                attempt += 1

        if cache is not None:
            await self._cache.set(cache.key, data, cache.ttl_ms)
        return data

    def _build_request(
        self, path: str, credential: str | None, params: dict[str, Any] | None
    ) -> tuple[str, dict[str, str], dict[str, str]]:
        """Return (url, query, headers) for direct or proxied mode."""
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        headers: dict[str, str] = {}
        if self.proxied:
            query = {"endpoint": path, **query}
            if credential:
                query["apiKey"] = credential
            return self._config.proxy_url, query, headers
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return f"{self._config.base_url}{path}", query, headers

    async def _request(self, path: str, credential: str | None, params: dict[str, Any] | None) -> Any:
        """Single rate-limited HTTP attempt mapped onto the error taxonomy."""
        if not self._session:
            raise RuntimeError("Gw2ApiClient.start() has not been called")

        await self._rate_limiter.acquire()
        url, query, headers = self._build_request(path, credential, params)
        self.requests_sent += 1

        try:
            async with self._session.get(url, params=query, headers=headers) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    if resp.status == 429:
                        raise RateLimitedError(path, body)
                    if resp.status in (401, 403):
                        raise InvalidCredentialError(path, resp.status, body)
                    if resp.status == 404:
                        raise NotFoundError(path, body)
                    raise ApiError(path, resp.status, body)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ValidationFailure(f"Non-JSON response from {path}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkFailure(path, str(e) or type(e).__name__) from e
