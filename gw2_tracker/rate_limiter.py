"""Token-bucket admission control for upstream API calls.

Refill is computed lazily from elapsed monotonic time whenever a token is
requested; there is no background timer. Waiters re-check the bucket after
every sleep, so concurrent waiters can never drive the bucket negative.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

# Refill arithmetic leaves float residue just under a whole token
_TOKEN_EPSILON = 1e-9
# Floor on a single wait so a near-zero deficit cannot busy-spin
_MIN_WAIT_MS = 1.0


class TokenBucketRateLimiter:
    """Token bucket with capacity C refilled at C / window_ms tokens per ms."""

    def __init__(
        self,
        capacity: int = 600,
        window_ms: int = 60_000,
        *,
        base_backoff_ms: int = 1000,
        max_backoff_ms: int = 30_000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1 or window_ms < 1:
            raise ValueError("capacity and window_ms must be positive")
        self._capacity = capacity
        self._window_ms = window_ms
        self._refill_per_ms = capacity / window_ms
        self._base_backoff_ms = base_backoff_ms
        self._max_backoff_ms = max_backoff_ms
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> float:
        """Tokens currently in the bucket (after lazy refill)."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000
        if elapsed_ms > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed_ms * self._refill_per_ms)
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Debit one token if available; never suspends."""
        self._refill()
        if self._tokens >= 1 - _TOKEN_EPSILON:
            self._tokens = max(0.0, self._tokens - 1)
            return True
        return False

    async def acquire(self) -> None:
        """Suspend until a token is available, then debit it."""
        while not self.try_acquire():
            wait_ms = max((1 - self._tokens) / self._refill_per_ms, _MIN_WAIT_MS)
            await self._sleep(wait_ms / 1000)

    def backoff_delay_ms(self, attempt: int) -> int:
        """Exponential delay: min(2^attempt * base, max)."""
        return min((2 ** attempt) * self._base_backoff_ms, self._max_backoff_ms)

    async def backoff(self, attempt: int) -> None:
        """Sleep after a rate-limit rejection or network failure."""
        await self._sleep(self.backoff_delay_ms(attempt) / 1000)
