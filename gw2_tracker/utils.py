"""Shared utility helpers for gw2-progress-tracker."""

from __future__ import annotations

import time
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def progress_id(user_id: str, entity_id: int) -> str:
    """Composite primary key for per-user progress rows."""
    return f"{user_id}-{entity_id}"


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most *size* items, order preserved."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def mask_key(api_key: str) -> str:
    """Shorten an API key for log output."""
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}…{api_key[-4:]}"
