"""In-memory TTL cache used for robots.txt results and catalog listings.

Entries are stored as ``key -> (value, expires_at)`` where ``expires_at`` is
measured on an injectable monotonic clock. Expired entries are treated as
misses on read and dropped lazily; ``purge_expired`` evicts them eagerly.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

V = TypeVar("V")


class TtlCache(Generic[V]):
    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        lifetime = self._ttl if ttl is None else ttl
        self._entries[key] = (value, self._clock() + lifetime)

    async def get_or_refresh(
        self,
        key: str,
        loader: Callable[[], Awaitable[V]],
        ttl: float | None = None,
    ) -> V:
        """Return the cached value, or await ``loader`` and cache its result.

        Loader exceptions propagate and leave the cache untouched.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)
