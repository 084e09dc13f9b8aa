"""Per-domain token-bucket rate limiting.

State is process-local. Each domain key gets a bucket that refills
continuously at ``rate_per_minute / 60`` tokens per second up to
``max_tokens``. Every request attempt consumes exactly one token; when less
than one token is available the caller is suspended for exactly the time
needed to reach one.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()


@dataclass
class TokenBucket:
    tokens: float
    max_tokens: float
    refill_rate: float  # tokens per second
    last_refill: float

    @classmethod
    def per_minute(cls, rate_per_minute: int, now: float) -> TokenBucket:
        return cls(
            tokens=float(rate_per_minute),
            max_tokens=float(rate_per_minute),
            refill_rate=rate_per_minute / 60,
            last_refill=now,
        )

    @property
    def rate_per_minute(self) -> int:
        return round(self.refill_rate * 60)

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def wait_ms(self) -> int:
        """Milliseconds until one token is available (0 if one already is)."""
        if self.tokens >= 1:
            return 0
        return math.ceil((1 - self.tokens) / self.refill_rate * 1000)


class RateLimiter:
    """Table of token buckets keyed by domain."""

    def __init__(
        self,
        default_rate_per_minute: int = 30,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._default_rate = default_rate_per_minute
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._ceilings: dict[str, int] = {}

    def bucket(self, domain: str, rate_per_minute: int | None = None) -> TokenBucket:
        """Return the bucket for ``domain``, creating it on first use."""
        existing = self._buckets.get(domain)
        if existing is not None:
            return existing
        bucket = TokenBucket.per_minute(
            self._clamp(domain, rate_per_minute or self._default_rate), self._clock()
        )
        self._buckets[domain] = bucket
        return bucket

    def _clamp(self, domain: str, rate_per_minute: int) -> int:
        ceiling = self._ceilings.get(domain)
        if ceiling is not None:
            rate_per_minute = min(rate_per_minute, ceiling)
        return max(1, rate_per_minute)

    def set_rate(self, domain: str, rate_per_minute: int) -> None:
        """Set the domain's rate, never above a ceiling recorded by ``apply_ceiling``."""
        rate_per_minute = self._clamp(domain, rate_per_minute)
        existing = self._buckets.get(domain)
        if existing is None:
            self._buckets[domain] = TokenBucket.per_minute(rate_per_minute, self._clock())
        else:
            existing.max_tokens = float(rate_per_minute)
            existing.refill_rate = rate_per_minute / 60
            existing.tokens = min(existing.tokens, existing.max_tokens)
        log.debug("rate_limit_set", domain=domain, rate_per_minute=rate_per_minute)

    def apply_ceiling(self, domain: str, rate_per_minute: int) -> None:
        """Cap the domain's rate at ``rate_per_minute`` for this and later ``set_rate`` calls."""
        ceiling = max(1, rate_per_minute)
        self._ceilings[domain] = ceiling
        current = self.bucket(domain, ceiling)
        if current.rate_per_minute > ceiling:
            self.set_rate(domain, ceiling)

    async def acquire(self, domain: str) -> int:
        """Consume one token for ``domain``, waiting if necessary.

        Returns the number of milliseconds spent waiting.
        """
        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            bucket = self.bucket(domain)
            bucket.refill(self._clock())
            waited = bucket.wait_ms()
            if waited:
                log.debug("rate_limit_wait", domain=domain, wait_ms=waited)
                await self._sleep(waited / 1000)
                bucket.tokens = 1.0
                bucket.last_refill = self._clock()
            bucket.tokens -= 1
            return waited

    def clear(self) -> None:
        self._buckets.clear()
        self._locks.clear()
        self._ceilings.clear()
