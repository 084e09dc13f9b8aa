"""Unit tests for sourcereg.ratelimit."""

from __future__ import annotations

from sourcereg.ratelimit import RateLimiter, TokenBucket


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# TokenBucket
# ---------------------------------------------------------------------------


class TestTokenBucket:
    def test_starts_full(self) -> None:
        bucket = TokenBucket.per_minute(30, now=0.0)
        assert bucket.tokens == 30
        assert bucket.max_tokens == 30
        assert bucket.refill_rate == 0.5

    def test_refill_is_capped(self) -> None:
        bucket = TokenBucket.per_minute(60, now=0.0)
        bucket.tokens = 0
        bucket.refill(now=10.0)
        assert bucket.tokens == 10
        bucket.refill(now=1000.0)
        assert bucket.tokens == 60

    def test_wait_ms_rounds_up(self) -> None:
        bucket = TokenBucket.per_minute(30, now=0.0)
        bucket.tokens = 0
        # 0.5 tokens/s: one token takes 2 s
        assert bucket.wait_ms() == 2000
        bucket.tokens = 0.9999
        assert bucket.wait_ms() == 1

    def test_no_wait_when_token_available(self) -> None:
        bucket = TokenBucket.per_minute(30, now=0.0)
        bucket.tokens = 1
        assert bucket.wait_ms() == 0


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------


class TestRateLimiter:
    async def test_burst_then_wait(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(30, clock=clock, sleep=clock.sleep)
        limiter.bucket("example.org").tokens = 1.0

        assert await limiter.acquire("example.org") == 0
        # Bucket empty; 30/min refills one token every 2 s
        assert await limiter.acquire("example.org") == 2000
        assert clock.sleeps == [2.0]
        assert limiter.bucket("example.org").tokens == 0

    async def test_domains_are_independent(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock, sleep=clock.sleep)
        await limiter.acquire("a.example.org")
        assert await limiter.acquire("b.example.org") == 0
        assert clock.sleeps == []

    async def test_set_rate_clamps_tokens(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(60, clock=clock, sleep=clock.sleep)
        limiter.bucket("example.org")
        limiter.set_rate("example.org", 6)
        bucket = limiter.bucket("example.org")
        assert bucket.max_tokens == 6
        assert bucket.tokens == 6
        assert bucket.rate_per_minute == 6

    def test_set_rate_minimum_one(self) -> None:
        limiter = RateLimiter()
        limiter.set_rate("example.org", 0)
        assert limiter.bucket("example.org").rate_per_minute == 1

    def test_apply_ceiling_only_lowers(self) -> None:
        limiter = RateLimiter(30)
        limiter.bucket("example.org")
        limiter.apply_ceiling("example.org", 60)
        assert limiter.bucket("example.org").rate_per_minute == 30
        limiter.apply_ceiling("example.org", 6)
        assert limiter.bucket("example.org").rate_per_minute == 6

    def test_ceiling_survives_later_set_rate(self) -> None:
        limiter = RateLimiter(30)
        limiter.apply_ceiling("example.org", 6)
        limiter.set_rate("example.org", 30)
        assert limiter.bucket("example.org").rate_per_minute == 6
        limiter.set_rate("example.org", 3)
        assert limiter.bucket("example.org").rate_per_minute == 3

    def test_ceiling_applies_to_new_bucket(self) -> None:
        limiter = RateLimiter(30)
        limiter.apply_ceiling("example.org", 6)
        limiter.clear()
        limiter.apply_ceiling("other.org", 10)
        assert limiter.bucket("other.org").rate_per_minute == 10
        assert limiter.bucket("example.org").rate_per_minute == 30

    def test_clear_resets_buckets(self) -> None:
        limiter = RateLimiter(30)
        limiter.set_rate("example.org", 5)
        limiter.clear()
        assert limiter.bucket("example.org").rate_per_minute == 30
