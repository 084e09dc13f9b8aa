"""Polite HTTP fetcher.

All network I/O goes through a single Fetcher instance created at the
composition root. The Fetcher receives an httpx.AsyncClient via constructor
injection; the lifespan owns the client lifecycle.

Every fetch:
  1. checks robots.txt for the target domain (cached for an hour)
  2. waits for a token from the domain's rate-limit bucket
  3. issues the request with a per-attempt timeout
  4. retries network and timeout failures with exponential backoff

Failures are returned as ``FetchResult(ok=False, ...)`` and never raised.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
import structlog

from sourcereg.config import FetcherSettings
from sourcereg.errors import ErrorCode
from sourcereg.models.fetch import FetchResult, RobotsResult
from sourcereg.ratelimit import RateLimiter
from sourcereg.robots import crawl_delay_to_rate, parse_robots_txt
from sourcereg.ttl_cache import TtlCache

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()

ROBOTS_BLOCKED_MESSAGE = "Blocked by robots.txt"


def build_http_client(settings: FetcherSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    settings = settings or FetcherSettings()
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        },
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


def domain_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


class Fetcher:
    """HTTP fetcher with robots.txt compliance, rate limiting and retries."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: FetcherSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settings = settings or FetcherSettings()
        self._sleep = sleep
        self.rate_limiter = RateLimiter(
            self._settings.default_rate_per_minute, clock=clock, sleep=sleep
        )
        self._robots_cache: TtlCache[RobotsResult] = TtlCache(
            self._settings.robots_cache_ttl_seconds, clock=clock
        )

    @property
    def user_agent(self) -> str:
        return self._settings.user_agent

    # ------------------------------------------------------------------
    # robots.txt
    # ------------------------------------------------------------------

    async def check_robots(self, url: str) -> RobotsResult:
        """Return the robots.txt policy for the domain of ``url``.

        Fails open: when robots.txt cannot be read the result is
        ``allowed=True`` with ``error`` set, and the failure is logged.
        Only successful reads and 404s are cached.
        """
        parsed = urlparse(url)
        domain = (parsed.hostname or "").lower()
        if not domain:
            return RobotsResult(allowed=True, error=f"Cannot parse host from {url!r}")

        cached = self._robots_cache.get(domain)
        if cached is not None:
            return cached

        robots_url = f"{parsed.scheme or 'https'}://{parsed.netloc}/robots.txt"
        try:
            async with asyncio.timeout(self._settings.robots_timeout_seconds):
                response = await self._client.get(robots_url)
        except (httpx.HTTPError, TimeoutError) as exc:
            log.error("robots_check_error", domain=domain, url=robots_url, exc_info=True)
            return RobotsResult(allowed=True, error=str(exc) or type(exc).__name__)

        if response.status_code == 404:
            result = RobotsResult(allowed=True)
            self._robots_cache.set(domain, result)
            return result

        if not response.is_success:
            log.warning(
                "robots_fetch_failed",
                domain=domain,
                url=robots_url,
                status_code=response.status_code,
                risk="proceeding without robots policy",
            )
            return RobotsResult(allowed=True, error=f"HTTP {response.status_code}")

        result = parse_robots_txt(response.text, self._settings.user_agent)
        if result.crawl_delay:
            self.rate_limiter.apply_ceiling(domain, crawl_delay_to_rate(result.crawl_delay))
        self._robots_cache.set(domain, result)
        log.debug(
            "robots_parsed",
            domain=domain,
            allowed=result.allowed,
            crawl_delay=result.crawl_delay,
        )
        return result

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay_ms: int | None = None,
        domain_key: str | None = None,
    ) -> FetchResult:
        """Fetch ``url`` politely.

        A non-2xx response is returned immediately as a failed result. Only
        network errors and timeouts are retried, waiting
        ``retry_delay_ms * 2**attempt`` between attempts.
        """
        timeout = self._settings.timeout_seconds if timeout is None else timeout
        attempts = max(1, self._settings.retries if retries is None else retries)
        retry_delay_ms = self._settings.retry_delay_ms if retry_delay_ms is None else retry_delay_ms

        robots = await self.check_robots(url)
        if not robots.allowed:
            log.warning("fetch_blocked_by_robots", url=url)
            return FetchResult(
                ok=False,
                status=403,
                url=url,
                final_url=url,
                error=ROBOTS_BLOCKED_MESSAGE,
                error_code=ErrorCode.ROBOTS_DISALLOWED,
            )

        domain = domain_key or domain_of(url)
        last_error = "Unknown error"

        for attempt in range(attempts):
            await self.rate_limiter.acquire(domain)
            started = time.monotonic()
            try:
                async with asyncio.timeout(timeout):
                    response = await self._client.get(url)
            except TimeoutError:
                last_error = f"Timed out after {timeout}s"
            except httpx.HTTPError as exc:
                last_error = str(exc) or type(exc).__name__
            else:
                duration_ms = round((time.monotonic() - started) * 1000)
                final_url = str(response.url)
                redirected = bool(response.history)
                if response.is_success:
                    log.info(
                        "fetch_complete",
                        url=url,
                        status_code=response.status_code,
                        duration_ms=duration_ms,
                        attempt=attempt + 1,
                    )
                    return FetchResult(
                        ok=True,
                        status=response.status_code,
                        url=url,
                        final_url=final_url,
                        redirected=redirected,
                        body=response.text,
                    )
                log.warning(
                    "fetch_http_error",
                    url=url,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )
                return FetchResult(
                    ok=False,
                    status=response.status_code,
                    url=url,
                    final_url=final_url,
                    redirected=redirected,
                    error=f"HTTP {response.status_code}",
                    error_code=ErrorCode.FETCH_FAILED,
                )

            log.warning("fetch_attempt_failed", url=url, attempt=attempt + 1, error=last_error)
            if attempt < attempts - 1:
                await self._sleep(retry_delay_ms * 2**attempt / 1000)

        log.error("fetch_failed", url=url, attempts=attempts, error=last_error)
        return FetchResult(
            ok=False,
            status=0,
            url=url,
            final_url=url,
            error=last_error,
            error_code=ErrorCode.FETCH_FAILED,
        )

    # ------------------------------------------------------------------
    # Politeness controls
    # ------------------------------------------------------------------

    def set_rate_limit(self, domain: str, per_minute: int) -> None:
        self.rate_limiter.set_rate(domain.lower(), per_minute)

    def clear_caches(self) -> None:
        """Reset the robots cache and every domain's rate-limit bucket."""
        self._robots_cache.clear()
        self.rate_limiter.clear()
