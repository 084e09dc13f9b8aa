from __future__ import annotations

from pydantic import BaseModel

from sourcereg.errors import ErrorCode


class FetchResult(BaseModel):
    """Outcome of a polite fetch. Failures are values, never exceptions."""

    ok: bool
    status: int  # 0 when no HTTP response was received
    url: str
    final_url: str
    redirected: bool = False
    body: str | None = None  # Only set when ok
    error: str | None = None
    error_code: ErrorCode | None = None


class RobotsResult(BaseModel):
    """Parsed robots.txt policy for this bot on one domain."""

    allowed: bool = True
    crawl_delay: float | None = None
    sitemaps: list[str] = []
    disallow: list[str] = []
    allow: list[str] = []
    error: str | None = None  # Set when the check failed open
