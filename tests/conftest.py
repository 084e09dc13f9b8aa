"""Shared test fixtures for the sourcereg test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiosqlite
import pytest

from sourcereg.config import Settings
from sourcereg.errors import ErrorCode
from sourcereg.models.fetch import FetchResult, RobotsResult
from sourcereg.models.registry import (
    AssetCandidate,
    LicenseInfo,
    NodeType,
    RobotsStatus,
    SeedConfig,
    SelectorHints,
    SourceType,
    TocNode,
    ValidationResult,
)
from sourcereg.registry import RegistryService
from sourcereg.store import SqliteRegistryStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class FakeFetcher:
    """In-memory FetcherProtocol: serves canned bodies keyed by URL."""

    pages: dict[str, str] = field(default_factory=dict)
    robots: dict[str, RobotsResult] = field(default_factory=dict)
    fetched: list[str] = field(default_factory=list)
    rate_limits: dict[str, int] = field(default_factory=dict)

    async def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay_ms: int | None = None,
        domain_key: str | None = None,
    ) -> FetchResult:
        self.fetched.append(url)
        body = self.pages.get(url)
        if body is None:
            return FetchResult(
                ok=False,
                status=404,
                url=url,
                final_url=url,
                error="HTTP 404",
                error_code=ErrorCode.FETCH_FAILED,
            )
        return FetchResult(ok=True, status=200, url=url, final_url=url, body=body)

    async def check_robots(self, url: str) -> RobotsResult:
        for prefix, result in self.robots.items():
            if url.startswith(prefix):
                return result
        return RobotsResult(allowed=True)

    def set_rate_limit(self, domain: str, per_minute: int) -> None:
        self.rate_limits[domain] = per_minute

    def clear_caches(self) -> None:
        self.robots.clear()


@dataclass
class FakeAdapter:
    """SourceAdapter returning fixed candidates and TOCs keyed by slug.

    A slug listed in ``failing`` makes ``map_toc`` raise.
    """

    candidates: list[AssetCandidate] = field(default_factory=list)
    tocs: dict[str, list[TocNode]] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    robots_status: RobotsStatus = RobotsStatus.ALLOWED
    source_type: SourceType = SourceType.CUSTOM
    stated_license: LicenseInfo = field(
        default_factory=lambda: LicenseInfo(name="CC BY 4.0", confidence=0.95)
    )
    discover_calls: int = 0

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        self.discover_calls += 1
        return list(self.candidates)

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        return ValidationResult(
            license_name="CC BY 4.0",
            license_confidence=0.95,
            robots_status=self.robots_status,
        )

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        if candidate.slug in self.failing:
            raise RuntimeError("page layout not recognised")
        return list(self.tocs.get(candidate.slug, []))

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(content="main", title="h1")


def make_toc(prefix: str = "ch", chapters: int = 1, sections: int = 2) -> list[TocNode]:
    """Flat pre-order TOC: each chapter followed by its sections."""
    nodes: list[TocNode] = []
    for c in range(1, chapters + 1):
        nodes.append(
            TocNode(
                slug=f"{prefix}-{c}",
                title=f"Chapter {c}",
                url=f"https://books.example.org/{prefix}/{c}",
                node_type=NodeType.CHAPTER,
                depth=0,
            )
        )
        for s in range(1, sections + 1):
            nodes.append(
                TocNode(
                    slug=f"{prefix}-{c}-{s}",
                    title=f"{c}.{s} Section {s}",
                    url=f"https://books.example.org/{prefix}/{c}-{s}",
                    node_type=NodeType.SECTION,
                    depth=1,
                )
            )
    return nodes


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
async def store() -> AsyncGenerator[SqliteRegistryStore, None]:
    """In-memory registry store with the schema created."""
    async with aiosqlite.connect(":memory:") as db:
        registry_store = SqliteRegistryStore(db)
        await registry_store.init_db()
        yield registry_store


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def sample_seed() -> SeedConfig:
    return SeedConfig(
        name="Example Books",
        type=SourceType.CUSTOM,
        base_url="https://books.example.org",
        seed_url="https://books.example.org/catalog",
        description="Openly licensed example books",
        rate_limit_per_minute=12,
    )


@pytest.fixture()
def sample_candidates() -> list[AssetCandidate]:
    return [
        AssetCandidate(
            slug="algebra",
            title="College Algebra",
            url="https://books.example.org/algebra",
            metadata={"subjects": ["Math"]},
        ),
        AssetCandidate(
            slug="biology",
            title="Biology 2e",
            url="https://books.example.org/biology",
            metadata={"subjects": ["Science"]},
        ),
    ]


@pytest.fixture()
def registry(store: SqliteRegistryStore, fake_fetcher: FakeFetcher) -> RegistryService:
    """Registry service over the in-memory store with an empty adapter table."""
    return RegistryService(
        store, fake_fetcher, {}, Settings(), allowlist=("example.org",)
    )
