"""Integration tests for topic discovery over the registry.

Catalog and documentation discovery run against the real RegistryService
and in-memory store; adapters and the fetcher are scripted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import pytest

from sourcereg.config import DiscoverySettings
from sourcereg.discovery import TopicDiscovery
from sourcereg.discovery.catalog import CatalogDiscovery
from sourcereg.discovery.docs import WEB_SEARCH_SUFFIX, DocsDiscovery
from sourcereg.discovery.scoring import TEXTBOOK_WEIGHTS
from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.discovery import DocSource
from sourcereg.models.registry import AssetCandidate, SeedConfig, SourceType
from tests.conftest import FakeAdapter, make_toc

if TYPE_CHECKING:
    from sourcereg.registry import RegistryService
    from tests.conftest import FakeFetcher

RUST = DocSource(
    name="Rust Book",
    slug="rust-book",
    base_url="https://doc.rust-lang.org",
    doc_url="https://doc.rust-lang.org/book/",
    keywords=["rust", "systems"],
    license="MIT/Apache 2.0",
)

GUIDE = DocSource(
    name="Example Guide",
    slug="example-guide",
    base_url="https://docs.example.org",
    doc_url="https://docs.example.org/guide/",
    keywords=["widgets"],
)


class FailingCatalogAdapter(FakeAdapter):
    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        raise SourceRegError(code=ErrorCode.DISCOVERY_FAILED, message="catalog offline")


@pytest.fixture()
def book_adapter(sample_candidates: list[AssetCandidate]) -> FakeAdapter:
    return FakeAdapter(
        candidates=list(sample_candidates),
        tocs={"algebra": make_toc("alg", chapters=1, sections=2)},
    )


@pytest.fixture()
def catalog(
    registry: RegistryService, book_adapter: FakeAdapter, sample_seed: SeedConfig
) -> CatalogDiscovery:
    return CatalogDiscovery(registry, book_adapter, sample_seed, TEXTBOOK_WEIGHTS)


def _search_url(query: str) -> str:
    params = urlencode({"q": f"{query} {WEB_SEARCH_SUFFIX}"})
    return f"{DiscoverySettings().web_search_url}?{params}"


# ---------------------------------------------------------------------------
# Catalog discovery
# ---------------------------------------------------------------------------


class TestCatalogDiscovery:
    async def test_discovers_and_activates(
        self, catalog: CatalogDiscovery, book_adapter: FakeAdapter
    ) -> None:
        found = await catalog.discover_content_for_topic("algebra")

        assert found is not None
        assert found.provider == "Example Books"
        assert found.score == 10
        assert found.asset.slug == "algebra"
        assert found.asset.active is True
        assert found.asset.license_name == "CC BY 4.0"
        assert [s.title for s in found.toc] == ["Chapter 1", "1.1 Section 1", "1.2 Section 2"]
        assert [s.depth for s in found.toc] == [0, 1, 1]

        # Second lookup uses the cached catalog and the stored TOC
        book_adapter.tocs.clear()
        again = await catalog.discover_content_for_topic("algebra")
        assert again is not None
        assert len(again.toc) == 3
        assert book_adapter.discover_calls == 1

    async def test_force_refresh(
        self, catalog: CatalogDiscovery, book_adapter: FakeAdapter
    ) -> None:
        await catalog.get_catalog()
        await catalog.get_catalog(force_refresh=True)
        assert book_adapter.discover_calls == 2

    async def test_no_match(self, catalog: CatalogDiscovery) -> None:
        assert await catalog.find_best("astrophysics") is None
        assert await catalog.discover_content_for_topic("astrophysics") is None

    async def test_match_without_toc(self, catalog: CatalogDiscovery) -> None:
        assert await catalog.discover_content_for_topic("biology") is None

    async def test_summaries_from_store(self, catalog: CatalogDiscovery) -> None:
        found = await catalog.discover_content_for_topic("algebra")
        assert found is not None
        summaries = await catalog.get_toc_summaries(found.asset.id)
        assert [s.order for s in summaries] == [0, 1, 2]


# ---------------------------------------------------------------------------
# Documentation discovery
# ---------------------------------------------------------------------------


def _docs(
    registry: RegistryService, fetcher: FakeFetcher, adapter: FakeAdapter
) -> DocsDiscovery:
    return DocsDiscovery(
        registry, {SourceType.GENERIC_HTML: adapter}, fetcher, sources=(RUST, GUIDE)
    )


class TestDocsDiscovery:
    async def test_curated_doc_with_adapter_toc(
        self, registry: RegistryService, fake_fetcher: FakeFetcher
    ) -> None:
        adapter = FakeAdapter(tocs={"rust-book": make_toc("rust", chapters=2, sections=1)})
        found = await _docs(registry, fake_fetcher, adapter).discover_docs_for_topic("rust")

        assert found is not None
        assert found.provider == "Rust Book"
        assert found.from_web_search is False
        assert found.asset.active is True
        assert found.asset.license_name == "MIT/Apache 2.0"
        assert len(found.toc) == 4
        assert fake_fetcher.rate_limits == {"doc.rust-lang.org": 10}
        [source] = await registry.get_sources()
        assert source.name == "Rust Book (doc.rust-lang.org)"
        assert source.license_name == "MIT/Apache 2.0"

    async def test_basic_structure_fallback(
        self, registry: RegistryService, fake_fetcher: FakeFetcher
    ) -> None:
        fake_fetcher.pages[GUIDE.doc_url] = """
            <main>
              <a href="install.html">Installing widgets</a>
              <a href="usage.html">Using widgets</a>
              <a href="https://elsewhere.com/">Elsewhere</a>
            </main>
        """
        found = await _docs(registry, fake_fetcher, FakeAdapter()).discover_docs_for_topic(
            "widgets"
        )

        assert found is not None
        assert [s.title for s in found.toc] == ["Installing widgets", "Using widgets"]
        nodes = await registry.get_toc_nodes(found.asset.id)
        assert nodes[0].url == "https://docs.example.org/guide/install.html"

    async def test_web_search_fallback(
        self, registry: RegistryService, fake_fetcher: FakeFetcher
    ) -> None:
        fake_fetcher.pages[_search_url("haskell")] = """
            <div class="result">
              <a class="result__a" href="https://news.example.com/haskell">Haskell news</a>
            </div>
            <div class="result">
              <a class="result__a" href="https://learn.haskell.example/tour">A Tour of Haskell</a>
              <a class="result__snippet">Learn Haskell step by step.</a>
            </div>
        """
        found = await _docs(registry, fake_fetcher, FakeAdapter()).discover_docs_for_topic(
            "haskell"
        )

        assert found is not None
        assert found.from_web_search is True
        assert found.provider == "A Tour of Haskell"
        assert found.asset.slug == "a-tour-of-haskell"
        assert found.toc == []
        assert found.metadata["url"] == "https://learn.haskell.example/tour"

    async def test_nothing_found(
        self, registry: RegistryService, fake_fetcher: FakeFetcher
    ) -> None:
        docs = _docs(registry, fake_fetcher, FakeAdapter())
        assert await docs.discover_docs_for_topic("haskell") is None


# ---------------------------------------------------------------------------
# Provider fall-through
# ---------------------------------------------------------------------------


class TestTopicDiscovery:
    async def test_falls_through_to_docs(
        self,
        registry: RegistryService,
        fake_fetcher: FakeFetcher,
        catalog: CatalogDiscovery,
        sample_seed: SeedConfig,
    ) -> None:
        courses_seed = sample_seed.model_copy(update={"name": "Example Courses"})
        courses = CatalogDiscovery(
            registry, FailingCatalogAdapter(), courses_seed, TEXTBOOK_WEIGHTS
        )
        docs_adapter = FakeAdapter(tocs={"rust-book": make_toc("rust")})
        discovery = TopicDiscovery(catalog, courses, _docs(registry, fake_fetcher, docs_adapter))

        found = await discovery.discover("rust")

        assert found is not None
        assert found.provider == "Rust Book"

    async def test_first_provider_wins(
        self,
        registry: RegistryService,
        fake_fetcher: FakeFetcher,
        catalog: CatalogDiscovery,
        sample_seed: SeedConfig,
    ) -> None:
        courses_seed = sample_seed.model_copy(update={"name": "Example Courses"})
        courses = CatalogDiscovery(
            registry, FailingCatalogAdapter(), courses_seed, TEXTBOOK_WEIGHTS
        )
        discovery = TopicDiscovery(catalog, courses, _docs(registry, fake_fetcher, FakeAdapter()))

        found = await discovery.discover("algebra")

        assert found is not None
        assert found.provider == "Example Books"
