"""Heuristic adapter for arbitrary HTML sites.

Every selector is configurable through ``GenericHtmlConfig``; the defaults
cover the common shapes of documentation and course sites.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel

from sourcereg.adapters.common import resolve_url, slugify, validate_candidate
from sourcereg.models.registry import (
    AssetCandidate,
    LicenseInfo,
    NodeType,
    SelectorHints,
    SourceType,
    TocNode,
    ValidationResult,
)
from sourcereg.parser import (
    child_list,
    element_text,
    extract_headings,
    list_items,
    page_title,
    parse_html,
    select_first,
)
from sourcereg.seeds import is_domain_allowed
from sourcereg.toc import flatten_toc, node_type_for_depth

if TYPE_CHECKING:
    from collections.abc import Iterator

    from bs4 import BeautifulSoup, Tag

    from sourcereg.protocols import FetcherProtocol

log = structlog.get_logger()

NAV_LINK_SELECTORS: tuple[str, ...] = ("nav a", ".navigation a", ".sidebar a", "aside a")


class GenericHtmlConfig(BaseModel):
    toc_selector: str = "nav, .toc, #toc, .table-of-contents, aside"
    toc_link_selector: str = "a"
    content_selector: str = "main, article, .content, #content, .main-content"
    title_selector: str = 'h1, .title, [role="heading"]'
    asset_link_selector: str = "a[href]"
    max_depth: int = 5
    exclude_patterns: list[str] = ["#", "javascript:", "mailto:", "tel:"]
    allowed_domains: list[str] = []


class GenericHtmlAdapter:
    source_type = SourceType.GENERIC_HTML
    stated_license = LicenseInfo()

    def __init__(self, fetcher: FetcherProtocol, config: GenericHtmlConfig | None = None) -> None:
        self._fetcher = fetcher
        self.config = config or GenericHtmlConfig()

    def _resolve_config(self, overrides: dict[str, Any] | None) -> GenericHtmlConfig:
        if not overrides:
            return self.config
        known = {k: v for k, v in overrides.items() if k in GenericHtmlConfig.model_fields}
        return self.config.model_copy(update=known)

    def _is_excluded(self, href: str, config: GenericHtmlConfig) -> bool:
        return any(href.startswith(pattern) for pattern in config.exclude_patterns)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        """Treat each same-domain link on the seed page as an asset.

        Falls back to the seed page itself when no link qualifies.
        """
        settings = self._resolve_config(config)
        seed_host = (urlparse(seed_url).hostname or "").lower()
        allowlist = tuple(settings.allowed_domains)
        if allowlist and not is_domain_allowed(seed_host, allowlist):
            log.warning("generic_seed_not_allowed", url=seed_url)
            return []

        result = await self._fetcher.fetch(seed_url)
        if not result.ok or result.body is None:
            log.warning("generic_seed_fetch_failed", url=seed_url, error=result.error)
            return []

        soup = parse_html(result.body)
        candidates: list[AssetCandidate] = []
        seen_urls: set[str] = set()
        seen_slugs: set[str] = set()
        for link in soup.select(settings.asset_link_selector):
            href = str(link.get("href") or "").strip()
            if not href or self._is_excluded(href, settings):
                continue
            url = resolve_url(href, seed_url).split("#", 1)[0]
            host = (urlparse(url).hostname or "").lower()
            same_domain = host == seed_host
            if not same_domain and not (allowlist and is_domain_allowed(host, allowlist)):
                continue
            if url in seen_urls or url.rstrip("/") == seed_url.rstrip("/"):
                continue
            seen_urls.add(url)

            title = element_text(link) or str(link.get("title") or "") or urlparse(url).path
            slug = slugify(title)
            if len(title) < 2 or not slug or slug in seen_slugs:
                continue
            seen_slugs.add(slug)
            candidates.append(AssetCandidate(slug=slug, title=title, url=url))

        if not candidates:
            title = element_text(select_first(soup, settings.title_selector)) or page_title(soup)
            candidates.append(
                AssetCandidate(
                    slug=slugify(title) or slugify(seed_host) or "page",
                    title=title or seed_host,
                    url=seed_url,
                )
            )
        log.info("generic_discovered", url=seed_url, assets=len(candidates))
        return candidates

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        return await validate_candidate(self._fetcher, candidate)

    # ------------------------------------------------------------------
    # TOC mapping
    # ------------------------------------------------------------------

    async def map_toc(
        self,
        candidate: AssetCandidate,
        base_url: str,
        config: dict[str, Any] | None = None,
    ) -> list[TocNode]:
        """Try a TOC container, then content headings, then navigation links."""
        settings = self._resolve_config(config)
        result = await self._fetcher.fetch(candidate.url)
        if not result.ok or result.body is None:
            log.warning("generic_toc_fetch_failed", url=candidate.url, error=result.error)
            return []

        soup = parse_html(result.body)
        page_url = result.final_url or candidate.url
        for strategy in (self._from_container, self._from_headings, self._from_nav_links):
            nodes = strategy(soup, candidate, page_url, settings)
            if nodes:
                log.info(
                    "generic_toc_mapped",
                    asset=candidate.slug,
                    strategy=strategy.__name__.removeprefix("_from_"),
                    nodes=len(nodes),
                )
                return nodes
        log.warning("generic_toc_not_found", url=candidate.url)
        return []

    def _from_container(
        self,
        soup: BeautifulSoup,
        candidate: AssetCandidate,
        page_url: str,
        settings: GenericHtmlConfig,
    ) -> list[TocNode]:
        counter = itertools.count()

        def parse_list(list_element: Tag, depth: int) -> list[TocNode]:
            if depth >= settings.max_depth:
                return []
            nodes: list[TocNode] = []
            for item in list_items(list_element):
                link = item.select_one(settings.toc_link_selector)
                if link is None:
                    continue
                href = str(link.get("href") or "")
                title = element_text(link)
                if not title or self._is_excluded(href, settings):
                    continue
                order = next(counter)
                node = TocNode(
                    slug=f"{candidate.slug}-{slugify(title)}-{depth}-{order}",
                    title=title,
                    url=resolve_url(href, page_url) if href else page_url,
                    node_type=node_type_for_depth(depth),
                    depth=depth,
                    sort_order=order,
                )
                nested = child_list(item, direct=True)
                if nested is not None:
                    node.children = parse_list(nested, depth + 1)
                nodes.append(node)
            return nodes

        for selector in settings.toc_selector.split(","):
            container = soup.select_one(selector.strip())
            if container is None:
                continue
            first_list = child_list(container)
            if first_list is None:
                continue
            nodes = flatten_toc(parse_list(first_list, 0))
            if nodes:
                return nodes
        return []

    def _from_headings(
        self,
        soup: BeautifulSoup,
        candidate: AssetCandidate,
        page_url: str,
        settings: GenericHtmlConfig,
    ) -> list[TocNode]:
        content = select_first(soup, settings.content_selector) or soup.body or soup
        nodes: list[TocNode] = []
        seen_ids: set[str] = set()
        for level, text, heading_id in extract_headings(content):
            if not heading_id or heading_id in seen_ids:
                continue
            seen_ids.add(heading_id)
            depth = max(0, level - 2)
            nodes.append(
                TocNode(
                    slug=f"{candidate.slug}-{slugify(heading_id)}",
                    title=text,
                    url=f"{page_url.split('#', 1)[0]}#{heading_id}",
                    node_type=node_type_for_depth(depth),
                    depth=depth,
                    sort_order=len(nodes),
                )
            )
        return nodes

    def _from_nav_links(
        self,
        soup: BeautifulSoup,
        candidate: AssetCandidate,
        page_url: str,
        settings: GenericHtmlConfig,
    ) -> list[TocNode]:
        for selector in NAV_LINK_SELECTORS:
            nodes: list[TocNode] = []
            for link in soup.select(selector):
                href = str(link.get("href") or "")
                title = element_text(link)
                if not href or not title or self._is_excluded(href, settings):
                    continue
                order = len(nodes)
                nodes.append(
                    TocNode(
                        slug=f"{candidate.slug}-{slugify(title)}-{order}",
                        title=title,
                        url=resolve_url(href, page_url),
                        node_type=NodeType.SECTION,
                        depth=0,
                        sort_order=order,
                    )
                )
            if nodes:
                return nodes
        return []

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content=self.config.content_selector,
            title=self.config.title_selector,
            toc=self.config.toc_selector,
        )
