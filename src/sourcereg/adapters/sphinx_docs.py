"""Adapter for Sphinx-generated documentation.

The Python documentation has a dedicated path: versions are probed against
the live site and the TOC is assembled from a fixed list of top-level
sections, each parsed via Sphinx's ``toctree-l{n}`` classes. Any other Sphinx
site goes through the generic path: a version selector on the seed page (or
the page itself as one asset) and the first sidebar/body toctree found.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog

from sourcereg.adapters.common import (
    apply_stated_license,
    resolve_url,
    slugify,
    validate_candidate,
)
from sourcereg.models.registry import (
    AssetCandidate,
    LicenseInfo,
    NodeType,
    SelectorHints,
    SourceType,
    TocNode,
    ValidationResult,
)
from sourcereg.parser import child_list, element_text, list_items, page_title, parse_html
from sourcereg.toc import flatten_toc, node_type_for_depth

if TYPE_CHECKING:
    from collections.abc import Iterator

    from bs4 import BeautifulSoup, Tag

    from sourcereg.protocols import FetcherProtocol

log = structlog.get_logger()

PYTHON_DOCS_HOST = "docs.python.org"
DEFAULT_PYTHON_VERSIONS: tuple[str, ...] = ("3.13", "3.12", "3.11", "3.10")

# (title, slug, path relative to the version root)
PYTHON_MAIN_SECTIONS: tuple[tuple[str, str, str], ...] = (
    ("Tutorial", "tutorial", "tutorial/index.html"),
    ("Library Reference", "library", "library/index.html"),
    ("Language Reference", "reference", "reference/index.html"),
    ("Python Setup and Usage", "using", "using/index.html"),
    ("HOWTOs", "howto", "howto/index.html"),
    ("Installing Python Modules", "installing", "installing/index.html"),
    ("Distributing Python Modules", "distributing", "distributing/index.html"),
    ("FAQs", "faq", "faq/index.html"),
)

VERSION_SELECTOR = 'select[name="version"] option, a[href*="/version/"], .version-selector a'
GENERIC_TOC_SELECTORS: tuple[str, ...] = (
    ".toctree-wrapper ul",
    ".sidebar-toctree ul",
    "#table-of-contents ul",
    ".toc ul",
    "nav.contents ul",
)

PYTHON_LICENSE = LicenseInfo(
    name="PSF License",
    url="https://docs.python.org/3/license.html",
    confidence=0.95,
)


def _is_python_docs(url: str) -> bool:
    return PYTHON_DOCS_HOST in url


def _version_root(url: str) -> str:
    """``https://docs.python.org/3/tutorial/index.html`` -> ``https://docs.python.org/3/``."""
    parts = urlparse(url)
    segments = [s for s in parts.path.split("/") if s]
    prefix = f"/{segments[0]}/" if segments else "/"
    return f"{parts.scheme}://{parts.netloc}{prefix}"


class SphinxDocsAdapter:
    source_type = SourceType.SPHINX_DOCS
    stated_license = PYTHON_LICENSE

    def __init__(self, fetcher: FetcherProtocol, *, max_toctree_level: int = 2) -> None:
        self._fetcher = fetcher
        self._max_toctree_level = max_toctree_level

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        config = config or {}
        if _is_python_docs(seed_url):
            versions = config.get("versions") or DEFAULT_PYTHON_VERSIONS
            return await self._discover_python_versions(versions, config.get("language", "en"))
        return await self._discover_generic(seed_url)

    async def _discover_python_versions(
        self, versions: list[str] | tuple[str, ...], language: str
    ) -> list[AssetCandidate]:
        candidates: list[AssetCandidate] = []
        for version in versions:
            version_url = f"https://{PYTHON_DOCS_HOST}/{version}/"
            result = await self._fetcher.fetch(version_url, retries=1)
            if not result.ok:
                log.debug("python_docs_version_unavailable", version=version, status=result.status)
                continue
            candidates.append(
                AssetCandidate(
                    slug=f"python-{version}",
                    title=f"Python {version} Documentation",
                    url=version_url,
                    version=version,
                    description=f"Official Python {version} documentation",
                    metadata={
                        "language": language,
                        "sections": [slug for _, slug, _ in PYTHON_MAIN_SECTIONS],
                    },
                )
            )
        log.info("python_docs_discovered", versions=[c.version for c in candidates])
        return candidates

    async def _discover_generic(self, seed_url: str) -> list[AssetCandidate]:
        result = await self._fetcher.fetch(seed_url)
        if not result.ok or result.body is None:
            log.warning("sphinx_index_fetch_failed", url=seed_url, error=result.error)
            return []

        soup = parse_html(result.body)
        candidates: list[AssetCandidate] = []
        seen: set[str] = set()
        for element in soup.select(VERSION_SELECTOR):
            version = str(element.get("value") or element_text(element))
            if not version or "latest" in version or version in seen:
                continue
            seen.add(version)
            href = str(element.get("href") or f"{seed_url.rstrip('/')}/{version}/")
            candidates.append(
                AssetCandidate(
                    slug=f"docs-v{slugify(version)}",
                    title=f"Documentation v{version}",
                    url=resolve_url(href, seed_url),
                    version=version,
                )
            )
        if not candidates:
            candidates.append(
                AssetCandidate(slug="docs", title=page_title(soup) or "Documentation", url=seed_url)
            )
        log.info("sphinx_docs_discovered", url=seed_url, assets=len(candidates))
        return candidates

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await validate_candidate(self._fetcher, candidate)
        if _is_python_docs(candidate.url):
            return apply_stated_license(result, PYTHON_LICENSE, min_confidence=0.9)
        return result

    # ------------------------------------------------------------------
    # TOC mapping
    # ------------------------------------------------------------------

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        if _is_python_docs(candidate.url):
            nodes = await self._map_python_docs(candidate)
        else:
            nodes = await self._map_generic(candidate)
        log.info("sphinx_toc_mapped", asset=candidate.slug, nodes=len(nodes))
        return nodes

    async def _map_python_docs(self, candidate: AssetCandidate) -> list[TocNode]:
        root_page = await self._fetcher.fetch(candidate.url)
        if not root_page.ok:
            log.warning("python_docs_root_unavailable", url=candidate.url, error=root_page.error)
            return []

        counter = itertools.count()
        root = _version_root(candidate.url)
        tree: list[TocNode] = []
        for title, section_slug, path in PYTHON_MAIN_SECTIONS:
            section_url = resolve_url(path, root)
            result = await self._fetcher.fetch(section_url)
            if not result.ok or result.body is None:
                log.debug("python_docs_section_unavailable", url=section_url, error=result.error)
                continue
            chapter = TocNode(
                slug=f"{candidate.slug}-{section_slug}",
                title=title,
                url=section_url,
                node_type=NodeType.CHAPTER,
                depth=0,
                sort_order=next(counter),
            )
            chapter.children = self._parse_toctree(
                parse_html(result.body),
                section_url,
                f"{candidate.slug}-{section_slug}",
                counter,
            )
            tree.append(chapter)
        return flatten_toc(tree)

    def _parse_toctree(
        self,
        soup: BeautifulSoup,
        page_url: str,
        slug_prefix: str,
        counter: Iterator[int],
    ) -> list[TocNode]:
        """Parse ``li.toctree-l1`` items (and nested levels) of one section page."""
        seen_titles: set[str] = set()

        def parse_level(items: list[Tag], level: int) -> list[TocNode]:
            nodes: list[TocNode] = []
            for item in items:
                link = item.find("a", recursive=False)
                if link is None:
                    continue
                href = str(link.get("href") or "")
                title = element_text(link)
                if not href or not title or title in seen_titles:
                    continue
                if href.startswith("http") and "python.org" not in href:
                    continue
                seen_titles.add(title)
                order = next(counter)
                node = TocNode(
                    slug=f"{slug_prefix}-{slugify(title)}-{order}",
                    title=title,
                    url=resolve_url(href, page_url),
                    node_type=NodeType.SECTION if level == 1 else NodeType.SUBSECTION,
                    depth=level,
                    sort_order=order,
                )
                if level < self._max_toctree_level:
                    nested = item.find(["ul", "ol"], recursive=False)
                    if nested is not None:
                        node.children = parse_level(
                            nested.find_all("li", class_=f"toctree-l{level + 1}", recursive=False),
                            level + 1,
                        )
                nodes.append(node)
            return nodes

        top_items = soup.select("li.toctree-l1") or soup.select(".toctree-wrapper li")
        return parse_level(top_items, 1)

    async def _map_generic(self, candidate: AssetCandidate) -> list[TocNode]:
        result = await self._fetcher.fetch(candidate.url)
        if not result.ok or result.body is None:
            log.warning("sphinx_toc_fetch_failed", url=candidate.url, error=result.error)
            return []

        soup = parse_html(result.body)
        toc = None
        for selector in GENERIC_TOC_SELECTORS:
            found = soup.select_one(selector)
            if found is not None and found.find("a") is not None:
                toc = found
                break
        if toc is None:
            log.warning("sphinx_toc_not_found", url=candidate.url)
            return []

        counter = itertools.count()

        def parse_list(list_element: Tag, depth: int) -> list[TocNode]:
            nodes: list[TocNode] = []
            for item in list_items(list_element):
                link = item.find("a", recursive=False)
                if link is None:
                    continue
                href = str(link.get("href") or "")
                title = element_text(link)
                if not href or not title:
                    continue
                order = next(counter)
                node = TocNode(
                    slug=f"{candidate.slug}-{slugify(title)}-{order}",
                    title=title,
                    url=resolve_url(href, candidate.url),
                    node_type=node_type_for_depth(depth),
                    depth=depth,
                    sort_order=order,
                )
                nested = child_list(item, direct=True)
                if nested is not None:
                    node.children = parse_list(nested, depth + 1)
                nodes.append(node)
            return nodes

        return flatten_toc(parse_list(toc, 0))

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content='.body, .document, [role="main"], main',
            title="h1, .title",
            toc=".toctree-wrapper, .sphinxsidebar, nav.contents",
            exclude=[".headerlink", ".sphinxsidebar", ".related"],
        )
