"""Content retrieval for TOC nodes, with citation metadata.

Pages are fetched through the polite fetcher, stripped of navigation and
boilerplate, and reduced to title, headings, paragraphs and figures.
Retrieval never raises for a single page; failures come back as ``None``
and are filtered out of batch results.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import TYPE_CHECKING

import structlog

from sourcereg.adapters.common import resolve_url
from sourcereg.batching import run_batched
from sourcereg.config import RetrievalSettings
from sourcereg.models.content import Citation, ExtractedContent, ExtractedFigure, ExtractedHeading
from sourcereg.parser import (
    element_text,
    extract_headings,
    parse_html,
    remove_elements,
    select_first,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from bs4 import Tag

    from sourcereg.models.registry import Asset, SelectorHints, TocNode
    from sourcereg.protocols import FetcherProtocol, RegistryStoreProtocol

log = structlog.get_logger()

DEFAULT_CONTENT_SELECTORS: dict[str, str] = {
    "content": '.main-content, [data-type="page"], .content, article, main, .book-content',
    "title": 'h1, .title, [data-type="document-title"]',
    "paragraph": 'p, [data-type="para"]',
    "figure": 'figure, .figure, [data-type="figure"]',
    "figcaption": 'figcaption, .caption, [data-type="caption"]',
    "image": "img",
    "exclude": (
        "nav, .nav, .sidebar, .toc, .table-of-contents, header, footer, .header, .footer, "
        'script, style, [data-type="note"], .os-eoc, .os-teacher, .os-solutions'
    ),
}

_SECTION_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)*)")


def _resolve_selectors(hints: SelectorHints | None) -> dict[str, str]:
    selectors = dict(DEFAULT_CONTENT_SELECTORS)
    if hints is None:
        return selectors
    if hints.content:
        selectors["content"] = hints.content
    if hints.title:
        selectors["title"] = hints.title
    if hints.exclude:
        selectors["exclude"] = ", ".join([selectors["exclude"], *hints.exclude])
    return selectors


class ContentRetriever:
    def __init__(
        self,
        fetcher: FetcherProtocol,
        store: RegistryStoreProtocol,
        settings: RetrievalSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._settings = settings or RetrievalSettings()
        self._sleep = sleep

    async def extract_content_from_url(
        self, url: str, hints: SelectorHints | None = None
    ) -> ExtractedContent | None:
        """Fetch ``url`` and extract its main content. Returns None on failure."""
        started = time.monotonic()
        result = await self._fetcher.fetch(url)
        if not result.ok or result.body is None:
            log.error("content_fetch_failed", url=url, status=result.status, error=result.error)
            return None

        selectors = _resolve_selectors(hints)
        soup = parse_html(result.body)
        remove_elements(soup, [selectors["exclude"]])

        area = select_first(soup, selectors["content"])
        if area is None:
            log.warning("content_area_not_found", url=url)
            return None

        title = element_text(select_first(soup, selectors["title"])) or "Untitled"
        headings = [
            ExtractedHeading(level=level, text=text, id=heading_id)
            for level, text, heading_id in extract_headings(area)
        ]

        min_chars = self._settings.min_paragraph_chars
        paragraphs = [
            text
            for text in (element_text(p) for p in area.select(selectors["paragraph"]))
            if len(text) > min_chars
        ]
        text = "\n\n".join(paragraphs) or element_text(area)

        figures = self._extract_figures(area, selectors, url)

        log.info(
            "content_extracted",
            url=url,
            title_length=len(title),
            content_length=len(text),
            headings=len(headings),
            figures=len(figures),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return ExtractedContent(title=title, url=url, text=text, headings=headings, figures=figures)

    @staticmethod
    def _extract_figures(
        area: Tag, selectors: dict[str, str], page_url: str
    ) -> list[ExtractedFigure]:
        figures: list[ExtractedFigure] = []
        seen: set[str] = set()
        figure_elements = area.select(selectors["figure"])
        for figure in figure_elements:
            img = figure.select_one(selectors["image"])
            src = str(img.get("src") or "") if img is not None else ""
            if not src:
                continue
            src = resolve_url(src, page_url)
            if src in seen:
                continue
            seen.add(src)
            caption = element_text(figure.select_one(selectors["figcaption"]))
            figures.append(
                ExtractedFigure(
                    url=src,
                    alt=str(img.get("alt") or "") or None,
                    caption=caption or None,
                )
            )

        in_figure = {
            id(img) for figure in figure_elements for img in figure.select(selectors["image"])
        }
        for img in area.select(selectors["image"]):
            if id(img) in in_figure:
                continue
            src = str(img.get("src") or "")
            if not src:
                continue
            src = resolve_url(src, page_url)
            if src in seen:
                continue
            seen.add(src)
            figures.append(ExtractedFigure(url=src, alt=str(img.get("alt") or "") or None))
        return figures

    async def retrieve_nodes_content(
        self,
        nodes: Sequence[TocNode],
        asset: Asset,
        all_nodes: Sequence[TocNode] | None = None,
    ) -> list[ExtractedContent]:
        """Extract content for every node that has a URL.

        ``all_nodes`` supplies ancestors for section paths; when omitted
        the asset's stored nodes are loaded.
        """
        started = time.monotonic()
        if all_nodes is None:
            all_nodes = await self._store.get_toc_nodes(asset.id)
        nodes_by_id = {node.id: node for node in [*all_nodes, *nodes] if node.id}

        async def extract(node: TocNode) -> ExtractedContent | None:
            if not node.url:
                return None
            extracted = await self.extract_content_from_url(node.url, asset.selector_hints)
            if extracted is None:
                log.warning("node_content_unavailable", node_id=node.id, url=node.url)
                return None
            return extracted.model_copy(
                update={
                    "node_id": node.id,
                    "title": extracted.title if extracted.title != "Untitled" else node.title,
                    "url": node.url,
                    "section_path": self.build_section_path(node, nodes_by_id),
                    "source_title": asset.title,
                }
            )

        results = await run_batched(
            list(nodes),
            extract,
            batch_size=self._settings.max_concurrent,
            delay_ms=self._settings.batch_delay_ms,
            sleep=self._sleep,
        )
        log.info(
            "content_retrieval_complete",
            asset_id=asset.id,
            requested=len(nodes),
            retrieved=len(results),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return results

    @staticmethod
    def build_section_path(node: TocNode, nodes_by_id: dict[str, TocNode]) -> list[str]:
        """Titles from the root ancestor down to ``node``."""
        path: list[str] = []
        current: TocNode | None = node
        visited: set[str] = set()
        while current is not None:
            path.append(current.title)
            if current.id:
                visited.add(current.id)
            parent_id = current.parent_id
            if parent_id is None or parent_id in visited:
                break
            current = nodes_by_id.get(parent_id)
        path.reverse()
        return path

    @staticmethod
    def build_citations(contents: Iterable[ExtractedContent]) -> list[Citation]:
        return [
            Citation(
                source_title=content.source_title or "",
                section_title=content.title,
                section_path=content.section_path,
                url=content.url,
                node_id=content.node_id,
            )
            for content in contents
        ]


def format_citations_display(citations: Sequence[Citation]) -> str:
    """``"Based on Calculus Volume 1, Sections 2.1–2.3"`` and friends."""
    if not citations:
        return ""
    source = citations[0].source_title
    titles = [c.section_title for c in citations]
    if len(titles) == 1:
        return f"Based on {source}, {titles[0]}"

    numbers = [m.group(1) for t in titles if (m := _SECTION_NUMBER_RE.search(t))]
    if len(numbers) == len(titles):
        return f"Based on {source}, Sections {numbers[0]}–{numbers[-1]}"

    if len(titles) <= 3:
        return f"Based on {source}: {', '.join(titles)}"
    return f"Based on {source}: {', '.join(titles[:2])} and {len(titles) - 2} more sections"
