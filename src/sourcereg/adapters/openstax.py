"""Adapter for the OpenStax textbook catalog.

Discovery reads the CMS books API; TOC mapping reads the book tree from the
``window.__PRELOADED_STATE__`` JSON blob embedded in each book page.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

import structlog

from sourcereg.adapters.common import apply_stated_license, slugify, validate_candidate
from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.registry import (
    AssetCandidate,
    LicenseInfo,
    NodeType,
    SelectorHints,
    SourceType,
    TocNode,
    ValidationResult,
)
from sourcereg.parser import strip_tags
from sourcereg.toc import flatten_toc

if TYPE_CHECKING:
    from sourcereg.protocols import FetcherProtocol

log = structlog.get_logger()

DEFAULT_API_URL = "https://openstax.org/apps/cms/api/books/"
BOOKS_BASE_URL = "https://openstax.org/books"

_PRELOADED_STATE_RE = re.compile(
    r"window\.__PRELOADED_STATE__\s*=\s*(\{.*?\});?\s*</script>", re.DOTALL
)
# Known locations of the book tree inside the preloaded state
_TREE_PATHS: tuple[tuple[str, ...], ...] = (
    ("page", "book", "tree"),
    ("content", "book", "tree"),
    ("book", "tree"),
)
_MAX_TREE_SEARCH_DEPTH = 5


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def find_tree(data: Any, depth: int = 0) -> dict[str, Any] | None:
    """Depth-limited search for an object whose ``tree.contents`` is a list."""
    if depth > _MAX_TREE_SEARCH_DEPTH:
        return None
    if isinstance(data, dict):
        tree = data.get("tree")
        if isinstance(tree, dict) and isinstance(tree.get("contents"), list):
            return tree
        children = list(data.values())
    elif isinstance(data, list):
        children = data
    else:
        return None
    for child in children:
        found = find_tree(child, depth + 1)
        if found is not None:
            return found
    return None


def extract_book_tree(html: str) -> dict[str, Any] | None:
    """Return the book tree from the embedded state blob, or ``None``."""
    match = _PRELOADED_STATE_RE.search(html)
    if not match:
        return None
    try:
        state = json.loads(match.group(1))
    except json.JSONDecodeError:
        log.warning("openstax_state_parse_error", exc_info=True)
        return None
    for path in _TREE_PATHS:
        tree = _dig(state, path)
        if isinstance(tree, dict) and isinstance(tree.get("contents"), list):
            return tree
    return find_tree(state)


def _node_type(item: dict[str, Any], depth: int) -> NodeType:
    if item.get("toc_type") == "book-content":
        return NodeType.CHAPTER if item.get("toc_target_type") == "chapter" else NodeType.SECTION
    if depth == 0:
        return NodeType.CHAPTER if item.get("contents") else NodeType.SECTION
    if depth == 1:
        return NodeType.SECTION
    return NodeType.SUBSECTION


class OpenStaxAdapter:
    source_type = SourceType.OPENSTAX
    stated_license = LicenseInfo(
        name="CC BY 4.0",
        url="https://creativecommons.org/licenses/by/4.0/",
        confidence=0.95,
    )

    def __init__(self, fetcher: FetcherProtocol, books_base_url: str = BOOKS_BASE_URL) -> None:
        self._fetcher = fetcher
        self._books_base_url = books_base_url.rstrip("/")

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        """List live books from the CMS API.

        Raises SourceRegError when the catalog cannot be fetched or parsed;
        without the catalog there is nothing to scan.
        """
        api_url = (config or {}).get("api_url", DEFAULT_API_URL)
        result = await self._fetcher.fetch(api_url)
        if not result.ok or result.body is None:
            raise SourceRegError(
                code=ErrorCode.DISCOVERY_FAILED,
                message=f"Failed to fetch OpenStax catalog: {result.error}",
                suggestion="The catalog API may be temporarily unavailable; retry the scan later.",
                recoverable=True,
            )
        try:
            books = json.loads(result.body).get("books") or []
        except (json.JSONDecodeError, AttributeError) as exc:
            raise SourceRegError(
                code=ErrorCode.DISCOVERY_FAILED,
                message=f"Failed to parse OpenStax catalog: {exc}",
                suggestion="The catalog API response format may have changed.",
            ) from exc

        candidates: list[AssetCandidate] = []
        for book in books:
            if book.get("book_state") != "live":
                continue
            slug = book.get("slug") or (book.get("meta") or {}).get("slug") or ""
            slug = slug.removeprefix("books/")
            if not slug or not book.get("title"):
                continue
            candidates.append(
                AssetCandidate(
                    slug=slug,
                    title=book["title"],
                    url=f"{self._books_base_url}/{slug}/pages/1-introduction",
                    description=strip_tags(book.get("description")) or None,
                    metadata={
                        "cnx_id": book.get("cnx_id"),
                        "book_uuid": book.get("book_uuid"),
                        "details_url": f"https://openstax.org/details/books/{slug}",
                        "cover_url": book.get("cover_url"),
                        "subjects": [
                            s.get("subject_name") for s in book.get("book_subjects") or []
                        ],
                        "categories": [
                            c.get("subject_category") for c in book.get("book_categories") or []
                        ],
                        "publish_date": book.get("publish_date"),
                    },
                )
            )
        log.info("openstax_discovered", books=len(candidates))
        return candidates

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await validate_candidate(self._fetcher, candidate)
        return apply_stated_license(result, self.stated_license, min_confidence=0.9)

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        result = await self._fetcher.fetch(candidate.url)
        if not result.ok or result.body is None:
            log.warning("openstax_toc_fetch_failed", url=candidate.url, error=result.error)
            return []

        tree = extract_book_tree(result.body)
        if tree is None:
            log.warning("openstax_toc_not_found", url=candidate.url)
            return []

        sort_order = 0

        def parse_contents(contents: list[Any], depth: int) -> list[TocNode]:
            nonlocal sort_order
            nodes: list[TocNode] = []
            for item in contents:
                if not isinstance(item, dict):
                    continue
                title = strip_tags(item.get("title"))
                if not title:
                    continue
                page_slug = item.get("slug") or ""
                url = (
                    f"{self._books_base_url}/{candidate.slug}/pages/{page_slug}"
                    if page_slug
                    else candidate.url
                )
                node = TocNode(
                    slug=slugify(f"{candidate.slug}-{page_slug or title}-{sort_order}"),
                    title=title,
                    url=url,
                    node_type=_node_type(item, depth),
                    depth=depth,
                    sort_order=sort_order,
                    metadata={
                        "toc_type": item.get("toc_type"),
                        "toc_target_type": item.get("toc_target_type"),
                    },
                )
                sort_order += 1
                children = item.get("contents")
                if isinstance(children, list) and children:
                    node.children = parse_contents(children, depth + 1)
                nodes.append(node)
            return nodes

        nodes = flatten_toc(parse_contents(tree["contents"], 0))
        log.info("openstax_toc_mapped", asset=candidate.slug, nodes=len(nodes))
        return nodes

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content='.main-content, [data-type="page"], .content',
            title='h1, .title, [data-type="document-title"]',
            toc='.table-of-contents, #toc, nav[aria-label="Table of Contents"]',
            exclude=['[data-type="note"]', ".os-eoc", ".os-teacher", ".os-solutions"],
        )
