"""HTML parsing utilities shared by adapters, discovery and retrieval.

Thin helpers over BeautifulSoup with the stdlib ``html.parser`` backend.
Selector arguments accept either a single CSS selector (which may itself be a
comma-separated group) or an ordered list tried in priority order.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from bs4 import BeautifulSoup

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bs4 import Tag

_WHITESPACE_RE = re.compile(r"\s+")
_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def clean_text(text: str | None) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def element_text(element: Tag | None) -> str:
    if element is None:
        return ""
    return clean_text(element.get_text(" "))


def strip_tags(html: str | None) -> str:
    """Return the visible text of an HTML fragment."""
    if not html:
        return ""
    return element_text(parse_html(html))


def select_first(root: BeautifulSoup | Tag, selectors: str | Iterable[str]) -> Tag | None:
    """Return the first element matched, trying ``selectors`` in order."""
    if isinstance(selectors, str):
        selectors = [selectors]
    for selector in selectors:
        element = root.select_one(selector)
        if element is not None:
            return element
    return None


def remove_elements(root: BeautifulSoup | Tag, selectors: Iterable[str]) -> None:
    for selector in selectors:
        for element in root.select(selector):
            element.decompose()


def child_list(element: Tag, *, direct: bool = False) -> Tag | None:
    """Return the first ``ul``/``ol`` inside ``element``.

    With ``direct`` only immediate children are considered.
    """
    return element.find(["ul", "ol"], recursive=not direct)


def list_items(list_element: Tag) -> list[Tag]:
    """Return the immediate ``li`` children of a ``ul``/``ol``."""
    return list_element.find_all("li", recursive=False)


def extract_links(
    root: BeautifulSoup | Tag,
    base_url: str,
    selector: str = "a[href]",
) -> list[tuple[str, str]]:
    """Return ``(text, absolute_url)`` pairs in document order."""
    links: list[tuple[str, str]] = []
    for anchor in root.select(selector):
        href = anchor.get("href")
        if not href:
            continue
        links.append((element_text(anchor), urljoin(base_url, str(href))))
    return links


def extract_headings(root: BeautifulSoup | Tag) -> list[tuple[int, str, str | None]]:
    """Return ``(level, text, id)`` for every h1–h6 in document order."""
    headings: list[tuple[int, str, str | None]] = []
    for element in root.find_all(_HEADING_TAGS):
        text = element_text(element)
        if not text:
            continue
        element_id = element.get("id")
        headings.append((int(element.name[1]), text, str(element_id) if element_id else None))
    return headings


def page_title(soup: BeautifulSoup) -> str:
    """Return the ``<title>`` text, or the first ``<h1>``, or an empty string."""
    if soup.title is not None:
        title = element_text(soup.title)
        if title:
            return title
    return element_text(soup.find("h1"))
