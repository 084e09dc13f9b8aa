"""Adapter for MIT OpenCourseWare.

Discovery returns a hand-maintained course list. TOC mapping scrapes the
course navigation and expands index pages (lecture notes, assignments,
readings) into one node per table row.
"""

from __future__ import annotations

import itertools
import re
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

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
from sourcereg.parser import child_list, element_text, list_items, parse_html, select_first
from sourcereg.toc import flatten_toc, renumber

if TYPE_CHECKING:
    from collections.abc import Iterator

    from bs4 import BeautifulSoup, Tag

    from sourcereg.protocols import FetcherProtocol

log = structlog.get_logger()


class CuratedCourse(BaseModel):
    course_number: str
    title: str
    url: str
    department: str
    topics: list[str]
    level: str = "Undergraduate"


CURATED_COURSES: tuple[CuratedCourse, ...] = (
    CuratedCourse(
        course_number="6.0001",
        title="Introduction to Computer Science and Programming in Python",
        url="https://ocw.mit.edu/courses/6-0001-introduction-to-computer-science-and-programming-in-python-fall-2016/",
        department="Electrical Engineering and Computer Science",
        topics=["python", "programming", "computer science", "algorithms", "data structures"],
    ),
    CuratedCourse(
        course_number="6.092",
        title="Introduction to Programming in Java",
        url="https://ocw.mit.edu/courses/6-092-introduction-to-programming-in-java-january-iap-2010/",
        department="Electrical Engineering and Computer Science",
        topics=["java", "programming", "oop", "object-oriented"],
    ),
    CuratedCourse(
        course_number="6.006",
        title="Introduction to Algorithms",
        url="https://ocw.mit.edu/courses/6-006-introduction-to-algorithms-spring-2020/",
        department="Electrical Engineering and Computer Science",
        topics=["algorithms", "data structures", "computer science", "complexity"],
    ),
    CuratedCourse(
        course_number="18.01",
        title="Single Variable Calculus",
        url="https://ocw.mit.edu/courses/18-01sc-single-variable-calculus-fall-2010/",
        department="Mathematics",
        topics=["calculus", "mathematics", "derivatives", "integrals"],
    ),
    CuratedCourse(
        course_number="18.02",
        title="Multivariable Calculus",
        url="https://ocw.mit.edu/courses/18-02sc-multivariable-calculus-fall-2010/",
        department="Mathematics",
        topics=["calculus", "mathematics", "vectors", "multivariable"],
    ),
    CuratedCourse(
        course_number="18.06",
        title="Linear Algebra",
        url="https://ocw.mit.edu/courses/18-06sc-linear-algebra-fall-2011/",
        department="Mathematics",
        topics=["linear algebra", "mathematics", "matrices", "vectors"],
    ),
    CuratedCourse(
        course_number="6.046J",
        title="Design and Analysis of Algorithms",
        url="https://ocw.mit.edu/courses/6-046j-design-and-analysis-of-algorithms-spring-2015/",
        department="Electrical Engineering and Computer Science",
        topics=["algorithms", "analysis", "design", "complexity"],
        level="Graduate",
    ),
    CuratedCourse(
        course_number="6.042J",
        title="Mathematics for Computer Science",
        url="https://ocw.mit.edu/courses/6-042j-mathematics-for-computer-science-fall-2010/",
        department="Electrical Engineering and Computer Science",
        topics=["discrete mathematics", "logic", "proofs", "computer science"],
    ),
    CuratedCourse(
        course_number="14.01",
        title="Principles of Microeconomics",
        url="https://ocw.mit.edu/courses/14-01sc-principles-of-microeconomics-fall-2011/",
        department="Economics",
        topics=["economics", "microeconomics", "markets", "supply", "demand"],
    ),
    CuratedCourse(
        course_number="8.01",
        title="Physics I: Classical Mechanics",
        url="https://ocw.mit.edu/courses/8-01sc-classical-mechanics-fall-2016/",
        department="Physics",
        topics=["physics", "mechanics", "motion", "forces", "energy"],
    ),
)

NAV_SELECTORS: tuple[str, ...] = (
    'nav[aria-label="Course materials"]',
    ".course-nav",
    ".course-sidebar nav",
    "#course-nav",
    ".left-nav",
    "aside nav",
)
SECTION_SELECTOR = ".course-section, .course-page, section[data-course-section]"

DEFAULT_EXPAND_KEYWORDS: tuple[str, ...] = ("lecture", "assignment", "reading")
DEFAULT_INDEX_URL_PATTERN = "/pages/"

_SECTION_TITLE_RE = re.compile(
    r"syllabus|calendar|lecture|assignment|problem set|pset|reading|exam|quiz|project"
)


def _course_slug(course_number: str) -> str:
    return course_number.lower().replace(".", "-")


def _nav_node_type(title: str, depth: int) -> NodeType:
    if _SECTION_TITLE_RE.search(title.lower()):
        return NodeType.SECTION
    if depth == 0:
        return NodeType.CHAPTER
    if depth == 1:
        return NodeType.SECTION
    return NodeType.SUBSECTION


class MitOcwAdapter:
    source_type = SourceType.MIT_OCW
    stated_license = LicenseInfo(
        name="CC BY-NC-SA 4.0",
        url="https://creativecommons.org/licenses/by-nc-sa/4.0/",
        confidence=0.85,
    )

    def __init__(
        self,
        fetcher: FetcherProtocol,
        *,
        courses: tuple[CuratedCourse, ...] = CURATED_COURSES,
        expand_keywords: tuple[str, ...] = DEFAULT_EXPAND_KEYWORDS,
        index_url_pattern: str = DEFAULT_INDEX_URL_PATTERN,
    ) -> None:
        self._fetcher = fetcher
        self._courses = courses
        self._expand_keywords = expand_keywords
        self._index_url_pattern = index_url_pattern

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        return [
            AssetCandidate(
                slug=_course_slug(course.course_number),
                title=course.title,
                url=course.url,
                description=f"MIT OpenCourseWare - {course.course_number}: {course.title}",
                metadata={
                    "course_number": course.course_number,
                    "department": course.department,
                    "level": course.level,
                    "topics": list(course.topics),
                },
            )
            for course in self._courses
        ]

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await validate_candidate(self._fetcher, candidate)
        return apply_stated_license(result, self.stated_license, min_confidence=0.7)

    # ------------------------------------------------------------------
    # TOC mapping
    # ------------------------------------------------------------------

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        result = await self._fetcher.fetch(candidate.url)
        if not result.ok or result.body is None:
            log.warning("ocw_toc_fetch_failed", url=candidate.url, error=result.error)
            return []

        soup = parse_html(result.body)
        nodes: list[TocNode] = []

        nav = select_first(soup, NAV_SELECTORS)
        if nav is not None:
            top_list = child_list(nav, direct=True) or child_list(nav)
            if top_list is not None:
                tree = self._parse_nav_items(
                    list_items(top_list), candidate, 0, itertools.count()
                )
                nodes = await self._expand_index_nodes(flatten_toc(tree))

        if not nodes:
            nodes = self._section_fallback(soup, candidate)

        log.info("ocw_toc_mapped", asset=candidate.slug, nodes=len(nodes))
        return nodes

    def _parse_nav_items(
        self, items: list[Tag], candidate: AssetCandidate, depth: int, counter: Iterator[int]
    ) -> list[TocNode]:
        nodes: list[TocNode] = []
        for item in items:
            link = item.find("a")
            if link is None:
                continue
            title = element_text(link)
            if not title:
                continue
            href = str(link.get("href") or "")
            order = next(counter)
            node = TocNode(
                slug=slugify(f"{candidate.slug}-{title}-{order}"),
                title=title,
                url=resolve_url(href, candidate.url) if href else candidate.url,
                node_type=_nav_node_type(title, depth),
                depth=depth,
                sort_order=order,
            )
            nested = child_list(item)
            if nested is not None:
                node.children = self._parse_nav_items(
                    list_items(nested), candidate, depth + 1, counter
                )
            nodes.append(node)
        return nodes

    def should_expand(self, node: TocNode) -> bool:
        title = node.title.lower()
        return (
            any(keyword in title for keyword in self._expand_keywords)
            and node.url is not None
            and self._index_url_pattern in node.url
        )

    async def _expand_index_nodes(self, nodes: list[TocNode]) -> list[TocNode]:
        """Splice each expandable index node's rows in place of the node."""
        expanded: list[TocNode] = []
        for node in nodes:
            if self.should_expand(node):
                children = await self.expand_index_page(node)
                if children:
                    expanded.extend(children)
                    continue
            expanded.append(node)
        return renumber(expanded)

    async def expand_index_page(self, index_node: TocNode) -> list[TocNode]:
        """Turn the table rows of an index page into sibling nodes.

        The first row of each table is a header. A row needs at least two
        cells; the longer of the first two is its title. A PDF or resource
        link in the row becomes the node URL.
        """
        if index_node.url is None:
            return []
        result = await self._fetcher.fetch(index_node.url)
        if not result.ok or result.body is None:
            log.warning("ocw_index_fetch_failed", url=index_node.url, error=result.error)
            return []

        soup = parse_html(result.body)
        children: list[TocNode] = []
        for table in soup.find_all("table"):
            for row in table.find_all("tr")[1:]:
                cells = row.find_all("td")
                if len(cells) < 2:
                    continue
                title = element_text(cells[0])
                topic = element_text(cells[1])
                if len(topic) > len(title):
                    title = topic
                if not title:
                    continue

                content_url = index_node.url
                for link in row.find_all("a", href=True):
                    href = str(link["href"])
                    if href.endswith(".pdf") or "/resources/" in href:
                        content_url = resolve_url(href, index_node.url)
                        break

                child_order = len(children)
                children.append(
                    TocNode(
                        slug=slugify(f"{index_node.slug}-{title}-{child_order}"),
                        title=f"{index_node.title}: {title}",
                        url=content_url,
                        node_type=NodeType.SECTION,
                        depth=index_node.depth,
                        sort_order=index_node.sort_order + child_order,
                        metadata={
                            "parent_title": index_node.title,
                            "is_pdf": content_url.endswith(".pdf"),
                        },
                    )
                )
        log.debug("ocw_index_expanded", title=index_node.title, children=len(children))
        return children

    def _section_fallback(self, soup: BeautifulSoup, candidate: AssetCandidate) -> list[TocNode]:
        sections = soup.select(SECTION_SELECTOR)
        if not sections:
            return [
                TocNode(
                    slug=candidate.slug,
                    title=candidate.title,
                    url=candidate.url,
                    node_type=NodeType.PAGE,
                    depth=0,
                    sort_order=0,
                )
            ]
        nodes: list[TocNode] = []
        for order, section in enumerate(sections):
            title = element_text(section.find(["h1", "h2", "h3"])) or f"Section {order + 1}"
            nodes.append(
                TocNode(
                    slug=slugify(f"{candidate.slug}-{title}-{order}"),
                    title=title,
                    url=candidate.url,
                    node_type=NodeType.SECTION,
                    depth=0,
                    sort_order=order,
                )
            )
        return nodes

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content="main, #course-content-section, .course-content, article",
            title="h1, .course-title",
            toc=", ".join(NAV_SELECTORS),
        )
