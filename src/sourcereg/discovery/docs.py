"""Documentation discovery: curated doc sites first, web search as fallback.

Curated sources are scored with exact keyword matching and conflict pairs
so that a "java" query never selects JavaScript documentation. When no
curated source yields a TOC, a DuckDuckGo HTML search surfaces the first
result that looks like documentation; its structure is extracted on a
best-effort basis.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlencode, urlparse

import structlog

from sourcereg.adapters import get_adapter
from sourcereg.adapters.common import resolve_url, slugify
from sourcereg.config import DiscoverySettings
from sourcereg.discovery.catalog import to_summaries
from sourcereg.discovery.scoring import (
    CONFLICTING_TERMS,
    DOCS_WEIGHTS,
    rank_matches,
    target_from_doc,
)
from sourcereg.models.discovery import DiscoveredContent, DocMatch, DocSource, WebSearchHit
from sourcereg.models.registry import AssetCandidate, NodeType, SeedConfig, SourceType, TocNode
from sourcereg.parser import clean_text, element_text, parse_html
from sourcereg.seeds import is_domain_allowed

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sourcereg.models.discovery import TocNodeSummary
    from sourcereg.models.registry import Asset
    from sourcereg.protocols import FetcherProtocol, SourceAdapter
    from sourcereg.registry import RegistryService

log = structlog.get_logger()

MDN_LICENSE_URL = (
    "https://developer.mozilla.org/en-US/docs/MDN/Writing_guidelines/Attrib_copyright_license"
)

KNOWN_DOC_SOURCES: tuple[DocSource, ...] = (
    # Languages
    DocSource(
        name="Dev.java - Learn Java",
        slug="dev-java",
        base_url="https://dev.java",
        doc_url="https://dev.java/learn/",
        keywords=["java", "jdk", "jvm", "programming", "oop", "object-oriented"],
        description="Official Oracle Java Developer Portal - modern Java learning resources",
        license="Oracle Technology Network License",
        license_url="https://www.oracle.com/legal/terms.html",
    ),
    DocSource(
        name="Java Programming (Wikibooks)",
        slug="java-wikibooks",
        base_url="https://en.wikibooks.org",
        doc_url="https://en.wikibooks.org/wiki/Java_Programming",
        keywords=["java", "jdk", "jvm", "programming", "oop", "beginner"],
        description="Free, open Java programming textbook from Wikibooks",
        license="CC BY-SA 3.0",
        license_url="https://creativecommons.org/licenses/by-sa/3.0/",
    ),
    DocSource(
        name="Python Documentation",
        slug="python-docs",
        base_url="https://docs.python.org",
        doc_url="https://docs.python.org/3/tutorial/index.html",
        type="sphinx",
        keywords=["python", "programming", "scripting", "language"],
        description="Official Python programming language documentation",
        license="PSF License",
        license_url="https://docs.python.org/3/license.html",
    ),
    DocSource(
        name="MDN Web Docs - JavaScript",
        slug="mdn-javascript",
        base_url="https://developer.mozilla.org",
        doc_url="https://developer.mozilla.org/en-US/docs/Web/JavaScript/Guide",
        keywords=["javascript", "js", "web", "ecmascript", "programming"],
        description="MDN JavaScript Guide and Reference",
        license="CC BY-SA 2.5",
        license_url=MDN_LICENSE_URL,
    ),
    DocSource(
        name="MDN Web Docs - HTML",
        slug="mdn-html",
        base_url="https://developer.mozilla.org",
        doc_url="https://developer.mozilla.org/en-US/docs/Learn/HTML",
        keywords=["html", "web", "markup", "frontend"],
        description="MDN HTML Learning Guide",
        license="CC BY-SA 2.5",
        license_url=MDN_LICENSE_URL,
    ),
    DocSource(
        name="MDN Web Docs - CSS",
        slug="mdn-css",
        base_url="https://developer.mozilla.org",
        doc_url="https://developer.mozilla.org/en-US/docs/Learn/CSS",
        keywords=["css", "stylesheet", "web", "styling", "frontend"],
        description="MDN CSS Learning Guide",
        license="CC BY-SA 2.5",
        license_url=MDN_LICENSE_URL,
    ),
    DocSource(
        name="Rust Book",
        slug="rust-book",
        base_url="https://doc.rust-lang.org",
        doc_url="https://doc.rust-lang.org/book/",
        keywords=["rust", "programming", "systems", "memory", "safety"],
        description="The Rust Programming Language book",
        license="MIT/Apache 2.0",
        license_url="https://github.com/rust-lang/book/blob/main/LICENSE-MIT",
    ),
    DocSource(
        name="Go Documentation",
        slug="go-docs",
        base_url="https://go.dev",
        doc_url="https://go.dev/doc/",
        keywords=["go", "golang", "programming", "concurrency"],
        description="Official Go programming language documentation",
        license="BSD License",
        license_url="https://go.dev/LICENSE",
    ),
    # Frameworks
    DocSource(
        name="React Documentation",
        slug="react-docs",
        base_url="https://react.dev",
        doc_url="https://react.dev/learn",
        keywords=["react", "reactjs", "javascript", "frontend", "ui", "component"],
        description="Official React documentation and learning guides",
        license="CC BY 4.0",
        license_url="https://github.com/reactjs/react.dev/blob/main/LICENSE-DOCS.md",
    ),
    DocSource(
        name="Vue.js Documentation",
        slug="vue-docs",
        base_url="https://vuejs.org",
        doc_url="https://vuejs.org/guide/introduction.html",
        keywords=["vue", "vuejs", "javascript", "frontend", "framework"],
        description="Official Vue.js documentation",
        license="MIT",
        license_url="https://github.com/vuejs/docs/blob/main/LICENSE",
    ),
    DocSource(
        name="Next.js Documentation",
        slug="nextjs-docs",
        base_url="https://nextjs.org",
        doc_url="https://nextjs.org/docs",
        keywords=["nextjs", "next", "react", "ssr", "fullstack", "framework"],
        description="Official Next.js documentation",
        license="MIT",
        license_url="https://github.com/vercel/next.js/blob/canary/license.md",
    ),
    DocSource(
        name="Django Documentation",
        slug="django-docs",
        base_url="https://docs.djangoproject.com",
        doc_url="https://docs.djangoproject.com/en/stable/intro/tutorial01/",
        type="sphinx",
        keywords=["django", "python", "web", "backend", "framework"],
        description="Official Django web framework documentation",
        license="BSD License",
        license_url="https://github.com/django/django/blob/main/LICENSE",
    ),
    DocSource(
        name="Node.js Documentation",
        slug="nodejs-docs",
        base_url="https://nodejs.org",
        doc_url="https://nodejs.org/docs/latest/api/",
        keywords=["nodejs", "node", "javascript", "backend", "runtime"],
        description="Official Node.js API documentation",
        license="MIT",
        license_url="https://github.com/nodejs/node/blob/main/LICENSE",
    ),
    DocSource(
        name="Express.js Documentation",
        slug="express-docs",
        base_url="https://expressjs.com",
        doc_url="https://expressjs.com/en/starter/installing.html",
        keywords=["express", "expressjs", "nodejs", "backend", "api", "web"],
        description="Express.js web framework documentation",
        license="CC BY-SA 3.0",
        license_url="https://github.com/expressjs/expressjs.com/blob/gh-pages/LICENSE.md",
    ),
    # Databases
    DocSource(
        name="PostgreSQL Documentation",
        slug="postgresql-docs",
        base_url="https://www.postgresql.org",
        doc_url="https://www.postgresql.org/docs/current/tutorial.html",
        keywords=["postgresql", "postgres", "sql", "database", "relational"],
        description="PostgreSQL database documentation",
        license="PostgreSQL License",
        license_url="https://www.postgresql.org/about/licence/",
    ),
    DocSource(
        name="MongoDB Documentation",
        slug="mongodb-docs",
        base_url="https://www.mongodb.com",
        doc_url="https://www.mongodb.com/docs/manual/introduction/",
        keywords=["mongodb", "mongo", "nosql", "database", "document"],
        description="MongoDB documentation and tutorials",
        license="CC BY-NC-SA 3.0",
        license_url="https://www.mongodb.com/legal/documentation-license",
    ),
    # DevOps and tools
    DocSource(
        name="Docker Documentation",
        slug="docker-docs",
        base_url="https://docs.docker.com",
        doc_url="https://docs.docker.com/get-started/",
        keywords=["docker", "container", "devops", "deployment", "virtualization"],
        description="Docker containerization documentation",
        license="Apache 2.0",
        license_url="https://github.com/docker/docs/blob/main/LICENSE",
    ),
    DocSource(
        name="Git Documentation",
        slug="git-docs",
        base_url="https://git-scm.com",
        doc_url="https://git-scm.com/book/en/v2",
        keywords=["git", "version", "control", "vcs", "github"],
        description="Pro Git book - comprehensive Git documentation",
        license="CC BY-NC-SA 3.0",
        license_url="https://git-scm.com/book/en/v2",
    ),
    DocSource(
        name="Kubernetes Documentation",
        slug="kubernetes-docs",
        base_url="https://kubernetes.io",
        doc_url="https://kubernetes.io/docs/tutorials/kubernetes-basics/",
        keywords=["kubernetes", "k8s", "container", "orchestration", "devops"],
        description="Kubernetes container orchestration documentation",
        license="CC BY 4.0",
        license_url="https://github.com/kubernetes/website/blob/main/LICENSE",
    ),
    # Data science
    DocSource(
        name="NumPy Documentation",
        slug="numpy-docs",
        base_url="https://numpy.org",
        doc_url="https://numpy.org/doc/stable/user/absolute_beginners.html",
        type="sphinx",
        keywords=["numpy", "python", "array", "numerical", "data", "science"],
        description="NumPy numerical computing library documentation",
        license="BSD License",
        license_url="https://numpy.org/doc/stable/license.html",
    ),
    DocSource(
        name="Pandas Documentation",
        slug="pandas-docs",
        base_url="https://pandas.pydata.org",
        doc_url="https://pandas.pydata.org/docs/getting_started/intro_tutorials/",
        type="sphinx",
        keywords=["pandas", "python", "dataframe", "data", "analysis"],
        description="Pandas data analysis library documentation",
        license="BSD License",
        license_url="https://github.com/pandas-dev/pandas/blob/main/LICENSE",
    ),
    DocSource(
        name="TypeScript Documentation",
        slug="typescript-docs",
        base_url="https://www.typescriptlang.org",
        doc_url="https://www.typescriptlang.org/docs/handbook/intro.html",
        keywords=["typescript", "ts", "javascript", "types", "programming"],
        description="Official TypeScript handbook and documentation",
        license="Apache 2.0",
        license_url="https://github.com/microsoft/TypeScript/blob/main/LICENSE.txt",
    ),
)

DOC_URL_MARKERS: tuple[str, ...] = ("docs.", "developer.", "learn.", "tutorial", "guide")
WEB_SEARCH_SUFFIX = "documentation tutorial site:docs OR site:developer OR site:learn"
WEB_SEARCH_TIMEOUT = 10.0

DOC_LICENSE_CONFIDENCE = 0.9

MAIN_CONTENT_LINK_SELECTORS: tuple[str, ...] = (
    "main a", "article a", ".content a", "#content a", ".main-content a", '[role="main"] a',
)
NAV_LINK_SELECTORS: tuple[str, ...] = (
    "nav a", ".sidebar a", ".toc a", ".navigation a", '[role="navigation"] a',
    ".menu a", ".nav-list a", ".table-of-contents a", "#toc a", ".index a",
)
WIKI_LIST_SELECTOR = ".mw-parser-output > ul a, .mw-parser-output > ol a"
HEADING_LINK_SELECTOR = "h1 a, h2 a, h3 a, h4 a"
SKIP_LINK_TITLES = frozenset({"home", "back", "next", "previous", "skip"})


def is_documentation_url(url: str) -> bool:
    """True when the host or URL carries a documentation-like marker."""
    host = (urlparse(url).hostname or "").lower()
    lowered = url.lower()
    return any(marker in host or marker in lowered for marker in DOC_URL_MARKERS)


def _decode_result_url(href: str) -> str:
    """Unwrap DuckDuckGo's ``/l/?uddg=<target>`` redirect links."""
    if href.startswith("//"):
        href = "https:" + href
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return href


# ---------------------------------------------------------------------------
# Best-effort structure extraction
# ---------------------------------------------------------------------------


def extract_basic_structure(
    html: str,
    base_url: str,
    max_nodes: int = 50,
    *,
    page_url: str | None = None,
) -> list[TocNode]:
    """Build a flat outline from a page with no recognisable TOC markup.

    Strategies run in order, each only while too few nodes were found:
    main-content links, navigation links, wiki list links, heading links.
    Links are resolved against ``page_url`` (default ``base_url``) and kept
    only when they stay on ``base_url``'s domain.
    """
    soup = parse_html(html)
    resolve_against = page_url or base_url
    base_host = (urlparse(base_url).hostname or "").lower()
    nodes: list[TocNode] = []
    seen_urls: set[str] = set()
    seen_slugs: set[str] = set()
    counter = itertools.count()

    def add(href: str, title: str, depth: int = 0) -> None:
        title = clean_text(title)
        if not href or not 3 <= len(title) <= 100:
            return
        if href == "#" or (href.startswith("#") and len(href) < 3):
            return
        url = resolve_url(href, resolve_against)
        host = (urlparse(url).hostname or "").lower()
        if not host or not is_domain_allowed(host, (base_host,)):
            return
        if url in seen_urls:
            return
        seen_urls.add(url)
        order = next(counter)
        slug = slugify(title)[:100] or f"node-{order}"
        if slug in seen_slugs:
            slug = f"{slug}-{order}"
        seen_slugs.add(slug)
        nodes.append(
            TocNode(
                slug=slug,
                title=title,
                url=url,
                node_type=NodeType.CHAPTER if depth == 0 else NodeType.SECTION,
                depth=depth,
                sort_order=order,
            )
        )

    def collect(selector: str, *, min_title: int = 0, skip_wiki: bool = False) -> None:
        for anchor in soup.select(selector):
            if len(nodes) >= max_nodes:
                return
            href = str(anchor.get("href") or "")
            title = element_text(anchor)
            if len(title) < min_title or title.lower() in SKIP_LINK_TITLES:
                continue
            if skip_wiki and (
                "action=edit" in href or (href.startswith("http") and "wikibooks" not in href)
            ):
                continue
            add(href, title)

    for selector in MAIN_CONTENT_LINK_SELECTORS:
        collect(selector, min_title=5)
        if len(nodes) > 10:
            break

    if len(nodes) < 5:
        for selector in NAV_LINK_SELECTORS:
            collect(selector)
            if len(nodes) > 5:
                break

    if len(nodes) < 5:
        collect(WIKI_LIST_SELECTOR, skip_wiki=True)

    if len(nodes) < 5:
        for anchor in soup.select(HEADING_LINK_SELECTOR):
            if len(nodes) >= max_nodes:
                break
            heading = anchor.find_parent(["h1", "h2", "h3", "h4"])
            level = int(heading.name[1]) if heading is not None else 2
            add(str(anchor.get("href") or ""), element_text(anchor), max(level - 2, 0))

    log.debug("basic_structure_extracted", url=resolve_against, nodes=len(nodes))
    return nodes


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class DocsDiscovery:
    def __init__(
        self,
        registry: RegistryService,
        adapters: Mapping[SourceType, SourceAdapter],
        fetcher: FetcherProtocol,
        settings: DiscoverySettings | None = None,
        *,
        sources: Sequence[DocSource] = KNOWN_DOC_SOURCES,
    ) -> None:
        self._registry = registry
        self._adapters = adapters
        self._fetcher = fetcher
        self._settings = settings or DiscoverySettings()
        self._sources = sources

    def search_known_docs(self, query: str) -> list[DocMatch]:
        ranked = rank_matches(
            query, self._sources, target_from_doc, DOCS_WEIGHTS, conflicts=CONFLICTING_TERMS
        )
        matches = [
            DocMatch(doc=doc, score=result.score, matched_terms=result.matched_terms)
            for doc, result in ranked
        ]
        log.info(
            "docs_search", query=query, matches=len(matches), top=[m.doc.name for m in matches[:3]]
        )
        return matches

    def find_best_doc(self, query: str) -> DocMatch | None:
        matches = self.search_known_docs(query)
        if matches and matches[0].score >= self._settings.min_match_score:
            return matches[0]
        return None

    async def search_web(self, query: str) -> list[WebSearchHit]:
        """Query DuckDuckGo's HTML endpoint. Returns an empty list on any failure."""
        search_url = (
            f"{self._settings.web_search_url}?{urlencode({'q': f'{query} {WEB_SEARCH_SUFFIX}'})}"
        )
        result = await self._fetcher.fetch(search_url, timeout=WEB_SEARCH_TIMEOUT)
        if not result.ok or result.body is None:
            log.warning("web_search_failed", query=query, error=result.error)
            return []

        hits: list[WebSearchHit] = []
        for item in parse_html(result.body).select(".result"):
            if len(hits) >= self._settings.web_search_max_results:
                break
            link = item.select_one(".result__a")
            if link is None:
                continue
            title = element_text(link)
            url = _decode_result_url(str(link.get("href") or ""))
            if not title or not url.startswith("http") or not urlparse(url).hostname:
                continue
            snippet = element_text(item.select_one(".result__snippet"))
            hits.append(WebSearchHit(title=title, url=url, snippet=snippet))
        log.info("web_search_complete", query=query, results=len(hits))
        return hits

    def _doc_seed(self, doc: DocSource) -> SeedConfig:
        host = urlparse(doc.base_url).hostname or doc.base_url
        return SeedConfig(
            name=f"{doc.name} ({host})",
            type=SourceType.SPHINX_DOCS if doc.type == "sphinx" else SourceType.GENERIC_HTML,
            base_url=doc.base_url,
            seed_url=doc.doc_url,
            description=doc.description or None,
            rate_limit_per_minute=self._settings.docs_rate_per_minute,
        )

    async def get_or_create_doc_asset(self, doc: DocSource) -> Asset:
        seed = self._doc_seed(doc)
        self._fetcher.set_rate_limit(
            (urlparse(doc.base_url).hostname or "").lower(), self._settings.docs_rate_per_minute
        )
        source = await self._registry.get_or_create_source(seed)
        if source.license_name is None and doc.license:
            await self._registry.update_source(
                source.id, license_name=doc.license, license_url=doc.license_url
            )
        asset = await self._registry.get_or_create_asset(
            source.id,
            AssetCandidate(
                slug=doc.slug,
                title=doc.name,
                url=doc.doc_url,
                description=doc.description or None,
                metadata={"keywords": list(doc.keywords), "doc_type": doc.type},
            ),
        )
        if asset.license_name is None and doc.license:
            asset = await self._registry.update_asset(
                asset.id,
                license_name=doc.license,
                license_url=doc.license_url,
                license_confidence=DOC_LICENSE_CONFIDENCE,
            )
        return asset

    async def get_toc_for_doc_asset(self, asset: Asset, doc: DocSource) -> list[TocNode]:
        """Return stored nodes, else map live with the matching adapter.

        Falls back to ``extract_basic_structure`` when the adapter finds nothing.
        """
        stored = await self._registry.get_toc_nodes(asset.id)
        if stored:
            return stored

        source_type = SourceType.SPHINX_DOCS if doc.type == "sphinx" else SourceType.GENERIC_HTML
        adapter = get_adapter(self._adapters, source_type)
        candidate = asset.to_candidate().model_copy(update={"url": doc.doc_url})
        nodes = await adapter.map_toc(candidate, doc.base_url)

        if not nodes:
            log.info("docs_toc_fallback", asset_id=asset.id, url=doc.doc_url)
            result = await self._fetcher.fetch(doc.doc_url)
            if result.ok and result.body is not None:
                nodes = extract_basic_structure(
                    result.body,
                    doc.base_url,
                    self._settings.max_basic_nodes,
                    page_url=doc.doc_url,
                )

        if not nodes:
            log.warning("docs_toc_not_found", asset_id=asset.id, url=doc.doc_url)
            return []
        return await self._registry.store_live_toc(asset, nodes)

    async def get_toc_summaries(self, asset_id: str) -> list[TocNodeSummary]:
        return to_summaries(await self._registry.get_toc_nodes(asset_id))

    async def discover_docs_for_topic(self, topic: str) -> DiscoveredContent | None:
        """Try each confident curated match in score order, then the web."""
        viable = [
            m for m in self.search_known_docs(topic) if m.score >= self._settings.min_match_score
        ]
        for match in viable:
            try:
                asset = await self.get_or_create_doc_asset(match.doc)
                nodes = await self.get_toc_for_doc_asset(asset, match.doc)
            except Exception:
                log.warning("docs_source_failed", doc=match.doc.slug, exc_info=True)
                continue
            if nodes:
                asset = await self._registry.get_asset_by_id(asset.id) or asset
                return DiscoveredContent(
                    asset=asset,
                    toc=to_summaries(nodes),
                    provider=match.doc.name,
                    score=match.score,
                    metadata={"matched_terms": match.matched_terms, "doc_slug": match.doc.slug},
                )
            log.info("docs_source_empty", doc=match.doc.slug)

        return await self._discover_from_web(topic)

    async def _discover_from_web(self, topic: str) -> DiscoveredContent | None:
        hits = await self.search_web(topic)
        hit = next((h for h in hits if is_documentation_url(h.url)), None)
        if hit is None:
            log.info("web_docs_not_found", topic=topic)
            return None

        parsed = urlparse(hit.url)
        doc = DocSource(
            name=hit.title[:100],
            slug=slugify(hit.title)[:100] or slugify(parsed.hostname or "web-doc"),
            base_url=f"{parsed.scheme}://{parsed.netloc}",
            doc_url=hit.url,
            description=hit.snippet,
        )
        log.info("web_docs_found", topic=topic, url=hit.url)
        try:
            asset = await self.get_or_create_doc_asset(doc)
            nodes = await self.get_toc_for_doc_asset(asset, doc)
        except Exception:
            log.warning("web_docs_failed", url=hit.url, exc_info=True)
            return None
        asset = await self._registry.get_asset_by_id(asset.id) or asset
        return DiscoveredContent(
            asset=asset,
            toc=to_summaries(nodes),
            provider=doc.name,
            from_web_search=True,
            metadata={"url": hit.url, "snippet": hit.snippet},
        )
