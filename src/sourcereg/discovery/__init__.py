"""Find-or-create discovery for free-text topics.

``TopicDiscovery`` asks each provider in turn (textbooks, then courses,
then documentation) and returns the first one that yields a TOC.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sourcereg.config import DiscoverySettings
from sourcereg.discovery.catalog import CatalogDiscovery, to_summaries
from sourcereg.discovery.docs import (
    KNOWN_DOC_SOURCES,
    DocsDiscovery,
    extract_basic_structure,
    is_documentation_url,
)
from sourcereg.discovery.scoring import (
    COURSE_WEIGHTS,
    DOCS_WEIGHTS,
    TEXTBOOK_WEIGHTS,
    ScoringWeights,
    rank_matches,
    score_topic_match,
    tokenize,
)
from sourcereg.errors import SourceRegError
from sourcereg.models.registry import SourceType
from sourcereg.seeds import get_seeds_by_type
from sourcereg.ttl_cache import TtlCache

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sourcereg.models.discovery import DiscoveredContent
    from sourcereg.protocols import FetcherProtocol, SourceAdapter
    from sourcereg.registry import RegistryService

__all__ = [
    "COURSE_WEIGHTS",
    "DOCS_WEIGHTS",
    "KNOWN_DOC_SOURCES",
    "TEXTBOOK_WEIGHTS",
    "CatalogDiscovery",
    "DocsDiscovery",
    "ScoringWeights",
    "TopicDiscovery",
    "extract_basic_structure",
    "is_documentation_url",
    "rank_matches",
    "score_topic_match",
    "to_summaries",
    "tokenize",
]

log = structlog.get_logger()


class TopicDiscovery:
    def __init__(
        self,
        textbooks: CatalogDiscovery,
        courses: CatalogDiscovery,
        docs: DocsDiscovery,
    ) -> None:
        self.textbooks = textbooks
        self.courses = courses
        self.docs = docs

    @classmethod
    def build(
        cls,
        registry: RegistryService,
        adapters: Mapping[SourceType, SourceAdapter],
        fetcher: FetcherProtocol,
        settings: DiscoverySettings | None = None,
    ) -> TopicDiscovery:
        settings = settings or DiscoverySettings()
        cache: TtlCache = TtlCache(settings.catalog_ttl_seconds)
        textbooks = CatalogDiscovery(
            registry,
            adapters[SourceType.OPENSTAX],
            get_seeds_by_type(SourceType.OPENSTAX)[0],
            TEXTBOOK_WEIGHTS,
            settings,
            cache,
        )
        courses = CatalogDiscovery(
            registry,
            adapters[SourceType.MIT_OCW],
            get_seeds_by_type(SourceType.MIT_OCW)[0],
            COURSE_WEIGHTS,
            settings,
            cache,
        )
        return cls(textbooks, courses, DocsDiscovery(registry, adapters, fetcher, settings))

    async def discover(self, topic: str) -> DiscoveredContent | None:
        for catalog in (self.textbooks, self.courses):
            try:
                found = await catalog.discover_content_for_topic(topic)
            except SourceRegError as exc:
                log.warning(
                    "catalog_discovery_failed", provider=catalog.provider, error=exc.message
                )
                continue
            if found is not None:
                return found
        return await self.docs.discover_docs_for_topic(topic)
