"""On-demand topic discovery over an adapter's full catalog.

Used for providers whose catalog is small enough to list in one call
(OpenStax books, the curated MIT course list). The listing is cached for
``discovery.catalog_ttl_seconds`` and scored against the topic locally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sourcereg.config import DiscoverySettings
from sourcereg.discovery.scoring import rank_matches, target_from_candidate
from sourcereg.models.discovery import DiscoveredContent, TocNodeSummary, TopicMatch
from sourcereg.ttl_cache import TtlCache

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sourcereg.discovery.scoring import ScoringWeights
    from sourcereg.models.registry import Asset, AssetCandidate, SeedConfig, TocNode
    from sourcereg.protocols import SourceAdapter
    from sourcereg.registry import RegistryService

log = structlog.get_logger()


def to_summaries(nodes: Iterable[TocNode]) -> list[TocNodeSummary]:
    return [
        TocNodeSummary(
            node_id=node.id or "",
            title=node.title,
            order=node.sort_order,
            depth=node.depth,
            node_type=node.node_type,
        )
        for node in nodes
    ]


class CatalogDiscovery:
    def __init__(
        self,
        registry: RegistryService,
        adapter: SourceAdapter,
        seed: SeedConfig,
        weights: ScoringWeights,
        settings: DiscoverySettings | None = None,
        cache: TtlCache[list[AssetCandidate]] | None = None,
    ) -> None:
        self._registry = registry
        self._adapter = adapter
        self._seed = seed
        self._weights = weights
        self._settings = settings or DiscoverySettings()
        self._cache = cache or TtlCache(self._settings.catalog_ttl_seconds)

    @property
    def provider(self) -> str:
        return self._seed.name

    async def get_catalog(self, force_refresh: bool = False) -> list[AssetCandidate]:
        """Return the provider's catalog, from cache unless expired or forced."""
        if force_refresh:
            self._cache.invalidate(self._seed.name)
        return await self._cache.get_or_refresh(self._seed.name, self._load_catalog)

    async def _load_catalog(self) -> list[AssetCandidate]:
        log.info("catalog_fetch", provider=self.provider)
        candidates = await self._adapter.discover_assets(self._seed.seed_url, self._seed.config)
        log.info("catalog_cached", provider=self.provider, entries=len(candidates))
        return candidates

    async def search(self, topic: str) -> list[TopicMatch]:
        catalog = await self.get_catalog()
        ranked = rank_matches(topic, catalog, target_from_candidate, self._weights)
        matches = [
            TopicMatch(candidate=candidate, score=result.score, matched_terms=result.matched_terms)
            for candidate, result in ranked
        ]
        log.info(
            "catalog_search",
            provider=self.provider,
            topic=topic,
            matches=len(matches),
            top=[m.candidate.title for m in matches[:3]],
        )
        return matches

    async def find_best(self, topic: str) -> TopicMatch | None:
        """Return the top match if it clears ``min_match_score``."""
        matches = await self.search(topic)
        if matches and matches[0].score >= self._settings.min_match_score:
            return matches[0]
        return None

    async def get_or_create_asset(self, candidate: AssetCandidate) -> Asset:
        source = await self._registry.get_or_create_source(self._seed)
        asset = await self._registry.get_or_create_asset(source.id, candidate)
        stated = self._adapter.stated_license
        if asset.license_name is None and stated.name:
            asset = await self._registry.update_asset(
                asset.id,
                license_name=stated.name,
                license_url=stated.url,
                license_confidence=stated.confidence,
            )
        return asset

    async def get_toc_for_asset(self, asset: Asset) -> list[TocNode]:
        """Return stored nodes, or map the TOC live and store it."""
        stored = await self._registry.get_toc_nodes(asset.id)
        if stored:
            log.debug("toc_from_store", asset_id=asset.id, nodes=len(stored))
            return stored

        log.info("toc_live_fetch", asset_id=asset.id, url=asset.url)
        nodes = await self._adapter.map_toc(asset.to_candidate(), self._seed.base_url)
        if not nodes:
            log.warning("toc_not_found", asset_id=asset.id, title=asset.title)
            return []
        return await self._registry.store_live_toc(asset, nodes)

    async def get_toc_summaries(self, asset_id: str) -> list[TocNodeSummary]:
        return to_summaries(await self._registry.get_toc_nodes(asset_id))

    async def discover_content_for_topic(self, topic: str) -> DiscoveredContent | None:
        match = await self.find_best(topic)
        if match is None:
            log.info("topic_no_match", provider=self.provider, topic=topic)
            return None

        asset = await self.get_or_create_asset(match.candidate)
        nodes = await self.get_toc_for_asset(asset)
        if not nodes:
            log.warning("topic_toc_unavailable", provider=self.provider, asset_id=asset.id)
            return None

        asset = await self._registry.get_asset_by_id(asset.id) or asset
        log.info(
            "topic_discovered",
            provider=self.provider,
            topic=topic,
            asset_id=asset.id,
            nodes=len(nodes),
        )
        return DiscoveredContent(
            asset=asset,
            toc=to_summaries(nodes),
            provider=self.provider,
            score=match.score,
            metadata={"matched_terms": match.matched_terms},
        )
