"""Protocol interfaces for swappable components.

Services and AppState reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory fakes
- Storage engines other than the bundled SQLite store
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sourcereg.models.fetch import FetchResult, RobotsResult
    from sourcereg.models.registry import (
        Asset,
        AssetCandidate,
        LicenseInfo,
        ScanAction,
        ScanLog,
        SelectorHints,
        Source,
        SourceType,
        TocNode,
        ValidationResult,
    )


class FetcherProtocol(Protocol):
    """Interface for the polite HTTP fetcher."""

    async def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay_ms: int | None = None,
        domain_key: str | None = None,
    ) -> FetchResult: ...

    async def check_robots(self, url: str) -> RobotsResult: ...

    def set_rate_limit(self, domain: str, per_minute: int) -> None: ...

    def clear_caches(self) -> None: ...


class SourceAdapter(Protocol):
    """Discovery, validation and TOC mapping for one family of sources."""

    source_type: SourceType
    stated_license: LicenseInfo

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]: ...

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult: ...

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]: ...

    def selector_hints(self) -> SelectorHints: ...


class RegistryStoreProtocol(Protocol):
    """Key-addressable persistence for sources, assets, TOC nodes and scan logs."""

    async def get_source_by_name(self, name: str) -> Source | None: ...

    async def get_source(self, source_id: str) -> Source | None: ...

    async def list_sources(self) -> list[Source]: ...

    async def insert_source(self, source: Source) -> Source: ...

    async def update_source(self, source_id: str, **fields: Any) -> Source: ...

    async def get_asset_by_slug(self, source_id: str, slug: str) -> Asset | None: ...

    async def get_asset(self, asset_id: str) -> Asset | None: ...

    async def list_assets(
        self, source_id: str | None = None, active: bool | None = None
    ) -> list[Asset]: ...

    async def insert_asset(self, asset: Asset) -> Asset: ...

    async def update_asset(self, asset_id: str, **fields: Any) -> Asset: ...

    async def replace_toc_nodes(
        self, asset_id: str, nodes: Sequence[TocNode], batch_size: int = 100
    ) -> None: ...

    async def get_toc_nodes(self, asset_id: str) -> list[TocNode]: ...

    async def get_nodes_by_ids(self, node_ids: Sequence[str]) -> list[TocNode]: ...

    async def append_scan_log(self, entry: ScanLog) -> None: ...

    async def list_scan_logs(
        self,
        source_id: str | None = None,
        asset_id: str | None = None,
        action: ScanAction | None = None,
        limit: int = 100,
    ) -> list[ScanLog]: ...
