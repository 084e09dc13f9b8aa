"""Registry service: scan orchestration and Source/Asset/Node lifecycle.

A scan walks one seed through discover → validate → map TOC → persist.
Source and Asset scan status follow ``idle → scanning → completed | failed``.
A failure while processing one candidate is recorded and the scan moves on;
a failure of the seed as a whole marks its Source ``failed``.
"""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NamedTuple
from urllib.parse import urlparse

import structlog

from sourcereg.adapters import get_adapter
from sourcereg.config import Settings
from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.registry import (
    Asset,
    BatchScanResult,
    RobotsStatus,
    ScanAction,
    ScanLog,
    ScanLogStatus,
    ScanResult,
    ScanStatus,
    SeedConfig,
    Source,
    ValidationIssue,
    ValidationReport,
)
from sourcereg.seeds import ALLOWED_DOMAINS, SEED_SOURCES, is_url_allowed
from sourcereg.toc import compute_toc_stats, link_parents, renumber

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from sourcereg.models.registry import AssetCandidate, SourceType, TocNode
    from sourcereg.protocols import FetcherProtocol, RegistryStoreProtocol, SourceAdapter

log = structlog.get_logger()

_LOG_LEVELS = {
    ScanLogStatus.STARTED: "debug",
    ScanLogStatus.COMPLETED: "info",
    ScanLogStatus.SKIPPED: "info",
    ScanLogStatus.FAILED: "error",
}


class _CandidateOutcome(NamedTuple):
    skipped: bool = False
    nodes: int = 0
    error: str | None = None


def _now() -> datetime:
    return datetime.now(UTC)


class RegistryService:
    def __init__(
        self,
        store: RegistryStoreProtocol,
        fetcher: FetcherProtocol,
        adapters: Mapping[SourceType, SourceAdapter],
        settings: Settings | None = None,
        *,
        allowlist: tuple[str, ...] = ALLOWED_DOMAINS,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._adapters = adapters
        self._settings = settings or Settings()
        self._allowlist = allowlist

    @property
    def store(self) -> RegistryStoreProtocol:
        return self._store

    @property
    def fetcher(self) -> FetcherProtocol:
        return self._fetcher

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def get_or_create_source(self, seed: SeedConfig) -> Source:
        existing = await self._store.get_source_by_name(seed.name)
        if existing is not None:
            return existing
        source = Source(
            id=str(uuid.uuid4()),
            name=seed.name,
            type=seed.type,
            base_url=seed.base_url,
            seed_url=seed.seed_url,
            description=seed.description,
            rate_limit_per_minute=(
                seed.rate_limit_per_minute or self._settings.fetcher.default_rate_per_minute
            ),
            config=seed.config,
        )
        log.info("source_created", source_id=source.id, name=source.name)
        return await self._store.insert_source(source)

    async def get_sources(self) -> list[Source]:
        return await self._store.list_sources()

    async def get_source_by_id(self, source_id: str) -> Source | None:
        return await self._store.get_source(source_id)

    async def update_source(self, source_id: str, **fields: Any) -> Source:
        return await self._store.update_source(source_id, **fields)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def get_or_create_asset(self, source_id: str, candidate: AssetCandidate) -> Asset:
        """Return the asset for ``(source_id, candidate.slug)``, creating it inactive."""
        existing = await self._store.get_asset_by_slug(source_id, candidate.slug)
        if existing is not None:
            return existing
        asset = Asset(
            id=str(uuid.uuid4()),
            source_id=source_id,
            slug=candidate.slug,
            title=candidate.title,
            url=candidate.url,
            description=candidate.description,
            version=candidate.version,
            metadata=candidate.metadata,
        )
        log.debug("asset_created", asset_id=asset.id, slug=asset.slug, source_id=source_id)
        return await self._store.insert_asset(asset)

    async def get_assets(
        self, source_id: str | None = None, active: bool | None = None
    ) -> list[Asset]:
        return await self._store.list_assets(source_id=source_id, active=active)

    async def get_asset_by_id(self, asset_id: str) -> Asset | None:
        return await self._store.get_asset(asset_id)

    async def update_asset(self, asset_id: str, **fields: Any) -> Asset:
        return await self._store.update_asset(asset_id, **fields)

    async def _require_asset(self, asset_id: str) -> Asset:
        asset = await self._store.get_asset(asset_id)
        if asset is None:
            raise SourceRegError(
                code=ErrorCode.ASSET_NOT_FOUND,
                message=f"Asset not found: {asset_id}",
                suggestion="List assets to find a valid id.",
            )
        return asset

    async def activate_asset(self, asset_id: str) -> Asset:
        """Mark an asset active.

        Raises SourceRegError(ACTIVATION_BLOCKED) when robots.txt disallows
        the asset or its TOC was not extracted.
        """
        asset = await self._require_asset(asset_id)
        if asset.robots_status == RobotsStatus.DISALLOWED:
            raise SourceRegError(
                code=ErrorCode.ACTIVATION_BLOCKED,
                message=f"Cannot activate {asset.title!r}: robots.txt disallows crawling",
                suggestion="The provider does not permit crawling; leave the asset inactive.",
            )
        if not asset.toc_extraction_success:
            raise SourceRegError(
                code=ErrorCode.ACTIVATION_BLOCKED,
                message=f"Cannot activate {asset.title!r}: TOC extraction did not succeed",
                suggestion="Rescan the source and check the asset's validation report.",
                recoverable=True,
            )
        asset = await self._store.update_asset(asset_id, active=True)
        await self.log_scan(
            ScanAction.ACTIVATE,
            ScanLogStatus.COMPLETED,
            source_id=asset.source_id,
            asset_id=asset.id,
            message=f"Activated {asset.title}",
        )
        return asset

    async def deactivate_asset(self, asset_id: str) -> Asset:
        asset = await self._require_asset(asset_id)
        asset = await self._store.update_asset(asset_id, active=False)
        await self.log_scan(
            ScanAction.DEACTIVATE,
            ScanLogStatus.COMPLETED,
            source_id=asset.source_id,
            asset_id=asset.id,
            message=f"Deactivated {asset.title}",
        )
        return asset

    # ------------------------------------------------------------------
    # TOC nodes
    # ------------------------------------------------------------------

    async def save_toc_nodes(self, asset_id: str, nodes: Sequence[TocNode]) -> list[TocNode]:
        """Replace the asset's stored nodes with ``nodes`` (flat, pre-order)."""
        linked = link_parents(renumber(nodes), asset_id)
        await self._store.replace_toc_nodes(
            asset_id, linked, batch_size=self._settings.store.node_batch_size
        )
        log.debug("toc_nodes_saved", asset_id=asset_id, nodes=len(linked))
        return linked

    async def get_toc_nodes(self, asset_id: str) -> list[TocNode]:
        return await self._store.get_toc_nodes(asset_id)

    async def store_live_toc(self, asset: Asset, nodes: Sequence[TocNode]) -> list[TocNode]:
        """Persist a TOC mapped on demand and activate the asset when eligible.

        Used by the discovery flows, which map a single asset outside a scan.
        """
        saved = await self.save_toc_nodes(asset.id, nodes)
        robots = await self._fetcher.check_robots(asset.url)
        if not robots.allowed:
            robots_status = RobotsStatus.DISALLOWED
        elif robots.error:
            robots_status = RobotsStatus.NEEDS_REVIEW
        else:
            robots_status = RobotsStatus.ALLOWED
        asset = await self._store.update_asset(
            asset.id,
            toc_extraction_success=True,
            toc_stats=compute_toc_stats(saved),
            robots_status=robots_status,
            scan_status=ScanStatus.COMPLETED,
            last_scan_at=_now(),
            scan_error=None,
        )
        if robots_status != RobotsStatus.DISALLOWED and not asset.active:
            await self.activate_asset(asset.id)
        log.info("live_toc_stored", asset_id=asset.id, nodes=len(saved), robots=robots_status)
        return saved

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan_all_seeds(
        self,
        seeds: Iterable[SeedConfig] | None = None,
        skip_scanned: bool | None = None,
    ) -> BatchScanResult:
        totals = BatchScanResult()
        for seed in SEED_SOURCES if seeds is None else seeds:
            try:
                result = await self.scan_seed(seed, skip_scanned=skip_scanned)
            except Exception as exc:
                totals.errors.append(f"{seed.name}: {exc}")
                continue
            totals.sources += 1
            totals.assets += result.assets
            totals.nodes += result.nodes
            totals.skipped += result.skipped
            totals.errors.extend(f"{seed.name}: {error}" for error in result.errors)
        log.info(
            "scan_all_complete",
            sources=totals.sources,
            assets=totals.assets,
            nodes=totals.nodes,
            skipped=totals.skipped,
            errors=len(totals.errors),
        )
        return totals

    async def scan_source_by_id(
        self, source_id: str, skip_scanned: bool | None = None
    ) -> ScanResult:
        source = await self._store.get_source(source_id)
        if source is None:
            raise SourceRegError(
                code=ErrorCode.SOURCE_NOT_FOUND,
                message=f"Source not found: {source_id}",
                suggestion="List sources to find a valid id.",
            )
        seed = SeedConfig(
            name=source.name,
            type=source.type,
            base_url=source.base_url,
            seed_url=source.seed_url or source.base_url,
            description=source.description,
            rate_limit_per_minute=source.rate_limit_per_minute,
            config=source.config,
        )
        return await self.scan_seed(seed, skip_scanned=skip_scanned)

    async def scan_seed(self, seed: SeedConfig, skip_scanned: bool | None = None) -> ScanResult:
        """Scan one seed end to end.

        Per-candidate failures are collected in ``ScanResult.errors``. A
        seed-level failure marks the Source ``failed`` and is re-raised.
        """
        if skip_scanned is None:
            skip_scanned = self._settings.registry.skip_scanned
        started = time.monotonic()

        source = await self.get_or_create_source(seed)
        source = await self._store.update_source(
            source.id, scan_status=ScanStatus.SCANNING, last_scan_at=_now(), scan_error=None
        )
        await self.log_scan(
            ScanAction.DISCOVER,
            ScanLogStatus.STARTED,
            source_id=source.id,
            message=f"Starting scan of {seed.name}",
            url=seed.seed_url,
        )
        result = ScanResult(source=source)

        try:
            domain = (urlparse(seed.base_url).hostname or "").lower()
            self._fetcher.set_rate_limit(
                domain, seed.rate_limit_per_minute or self._settings.fetcher.default_rate_per_minute
            )
            adapter = get_adapter(self._adapters, seed.type)
            candidates = await adapter.discover_assets(seed.seed_url, seed.config)
            await self.log_scan(
                ScanAction.DISCOVER,
                ScanLogStatus.COMPLETED,
                source_id=source.id,
                message=f"Discovered {len(candidates)} assets",
                details={"candidates": len(candidates)},
            )

            for candidate in candidates:
                if not is_url_allowed(candidate.url, self._allowlist):
                    log.warning("asset_url_not_allowed", url=candidate.url, slug=candidate.slug)
                    continue
                asset: Asset | None = None
                try:
                    asset = await self.get_or_create_asset(source.id, candidate)
                    outcome = await self._scan_candidate(
                        source, adapter, candidate, asset, skip_scanned
                    )
                except Exception as exc:
                    asset_id = asset.id if asset is not None else None
                    message = f"Error processing {candidate.title}: {exc}"
                    log.error(
                        "scan_candidate_failed",
                        source_id=source.id,
                        asset_id=asset_id,
                        slug=candidate.slug,
                        exc_info=True,
                    )
                    result.errors.append(message)
                    if asset_id is not None:
                        await self._store.update_asset(
                            asset_id, scan_status=ScanStatus.FAILED, scan_error=str(exc)
                        )
                    await self.log_scan(
                        ScanAction.ERROR,
                        ScanLogStatus.FAILED,
                        source_id=source.id,
                        asset_id=asset_id,
                        message=message,
                        url=candidate.url,
                        details={"slug": candidate.slug},
                    )
                    continue
                if outcome.skipped:
                    result.skipped += 1
                    continue
                result.assets += 1
                result.nodes += outcome.nodes
                if outcome.error:
                    result.errors.append(outcome.error)

            result.source = await self._store.update_source(
                source.id,
                scan_status=ScanStatus.COMPLETED,
                scan_error="; ".join(result.errors) or None,
            )
        except Exception as exc:
            log.error("scan_seed_failed", source_id=source.id, seed=seed.name, exc_info=True)
            await self._store.update_source(
                source.id, scan_status=ScanStatus.FAILED, scan_error=str(exc)
            )
            await self.log_scan(
                ScanAction.DISCOVER,
                ScanLogStatus.FAILED,
                source_id=source.id,
                message=f"Scan of {seed.name} failed: {exc}",
            )
            raise

        log.info(
            "scan_seed_complete",
            source_id=source.id,
            seed=seed.name,
            assets=result.assets,
            nodes=result.nodes,
            skipped=result.skipped,
            errors=len(result.errors),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return result

    async def _scan_candidate(
        self,
        source: Source,
        adapter: SourceAdapter,
        candidate: AssetCandidate,
        asset: Asset,
        skip_scanned: bool,
    ) -> _CandidateOutcome:
        if (
            skip_scanned
            and asset.scan_status == ScanStatus.COMPLETED
            and asset.toc_extraction_success
        ):
            await self.log_scan(
                ScanAction.VALIDATE,
                ScanLogStatus.SKIPPED,
                source_id=source.id,
                asset_id=asset.id,
                message=f"Skipped {asset.title} (already scanned)",
            )
            return _CandidateOutcome(skipped=True)

        asset = await self._store.update_asset(
            asset.id, scan_status=ScanStatus.SCANNING, last_scan_at=_now()
        )
        await self.log_scan(
            ScanAction.VALIDATE,
            ScanLogStatus.STARTED,
            source_id=source.id,
            asset_id=asset.id,
            url=candidate.url,
        )
        validation = await adapter.validate(candidate, source.base_url)
        robots_status = validation.robots_status
        if robots_status == RobotsStatus.ALLOWED and validation.errors:
            robots_status = RobotsStatus.NEEDS_REVIEW

        await self.log_scan(
            ScanAction.MAP_TOC,
            ScanLogStatus.STARTED,
            source_id=source.id,
            asset_id=asset.id,
            url=candidate.url,
        )
        errors = list(validation.errors)
        mapping_error: str | None = None
        nodes: list[TocNode] = []
        try:
            nodes = await adapter.map_toc(candidate, source.base_url)
        except Exception as exc:
            log.error("toc_mapping_failed", asset_id=asset.id, url=candidate.url, exc_info=True)
            errors.append(
                ValidationIssue(code="TOC_MAPPING_FAILED", message=f"TOC mapping failed: {exc}")
            )
            mapping_error = f"TOC mapping failed for {candidate.title}: {exc}"

        toc_success = bool(nodes)
        toc_stats = None
        if toc_success:
            toc_stats = compute_toc_stats(nodes)
            await self.save_toc_nodes(asset.id, nodes)

        report = ValidationReport(
            license_name=validation.license_name,
            license_url=validation.license_url,
            license_confidence=validation.license_confidence,
            robots_status=robots_status,
            errors=errors,
            warnings=validation.warnings,
            license_detected=bool(validation.license_name),
            toc_extraction_success=toc_success,
            toc_stats=toc_stats,
        )

        eligible = toc_success and robots_status != RobotsStatus.DISALLOWED
        active = eligible and (asset.active or self._settings.registry.auto_activate)
        asset = await self._store.update_asset(
            asset.id,
            license_name=validation.license_name,
            license_url=validation.license_url,
            license_confidence=validation.license_confidence,
            robots_status=robots_status,
            toc_extraction_success=toc_success,
            toc_stats=toc_stats,
            validation_report=report,
            selector_hints=adapter.selector_hints(),
            scan_status=ScanStatus.COMPLETED,
            scan_error=mapping_error,
            active=active,
        )
        await self.log_scan(
            ScanAction.VALIDATE,
            ScanLogStatus.COMPLETED,
            source_id=source.id,
            asset_id=asset.id,
            message=f"Scanned {asset.title}",
            details={
                "nodes": len(nodes),
                "license": validation.license_name,
                "robots_status": robots_status,
                "errors": len(errors),
                "warnings": len(validation.warnings),
            },
        )
        return _CandidateOutcome(nodes=len(nodes), error=mapping_error)

    # ------------------------------------------------------------------
    # Scan log
    # ------------------------------------------------------------------

    async def log_scan(
        self,
        action: ScanAction,
        status: ScanLogStatus,
        *,
        source_id: str | None = None,
        asset_id: str | None = None,
        message: str | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Emit a structured event and append an audit row. Never raises."""
        getattr(log, _LOG_LEVELS[status])(
            "scan_event",
            action=action,
            status=status,
            source_id=source_id,
            asset_id=asset_id,
            url=url,
            message=message,
            details=details,
        )
        entry_details = dict(details or {})
        if url:
            entry_details.setdefault("url", url)
        await self._store.append_scan_log(
            ScanLog(
                source_id=source_id,
                asset_id=asset_id,
                action=action,
                status=status,
                message=message,
                details=entry_details,
            )
        )

    async def get_scan_logs(
        self,
        source_id: str | None = None,
        asset_id: str | None = None,
        action: ScanAction | None = None,
        limit: int = 100,
    ) -> list[ScanLog]:
        return await self._store.list_scan_logs(
            source_id=source_id, asset_id=asset_id, action=action, limit=limit
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_registry(self, *, active_only: bool = False) -> dict[str, Any]:
        """Return a JSON-serialisable snapshot of sources, assets and nodes."""
        sources: list[dict[str, Any]] = []
        for source in await self._store.list_sources():
            assets: list[dict[str, Any]] = []
            for asset in await self._store.list_assets(
                source_id=source.id, active=True if active_only else None
            ):
                nodes = await self._store.get_toc_nodes(asset.id)
                assets.append({
                    **asset.model_dump(mode="json"),
                    "toc_nodes": [
                        node.model_dump(mode="json", exclude={"children"}) for node in nodes
                    ],
                })
            sources.append({**source.model_dump(mode="json"), "assets": assets})
        return {"exported_at": _now().isoformat(), "sources": sources}
