"""Unit tests for sourcereg.registry.RegistryService lifecycle operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.fetch import RobotsResult
from sourcereg.models.registry import (
    AssetCandidate,
    RobotsStatus,
    ScanAction,
    ScanStatus,
    SeedConfig,
    SourceType,
)
from tests.conftest import make_toc

if TYPE_CHECKING:
    from sourcereg.registry import RegistryService
    from tests.conftest import FakeFetcher


# ---------------------------------------------------------------------------
# Sources and assets
# ---------------------------------------------------------------------------


class TestSources:
    async def test_get_or_create_is_idempotent(
        self, registry: RegistryService, sample_seed: SeedConfig
    ) -> None:
        first = await registry.get_or_create_source(sample_seed)
        second = await registry.get_or_create_source(sample_seed)
        assert first.id == second.id
        assert first.rate_limit_per_minute == 12
        assert first.scan_status == ScanStatus.IDLE
        assert [s.name for s in await registry.get_sources()] == ["Example Books"]

    async def test_default_rate_when_seed_has_none(self, registry: RegistryService) -> None:
        seed = SeedConfig(
            name="No Rate",
            type=SourceType.CUSTOM,
            base_url="https://x.example.org",
            seed_url="https://x.example.org/",
        )
        source = await registry.get_or_create_source(seed)
        assert source.rate_limit_per_minute == 30

    async def test_scan_unknown_source(self, registry: RegistryService) -> None:
        with pytest.raises(SourceRegError) as exc_info:
            await registry.scan_source_by_id("missing")
        assert exc_info.value.code == ErrorCode.SOURCE_NOT_FOUND


class TestAssets:
    async def test_created_inactive_and_reused(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])
        again = await registry.get_or_create_asset(source.id, sample_candidates[0])
        assert asset.id == again.id
        assert asset.active is False
        assert asset.robots_status == RobotsStatus.UNKNOWN
        assert asset.metadata == {"subjects": ["Math"]}


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


class TestActivation:
    async def test_unknown_asset(self, registry: RegistryService) -> None:
        with pytest.raises(SourceRegError) as exc_info:
            await registry.activate_asset("missing")
        assert exc_info.value.code == ErrorCode.ASSET_NOT_FOUND

    async def test_blocked_without_toc(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])
        await registry.update_asset(asset.id, robots_status=RobotsStatus.ALLOWED)
        with pytest.raises(SourceRegError) as exc_info:
            await registry.activate_asset(asset.id)
        assert exc_info.value.code == ErrorCode.ACTIVATION_BLOCKED
        assert exc_info.value.recoverable is True

    async def test_blocked_by_robots(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])
        await registry.update_asset(
            asset.id, robots_status=RobotsStatus.DISALLOWED, toc_extraction_success=True
        )
        with pytest.raises(SourceRegError) as exc_info:
            await registry.activate_asset(asset.id)
        assert exc_info.value.code == ErrorCode.ACTIVATION_BLOCKED

    async def test_activate_and_deactivate_logged(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])
        await registry.update_asset(
            asset.id, robots_status=RobotsStatus.ALLOWED, toc_extraction_success=True
        )

        activated = await registry.activate_asset(asset.id)
        assert activated.active is True
        assert [a.id for a in await registry.get_assets(active=True)] == [asset.id]

        deactivated = await registry.deactivate_asset(asset.id)
        assert deactivated.active is False

        logs = await registry.get_scan_logs(asset_id=asset.id)
        assert [entry.action for entry in logs] == [ScanAction.DEACTIVATE, ScanAction.ACTIVATE]


# ---------------------------------------------------------------------------
# TOC nodes
# ---------------------------------------------------------------------------


class TestTocNodes:
    async def test_save_links_parents_and_orders(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])

        saved = await registry.save_toc_nodes(asset.id, make_toc(chapters=2, sections=1))

        assert [n.sort_order for n in saved] == [0, 1, 2, 3]
        assert saved[1].parent_id == saved[0].id
        assert saved[2].parent_id is None
        assert saved[3].parent_id == saved[2].id
        stored = await registry.get_toc_nodes(asset.id)
        assert [n.id for n in stored] == [n.id for n in saved]
        assert all(n.asset_id == asset.id for n in stored)

    async def test_store_live_toc_activates(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])

        saved = await registry.store_live_toc(asset, make_toc())

        assert len(saved) == 3
        reloaded = await registry.get_asset_by_id(asset.id)
        assert reloaded is not None
        assert reloaded.active is True
        assert reloaded.robots_status == RobotsStatus.ALLOWED
        assert reloaded.toc_stats is not None
        assert reloaded.toc_stats.chapters == 1
        assert reloaded.toc_stats.sections == 2

    async def test_store_live_toc_respects_robots(
        self,
        registry: RegistryService,
        fake_fetcher: FakeFetcher,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        fake_fetcher.robots["https://books.example.org"] = RobotsResult(allowed=False)
        source = await registry.get_or_create_source(sample_seed)
        asset = await registry.get_or_create_asset(source.id, sample_candidates[0])

        await registry.store_live_toc(asset, make_toc())

        reloaded = await registry.get_asset_by_id(asset.id)
        assert reloaded is not None
        assert reloaded.active is False
        assert reloaded.robots_status == RobotsStatus.DISALLOWED
        assert reloaded.toc_extraction_success is True


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestExport:
    async def test_nested_snapshot(
        self,
        registry: RegistryService,
        sample_seed: SeedConfig,
        sample_candidates: list[AssetCandidate],
    ) -> None:
        source = await registry.get_or_create_source(sample_seed)
        algebra = await registry.get_or_create_asset(source.id, sample_candidates[0])
        await registry.get_or_create_asset(source.id, sample_candidates[1])
        await registry.store_live_toc(algebra, make_toc())

        snapshot = await registry.export_registry()
        [exported] = snapshot["sources"]
        assert exported["name"] == "Example Books"
        assert [a["slug"] for a in exported["assets"]] == ["biology", "algebra"]
        algebra_entry = exported["assets"][1]
        assert len(algebra_entry["toc_nodes"]) == 3
        assert "children" not in algebra_entry["toc_nodes"][0]

        active_only = await registry.export_registry(active_only=True)
        assert [a["slug"] for a in active_only["sources"][0]["assets"]] == ["algebra"]
