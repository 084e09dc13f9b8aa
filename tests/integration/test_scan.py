"""Integration tests for the scan pipeline.

Runs RegistryService.scan_seed end to end over the in-memory store with a
scripted adapter, so discovery, validation, TOC mapping and persistence
all go through their real code paths.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from sourcereg.config import Settings
from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.registry import (
    AssetCandidate,
    RobotsStatus,
    ScanAction,
    ScanLogStatus,
    ScanStatus,
    SeedConfig,
    SourceType,
    ValidationResult,
)
from sourcereg.registry import RegistryService
from tests.conftest import FakeAdapter, make_toc

if TYPE_CHECKING:
    from sourcereg.store import SqliteRegistryStore
    from tests.conftest import FakeFetcher


class BrokenCatalogAdapter(FakeAdapter):
    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        raise RuntimeError("catalog offline")


class CrashingValidatorAdapter(FakeAdapter):
    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        if candidate.slug == "algebra":
            raise RuntimeError("validator crashed")
        return await super().validate(candidate, base_url)


@pytest.fixture()
def adapter(sample_candidates: list[AssetCandidate]) -> FakeAdapter:
    return FakeAdapter(
        candidates=list(sample_candidates),
        tocs={"algebra": make_toc("alg", chapters=1, sections=2)},
        failing={"biology"},
    )


def _service(
    store: SqliteRegistryStore,
    fetcher: FakeFetcher,
    adapter: FakeAdapter,
    settings: Settings | None = None,
) -> RegistryService:
    return RegistryService(
        store,
        fetcher,
        {SourceType.CUSTOM: adapter},
        settings or Settings(),
        allowlist=("example.org",),
    )


# ---------------------------------------------------------------------------
# Single seed
# ---------------------------------------------------------------------------


class TestScanSeed:
    async def test_full_scan(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)

        result = await service.scan_seed(sample_seed)

        assert result.assets == 2
        assert result.nodes == 3
        assert result.skipped == 0
        assert len(result.errors) == 1
        assert "Biology 2e" in result.errors[0]
        assert result.source.scan_status == ScanStatus.COMPLETED
        assert fake_fetcher.rate_limits == {"books.example.org": 12}

        source = await service.get_source_by_id(result.source.id)
        assert source is not None
        assert source.scan_error == result.errors[0]

        algebra = await store.get_asset_by_slug(result.source.id, "algebra")
        assert algebra is not None
        assert algebra.toc_extraction_success is True
        assert algebra.robots_status == RobotsStatus.ALLOWED
        assert algebra.license_name == "CC BY 4.0"
        assert algebra.active is False
        assert algebra.selector_hints is not None
        assert algebra.selector_hints.content == "main"
        assert algebra.toc_stats is not None
        assert algebra.toc_stats.total_nodes == 3
        nodes = await service.get_toc_nodes(algebra.id)
        assert [n.title for n in nodes] == ["Chapter 1", "1.1 Section 1", "1.2 Section 2"]
        assert nodes[2].parent_id == nodes[0].id

        biology = await store.get_asset_by_slug(result.source.id, "biology")
        assert biology is not None
        assert biology.toc_extraction_success is False
        assert biology.scan_status == ScanStatus.COMPLETED
        assert biology.validation_report is not None
        assert [e.code for e in biology.validation_report.errors] == ["TOC_MAPPING_FAILED"]

    async def test_scan_log_trail(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)
        result = await service.scan_seed(sample_seed)

        discover = await service.get_scan_logs(
            source_id=result.source.id, action=ScanAction.DISCOVER
        )
        assert [entry.status for entry in discover] == [
            ScanLogStatus.COMPLETED,
            ScanLogStatus.STARTED,
        ]
        assert discover[0].details == {"candidates": 2}
        assert discover[1].details == {"url": "https://books.example.org/catalog"}

    async def test_skip_scanned(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)
        await service.scan_seed(sample_seed)

        rerun = await service.scan_seed(sample_seed, skip_scanned=True)

        # Biology never produced a TOC, so it is scanned again
        assert rerun.skipped == 1
        assert rerun.assets == 1
        assert len(rerun.errors) == 1

    async def test_disallowed_domain_skipped(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        sample_seed: SeedConfig,
    ) -> None:
        adapter = FakeAdapter(
            candidates=[
                AssetCandidate(slug="offsite", title="Offsite", url="https://elsewhere.com/x"),
            ]
        )
        service = _service(store, fake_fetcher, adapter)

        result = await service.scan_seed(sample_seed)

        assert result.assets == 0
        assert result.errors == []
        assert await service.get_assets() == []

    async def test_auto_activate_and_rescan_deactivates(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        settings = Settings(registry={"auto_activate": True})
        service = _service(store, fake_fetcher, adapter, settings)

        result = await service.scan_seed(sample_seed)
        algebra = await store.get_asset_by_slug(result.source.id, "algebra")
        assert algebra is not None
        assert algebra.active is True

        adapter.robots_status = RobotsStatus.DISALLOWED
        await service.scan_seed(sample_seed)
        algebra = await store.get_asset_by_slug(result.source.id, "algebra")
        assert algebra is not None
        assert algebra.active is False
        assert algebra.robots_status == RobotsStatus.DISALLOWED

    async def test_seed_failure_marks_source_failed(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, BrokenCatalogAdapter())

        with pytest.raises(RuntimeError, match="catalog offline"):
            await service.scan_seed(sample_seed)

        source = await store.get_source_by_name(sample_seed.name)
        assert source is not None
        assert source.scan_status == ScanStatus.FAILED
        assert source.scan_error == "catalog offline"

    async def test_candidate_failure_marks_asset_failed(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        sample_candidates: list[AssetCandidate],
        sample_seed: SeedConfig,
    ) -> None:
        adapter = CrashingValidatorAdapter(
            candidates=list(sample_candidates),
            tocs={"biology": make_toc("bio", chapters=1, sections=1)},
        )
        service = _service(store, fake_fetcher, adapter)

        result = await service.scan_seed(sample_seed)

        assert result.errors == ["Error processing College Algebra: validator crashed"]
        assert result.assets == 1
        assert result.source.scan_status == ScanStatus.COMPLETED

        algebra = await store.get_asset_by_slug(result.source.id, "algebra")
        assert algebra is not None
        assert algebra.scan_status == ScanStatus.FAILED
        assert algebra.scan_error == "validator crashed"
        assert algebra.active is False

        biology = await store.get_asset_by_slug(result.source.id, "biology")
        assert biology is not None
        assert biology.scan_status == ScanStatus.COMPLETED

        [entry] = await service.get_scan_logs(asset_id=algebra.id, action=ScanAction.ERROR)
        assert entry.status == ScanLogStatus.FAILED
        assert entry.source_id == result.source.id

    async def test_unknown_adapter_type(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)
        seed = sample_seed.model_copy(update={"type": SourceType.OPENSTAX})

        with pytest.raises(SourceRegError) as exc_info:
            await service.scan_seed(seed)
        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    async def test_rescan_by_source_id(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)
        first = await service.scan_seed(sample_seed)

        again = await service.scan_source_by_id(first.source.id)

        assert again.source.id == first.source.id
        assert adapter.discover_calls == 2


# ---------------------------------------------------------------------------
# All seeds
# ---------------------------------------------------------------------------


class TestScanAllSeeds:
    async def test_collects_seed_failures(
        self,
        store: SqliteRegistryStore,
        fake_fetcher: FakeFetcher,
        adapter: FakeAdapter,
        sample_seed: SeedConfig,
    ) -> None:
        service = _service(store, fake_fetcher, adapter)
        broken = sample_seed.model_copy(
            update={"name": "Broken Books", "type": SourceType.GENERIC_HTML}
        )

        totals = await service.scan_all_seeds([sample_seed, broken])

        assert totals.sources == 1
        assert totals.assets == 2
        assert totals.nodes == 3
        assert len(totals.errors) == 2
        assert totals.errors[0].startswith("Example Books: ")
        assert totals.errors[1].startswith("Broken Books: No adapter registered")
