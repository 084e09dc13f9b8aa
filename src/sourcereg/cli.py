"""``sourcereg-scan``: scan seeds, inspect the registry, export it."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from sourcereg.app import lifespan, setup_logging
from sourcereg.config import Settings
from sourcereg.errors import SourceRegError
from sourcereg.seeds import SEED_SOURCES, get_seed_by_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sourcereg.models.registry import BatchScanResult, ScanResult
    from sourcereg.state import AppState

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sourcereg-scan",
        description="Scan approved educational content sources into the registry.",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--seed", metavar="NAME", help="Scan one seed by name")
    target.add_argument("--source-id", metavar="ID", help="Rescan an existing source by id")
    target.add_argument("--list-seeds", action="store_true", help="List configured seeds")
    target.add_argument("--list-sources", action="store_true", help="List registered sources")
    target.add_argument("--list-assets", action="store_true", help="List registered assets")
    target.add_argument(
        "--discover", metavar="TOPIC", help="Find or create the best source for a topic"
    )
    parser.add_argument(
        "--skip-scanned",
        action="store_true",
        help="Skip assets already scanned with a successful TOC",
    )
    parser.add_argument(
        "--export",
        metavar="PATH",
        type=Path,
        help="Write the registry as JSON to PATH after any scan",
    )
    parser.add_argument(
        "--no-scan",
        action="store_true",
        help="Do not scan; combine with --export to export only",
    )
    return parser


def _print_scan_result(result: ScanResult) -> None:
    print(f"{result.source.name}: {result.source.scan_status}")
    print(f"  assets:  {result.assets}")
    print(f"  nodes:   {result.nodes}")
    print(f"  skipped: {result.skipped}")
    for error in result.errors:
        print(f"  error:   {error}")


def _print_batch_result(result: BatchScanResult) -> None:
    print(f"sources: {result.sources}")
    print(f"assets:  {result.assets}")
    print(f"nodes:   {result.nodes}")
    print(f"skipped: {result.skipped}")
    for error in result.errors:
        print(f"error:   {error}")


def _list_seeds() -> None:
    for seed in SEED_SOURCES:
        print(f"{seed.name} [{seed.type}] {seed.seed_url}")
        if seed.description:
            print(f"  {seed.description}")


async def _list_sources(state: AppState) -> None:
    for source in await state.registry.get_sources():
        print(f"{source.id}  {source.name} [{source.type}] {source.scan_status}")


async def _list_assets(state: AppState) -> None:
    for asset in await state.registry.get_assets():
        flag = "active" if asset.active else "inactive"
        stats = asset.toc_stats.total_nodes if asset.toc_stats else 0
        print(f"{asset.id}  {asset.slug}  {flag}  nodes={stats}  {asset.title}")


async def _export(state: AppState, path: Path) -> None:
    snapshot = await state.registry.export_registry()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
    print(f"Exported {len(snapshot['sources'])} sources to {path}")


async def _discover(state: AppState, topic: str) -> int:
    found = await state.discovery.discover(topic)
    if found is None:
        print(f"No source found for {topic!r}")
        return 1
    origin = "web search" if found.from_web_search else found.provider
    print(f"{found.asset.title} ({origin}), {len(found.toc)} TOC nodes")
    for node in found.toc[:20]:
        print(f"  {'  ' * node.depth}{node.title}")
    return 0


async def run(args: argparse.Namespace, settings: Settings) -> int:
    if args.list_seeds:
        _list_seeds()
        return 0

    async with lifespan(settings) as state:
        if args.list_sources:
            await _list_sources(state)
            return 0
        if args.list_assets:
            await _list_assets(state)
            return 0
        if args.discover:
            return await _discover(state, args.discover)

        exit_code = 0
        skip = True if args.skip_scanned else None
        if not args.no_scan:
            if args.seed:
                seed = get_seed_by_name(args.seed)
                if seed is None:
                    names = ", ".join(s.name for s in SEED_SOURCES)
                    print(f"Unknown seed {args.seed!r}. Available: {names}", file=sys.stderr)
                    return 2
                try:
                    _print_scan_result(await state.registry.scan_seed(seed, skip_scanned=skip))
                except SourceRegError:
                    raise
                except Exception as exc:
                    print(f"Scan of {seed.name} failed: {exc}", file=sys.stderr)
                    return 1
            elif args.source_id:
                try:
                    result = await state.registry.scan_source_by_id(
                        args.source_id, skip_scanned=skip
                    )
                except SourceRegError:
                    raise
                except Exception as exc:
                    print(f"Scan of source {args.source_id} failed: {exc}", file=sys.stderr)
                    return 1
                _print_scan_result(result)
            else:
                batch = await state.registry.scan_all_seeds(skip_scanned=skip)
                _print_batch_result(batch)
                exit_code = 1 if batch.errors else 0

        if args.export is not None:
            await _export(state, args.export)
        return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    try:
        return asyncio.run(run(args, settings))
    except SourceRegError as exc:
        log.error("cli_error", code=exc.code, message=exc.message)
        print(f"Error: {exc.message}", file=sys.stderr)
        if exc.suggestion:
            print(exc.suggestion, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
