"""Composition root: logging setup and the application lifespan."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from sourcereg import __version__
from sourcereg.adapters import build_adapters
from sourcereg.config import Settings
from sourcereg.discovery import TopicDiscovery
from sourcereg.fetcher import Fetcher, build_http_client
from sourcereg.registry import RegistryService
from sourcereg.retrieval import ContentRetriever
from sourcereg.state import AppState
from sourcereg.store import SqliteRegistryStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries CLI output and exports
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources."""
    settings = settings or Settings()

    log.info("app_starting", version=__version__, db_path=settings.store.db_path)

    db_path = settings.store.db_path
    if db_path != ":memory:":
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(path)
    db = await aiosqlite.connect(db_path)
    store = SqliteRegistryStore(db)
    await store.init_db()

    http_client = build_http_client(settings.fetcher)
    fetcher = Fetcher(http_client, settings.fetcher)
    adapters = build_adapters(fetcher)
    registry = RegistryService(store, fetcher, adapters, settings)

    state = AppState(
        settings=settings,
        http_client=http_client,
        fetcher=fetcher,
        store=store,
        registry=registry,
        retriever=ContentRetriever(fetcher, store, settings.retrieval),
        discovery=TopicDiscovery.build(registry, adapters, fetcher, settings.discovery),
        adapters=adapters,
    )

    try:
        yield state
    finally:
        fetcher.clear_caches()
        await http_client.aclose()
        await db.close()
        log.info("app_stopped")
