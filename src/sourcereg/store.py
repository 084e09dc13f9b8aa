"""SQLite registry store implementing RegistryStoreProtocol.

Structured fields (configs, reports, metadata) are stored as JSON text and
validated back into pydantic models on read. Database failures are raised as
``SourceRegError(STORE_ERROR)``, with one exception: ``append_scan_log``
logs and swallows, because the audit trail must never interrupt a scan.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import aiosqlite
import structlog

from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.registry import Asset, ScanLog, Source, TocNode

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic import BaseModel

    from sourcereg.models.registry import ScanAction

log = structlog.get_logger()

M = TypeVar("M", bound="BaseModel")

_CREATE_SOURCES_TABLE = """
CREATE TABLE IF NOT EXISTS sources (
    id                    TEXT PRIMARY KEY,
    name                  TEXT NOT NULL UNIQUE,
    type                  TEXT NOT NULL,
    base_url              TEXT NOT NULL,
    seed_url              TEXT,
    description           TEXT,
    license_name          TEXT,
    license_url           TEXT,
    robots_status         TEXT NOT NULL,
    rate_limit_per_minute INTEGER NOT NULL,
    scan_status           TEXT NOT NULL,
    last_scan_at          TEXT,
    scan_error            TEXT,
    config                TEXT NOT NULL DEFAULT '{}',
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
)
"""

_CREATE_ASSETS_TABLE = """
CREATE TABLE IF NOT EXISTS assets (
    id                     TEXT PRIMARY KEY,
    source_id              TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    slug                   TEXT NOT NULL,
    title                  TEXT NOT NULL,
    url                    TEXT NOT NULL,
    description            TEXT,
    version                TEXT,
    license_name           TEXT,
    license_url            TEXT,
    license_confidence     REAL,
    robots_status          TEXT NOT NULL,
    active                 INTEGER NOT NULL DEFAULT 0,
    toc_extraction_success INTEGER NOT NULL DEFAULT 0,
    toc_stats              TEXT,
    scan_status            TEXT NOT NULL,
    last_scan_at           TEXT,
    scan_error             TEXT,
    validation_report      TEXT,
    selector_hints         TEXT,
    metadata               TEXT NOT NULL DEFAULT '{}',
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL,
    UNIQUE (source_id, slug)
)
"""

_CREATE_NODES_TABLE = """
CREATE TABLE IF NOT EXISTS toc_nodes (
    id         TEXT PRIMARY KEY,
    asset_id   TEXT NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    parent_id  TEXT,
    slug       TEXT NOT NULL,
    title      TEXT NOT NULL,
    url        TEXT,
    node_type  TEXT NOT NULL,
    depth      INTEGER NOT NULL,
    sort_order INTEGER NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}'
)
"""

_CREATE_SCAN_LOGS_TABLE = """
CREATE TABLE IF NOT EXISTS scan_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id  TEXT,
    asset_id   TEXT,
    action     TEXT NOT NULL,
    status     TEXT NOT NULL,
    message    TEXT,
    details    TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
)
"""

_CREATE_NODES_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_nodes_asset_order ON toc_nodes(asset_id, sort_order)"
)
_CREATE_LOGS_INDEX = "CREATE INDEX IF NOT EXISTS idx_logs_created ON scan_logs(created_at)"

_SOURCE_COLUMNS = (
    "id", "name", "type", "base_url", "seed_url", "description", "license_name",
    "license_url", "robots_status", "rate_limit_per_minute", "scan_status",
    "last_scan_at", "scan_error", "config", "created_at", "updated_at",
)
_ASSET_COLUMNS = (
    "id", "source_id", "slug", "title", "url", "description", "version",
    "license_name", "license_url", "license_confidence", "robots_status", "active",
    "toc_extraction_success", "toc_stats", "scan_status", "last_scan_at", "scan_error",
    "validation_report", "selector_hints", "metadata", "created_at", "updated_at",
)
_NODE_COLUMNS = (
    "id", "asset_id", "parent_id", "slug", "title", "url", "node_type", "depth",
    "sort_order", "metadata",
)
_LOG_COLUMNS = (
    "source_id", "asset_id", "action", "status", "message", "details", "created_at",
)

_JSON_FIELDS = frozenset(
    {"config", "toc_stats", "validation_report", "selector_hints", "metadata", "details"}
)


def _to_row(model: BaseModel, columns: Sequence[str]) -> tuple[Any, ...]:
    data = model.model_dump(mode="json")
    values: list[Any] = []
    for column in columns:
        value = data.get(column)
        if column in _JSON_FIELDS and value is not None:
            value = json.dumps(value)
        values.append(value)
    return tuple(values)


def _from_row(model_cls: type[M], row: dict[str, Any]) -> M:
    data = dict(row)
    for key in _JSON_FIELDS.intersection(data):
        if data[key] is not None:
            data[key] = json.loads(data[key])
    return model_cls.model_validate(data)


def _placeholders(columns: Sequence[str]) -> str:
    return ", ".join("?" for _ in columns)


class SqliteRegistryStore:
    """aiosqlite-backed registry store implementing RegistryStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute(_CREATE_SOURCES_TABLE)
        await self._db.execute(_CREATE_ASSETS_TABLE)
        await self._db.execute(_CREATE_NODES_TABLE)
        await self._db.execute(_CREATE_SCAN_LOGS_TABLE)
        await self._db.execute(_CREATE_NODES_INDEX)
        await self._db.execute(_CREATE_LOGS_INDEX)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            cursor = await self._db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
            columns = [column[0] for column in cursor.description]
        except aiosqlite.Error as exc:
            log.error("store_read_error", exc_info=True)
            raise SourceRegError(
                code=ErrorCode.STORE_ERROR,
                message=f"Registry store read failed: {exc}",
                suggestion="Check that the registry database is readable.",
                recoverable=True,
            ) from exc
        return [dict(zip(columns, row, strict=True)) for row in rows]

    async def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    async def _write(self, statements: Sequence[tuple[str, Sequence[Any]]]) -> None:
        try:
            for sql, params in statements:
                await self._db.execute(sql, tuple(params))
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self._db.rollback()
            log.error("store_write_error", exc_info=True)
            raise SourceRegError(
                code=ErrorCode.STORE_ERROR,
                message=f"Registry store write failed: {exc}",
                suggestion="Check that the registry database is writable.",
                recoverable=True,
            ) from exc

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def get_source_by_name(self, name: str) -> Source | None:
        row = await self._fetchone(
            f"SELECT {', '.join(_SOURCE_COLUMNS)} FROM sources WHERE name = ?", (name,)
        )
        return _from_row(Source, row) if row else None

    async def get_source(self, source_id: str) -> Source | None:
        row = await self._fetchone(
            f"SELECT {', '.join(_SOURCE_COLUMNS)} FROM sources WHERE id = ?", (source_id,)
        )
        return _from_row(Source, row) if row else None

    async def list_sources(self) -> list[Source]:
        rows = await self._fetchall(
            f"SELECT {', '.join(_SOURCE_COLUMNS)} FROM sources ORDER BY name"
        )
        return [_from_row(Source, row) for row in rows]

    async def insert_source(self, source: Source) -> Source:
        await self._write([(
            f"INSERT INTO sources ({', '.join(_SOURCE_COLUMNS)}) "
            f"VALUES ({_placeholders(_SOURCE_COLUMNS)})",
            _to_row(source, _SOURCE_COLUMNS),
        )])
        return source

    async def update_source(self, source_id: str, **fields: Any) -> Source:
        existing = await self.get_source(source_id)
        if existing is None:
            raise SourceRegError(
                code=ErrorCode.SOURCE_NOT_FOUND,
                message=f"Source not found: {source_id}",
                suggestion="Scan the seed first so the source is registered.",
            )
        updated = Source.model_validate(
            {**existing.model_dump(), **fields, "updated_at": datetime.now(UTC)}
        )
        assignments = ", ".join(f"{column} = ?" for column in _SOURCE_COLUMNS[1:])
        await self._write([(
            f"UPDATE sources SET {assignments} WHERE id = ?",
            (*_to_row(updated, _SOURCE_COLUMNS[1:]), source_id),
        )])
        return updated

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def get_asset_by_slug(self, source_id: str, slug: str) -> Asset | None:
        row = await self._fetchone(
            f"SELECT {', '.join(_ASSET_COLUMNS)} FROM assets WHERE source_id = ? AND slug = ?",
            (source_id, slug),
        )
        return _from_row(Asset, row) if row else None

    async def get_asset(self, asset_id: str) -> Asset | None:
        row = await self._fetchone(
            f"SELECT {', '.join(_ASSET_COLUMNS)} FROM assets WHERE id = ?", (asset_id,)
        )
        return _from_row(Asset, row) if row else None

    async def list_assets(
        self, source_id: str | None = None, active: bool | None = None
    ) -> list[Asset]:
        clauses: list[str] = []
        params: list[Any] = []
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        if active is not None:
            clauses.append("active = ?")
            params.append(int(active))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"SELECT {', '.join(_ASSET_COLUMNS)} FROM assets{where} ORDER BY title", params
        )
        return [_from_row(Asset, row) for row in rows]

    async def insert_asset(self, asset: Asset) -> Asset:
        await self._write([(
            f"INSERT INTO assets ({', '.join(_ASSET_COLUMNS)}) "
            f"VALUES ({_placeholders(_ASSET_COLUMNS)})",
            _to_row(asset, _ASSET_COLUMNS),
        )])
        return asset

    async def update_asset(self, asset_id: str, **fields: Any) -> Asset:
        existing = await self.get_asset(asset_id)
        if existing is None:
            raise SourceRegError(
                code=ErrorCode.ASSET_NOT_FOUND,
                message=f"Asset not found: {asset_id}",
                suggestion="Check the asset id, or rescan its source.",
            )
        updated = Asset.model_validate(
            {**existing.model_dump(), **fields, "updated_at": datetime.now(UTC)}
        )
        assignments = ", ".join(f"{column} = ?" for column in _ASSET_COLUMNS[1:])
        await self._write([(
            f"UPDATE assets SET {assignments} WHERE id = ?",
            (*_to_row(updated, _ASSET_COLUMNS[1:]), asset_id),
        )])
        return updated

    # ------------------------------------------------------------------
    # TOC nodes
    # ------------------------------------------------------------------

    async def replace_toc_nodes(
        self, asset_id: str, nodes: Sequence[TocNode], batch_size: int = 100
    ) -> None:
        """Delete the asset's nodes, then insert ``nodes`` in batches."""
        insert_sql = (
            f"INSERT INTO toc_nodes ({', '.join(_NODE_COLUMNS)}) "
            f"VALUES ({_placeholders(_NODE_COLUMNS)})"
        )
        rows = [_to_row(node, _NODE_COLUMNS) for node in nodes]
        try:
            await self._db.execute("DELETE FROM toc_nodes WHERE asset_id = ?", (asset_id,))
            for start in range(0, len(rows), batch_size):
                await self._db.executemany(insert_sql, rows[start : start + batch_size])
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self._db.rollback()
            log.error("store_write_error", asset_id=asset_id, exc_info=True)
            raise SourceRegError(
                code=ErrorCode.STORE_ERROR,
                message=f"Failed to save TOC nodes for asset {asset_id}: {exc}",
                suggestion="Rescan the asset once the database is writable.",
                recoverable=True,
            ) from exc

    async def get_toc_nodes(self, asset_id: str) -> list[TocNode]:
        rows = await self._fetchall(
            f"SELECT {', '.join(_NODE_COLUMNS)} FROM toc_nodes "
            "WHERE asset_id = ? ORDER BY sort_order",
            (asset_id,),
        )
        return [_from_row(TocNode, row) for row in rows]

    async def get_nodes_by_ids(self, node_ids: Sequence[str]) -> list[TocNode]:
        if not node_ids:
            return []
        rows = await self._fetchall(
            f"SELECT {', '.join(_NODE_COLUMNS)} FROM toc_nodes "
            f"WHERE id IN ({_placeholders(node_ids)}) ORDER BY sort_order",
            node_ids,
        )
        return [_from_row(TocNode, row) for row in rows]

    # ------------------------------------------------------------------
    # Scan logs
    # ------------------------------------------------------------------

    async def append_scan_log(self, entry: ScanLog) -> None:
        """Append an audit row. Non-fatal on failure."""
        try:
            await self._db.execute(
                f"INSERT INTO scan_logs ({', '.join(_LOG_COLUMNS)}) "
                f"VALUES ({_placeholders(_LOG_COLUMNS)})",
                _to_row(entry, _LOG_COLUMNS),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning(
                "scan_log_write_error",
                action=entry.action,
                status=entry.status,
                exc_info=True,
            )

    async def list_scan_logs(
        self,
        source_id: str | None = None,
        asset_id: str | None = None,
        action: ScanAction | None = None,
        limit: int = 100,
    ) -> list[ScanLog]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("source_id", source_id), ("asset_id", asset_id), ("action", action)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(str(value))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"SELECT id, {', '.join(_LOG_COLUMNS)} FROM scan_logs{where} "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (*params, limit),
        )
        return [_from_row(ScanLog, row) for row in rows]
