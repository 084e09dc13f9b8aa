from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


class SourceType(StrEnum):
    OPENSTAX = "openstax"
    MIT_OCW = "mit_ocw"
    SPHINX_DOCS = "sphinx_docs"
    GENERIC_HTML = "generic_html"
    CUSTOM = "custom"


class RobotsStatus(StrEnum):
    ALLOWED = "allowed"
    DISALLOWED = "disallowed"
    PARTIAL = "partial"
    UNKNOWN = "unknown"
    NEEDS_REVIEW = "needs_review"


class ScanStatus(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeType(StrEnum):
    ROOT = "root"
    PART = "part"
    CHAPTER = "chapter"
    SECTION = "section"
    SUBSECTION = "subsection"
    PAGE = "page"
    OTHER = "other"


class ScanAction(StrEnum):
    DISCOVER = "discover"
    VALIDATE = "validate"
    MAP_TOC = "map_toc"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    ERROR = "error"


class ScanLogStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Configuration records
# ---------------------------------------------------------------------------


class SeedConfig(BaseModel):
    """A statically approved provider entry point."""

    name: str
    type: SourceType
    base_url: str
    seed_url: str
    description: str | None = None
    rate_limit_per_minute: int | None = None
    config: dict[str, Any] = {}


class SelectorHints(BaseModel):
    """CSS selectors that tell content retrieval where the text lives."""

    content: str | None = None
    title: str | None = None
    toc: str | None = None
    exclude: list[str] = []


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}


class LicenseInfo(BaseModel):
    name: str | None = None
    url: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ValidationResult(BaseModel):
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    robots_status: RobotsStatus = RobotsStatus.UNKNOWN
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []


class TocStats(BaseModel):
    chapters: int = 0
    sections: int = 0
    total_nodes: int = 0
    depth: int = 0


class ValidationReport(ValidationResult):
    """Validation result as persisted on an Asset after a scan."""

    license_detected: bool = False
    toc_extraction_success: bool = False
    toc_stats: TocStats | None = None
    validated_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Registry records
# ---------------------------------------------------------------------------


class Source(BaseModel):
    id: str
    name: str
    type: SourceType
    base_url: str
    seed_url: str | None = None
    description: str | None = None
    license_name: str | None = None
    license_url: str | None = None
    robots_status: RobotsStatus = RobotsStatus.UNKNOWN
    rate_limit_per_minute: int = 30
    scan_status: ScanStatus = ScanStatus.IDLE
    last_scan_at: datetime | None = None
    scan_error: str | None = None
    config: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class AssetCandidate(BaseModel):
    """An asset as found by an adapter, before it is persisted."""

    slug: str
    title: str
    url: str
    description: str | None = None
    version: str | None = None
    metadata: dict[str, Any] = {}


class Asset(BaseModel):
    id: str
    source_id: str
    slug: str
    title: str
    url: str
    description: str | None = None
    version: str | None = None
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float | None = None
    robots_status: RobotsStatus = RobotsStatus.UNKNOWN
    active: bool = False
    toc_extraction_success: bool = False
    toc_stats: TocStats | None = None
    scan_status: ScanStatus = ScanStatus.IDLE
    last_scan_at: datetime | None = None
    scan_error: str | None = None
    validation_report: ValidationReport | None = None
    selector_hints: SelectorHints | None = None
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def to_candidate(self) -> AssetCandidate:
        return AssetCandidate(
            slug=self.slug,
            title=self.title,
            url=self.url,
            description=self.description,
            version=self.version,
            metadata=self.metadata,
        )


class TocNode(BaseModel):
    """One table-of-contents entry.

    Adapters build trees through ``children``; the persisted form is flat
    with ``children`` empty and linkage carried by ``parent_id``.
    """

    id: str | None = None
    asset_id: str | None = None
    parent_id: str | None = None
    slug: str
    title: str
    url: str | None = None
    node_type: NodeType = NodeType.SECTION
    depth: int = Field(default=0, ge=0)
    sort_order: int = 0
    metadata: dict[str, Any] = {}
    children: list[TocNode] = []


class ScanLog(BaseModel):
    id: int | None = None
    source_id: str | None = None
    asset_id: str | None = None
    action: ScanAction
    status: ScanLogStatus
    message: str | None = None
    details: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=_now)


class ScanResult(BaseModel):
    source: Source
    assets: int = 0
    nodes: int = 0
    skipped: int = 0
    errors: list[str] = []


class BatchScanResult(BaseModel):
    sources: int = 0
    assets: int = 0
    nodes: int = 0
    skipped: int = 0
    errors: list[str] = []
