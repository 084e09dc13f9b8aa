from __future__ import annotations

from sourcereg.models.content import (
    Citation,
    ExtractedContent,
    ExtractedFigure,
    ExtractedHeading,
)
from sourcereg.models.discovery import (
    DiscoveredContent,
    DocMatch,
    DocSource,
    TocNodeSummary,
    TopicMatch,
    WebSearchHit,
)
from sourcereg.models.fetch import FetchResult, RobotsResult
from sourcereg.models.registry import (
    Asset,
    AssetCandidate,
    BatchScanResult,
    LicenseInfo,
    NodeType,
    RobotsStatus,
    ScanAction,
    ScanLog,
    ScanLogStatus,
    ScanResult,
    ScanStatus,
    SeedConfig,
    SelectorHints,
    Source,
    SourceType,
    TocNode,
    TocStats,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
)

__all__ = [
    # fetch
    "FetchResult",
    "RobotsResult",
    # registry
    "Asset",
    "AssetCandidate",
    "BatchScanResult",
    "LicenseInfo",
    "NodeType",
    "RobotsStatus",
    "ScanAction",
    "ScanLog",
    "ScanLogStatus",
    "ScanResult",
    "ScanStatus",
    "SeedConfig",
    "SelectorHints",
    "Source",
    "SourceType",
    "TocNode",
    "TocStats",
    "ValidationIssue",
    "ValidationReport",
    "ValidationResult",
    # discovery
    "DiscoveredContent",
    "DocMatch",
    "DocSource",
    "TocNodeSummary",
    "TopicMatch",
    "WebSearchHit",
    # content
    "Citation",
    "ExtractedContent",
    "ExtractedFigure",
    "ExtractedHeading",
]
