from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

from sourcereg.models.registry import Asset, AssetCandidate, NodeType


class TopicMatch(BaseModel):
    """A candidate scored against a free-text topic."""

    candidate: AssetCandidate
    score: float
    matched_terms: list[str] = []


class DocSource(BaseModel):
    """A curated technical documentation site."""

    name: str
    slug: str
    base_url: str
    doc_url: str
    type: Literal["sphinx", "generic"] = "generic"
    keywords: list[str] = []
    description: str = ""
    license: str | None = None
    license_url: str | None = None


class DocMatch(BaseModel):
    doc: DocSource
    score: float
    matched_terms: list[str] = []


class WebSearchHit(BaseModel):
    title: str
    url: str
    snippet: str = ""


class TocNodeSummary(BaseModel):
    """Compact view of a stored node, for callers that only need the outline."""

    node_id: str
    title: str
    order: int
    depth: int
    node_type: NodeType


class DiscoveredContent(BaseModel):
    asset: Asset
    toc: list[TocNodeSummary] = []
    provider: str
    score: float | None = None
    from_web_search: bool = False
    metadata: dict[str, Any] = {}
