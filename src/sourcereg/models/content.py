from __future__ import annotations

from pydantic import BaseModel


class ExtractedHeading(BaseModel):
    level: int
    text: str
    id: str | None = None


class ExtractedFigure(BaseModel):
    url: str
    alt: str | None = None
    caption: str | None = None


class ExtractedContent(BaseModel):
    """Cleaned page content for one TOC node."""

    node_id: str | None = None
    title: str
    url: str
    text: str
    headings: list[ExtractedHeading] = []
    figures: list[ExtractedFigure] = []
    section_path: list[str] = []
    source_title: str | None = None


class Citation(BaseModel):
    source_title: str
    section_title: str
    section_path: list[str] = []
    url: str | None = None
    node_id: str | None = None
