"""Application state container.

AppState is created once by ``sourcereg.app.lifespan`` and handed to the
CLI (or any other host). It owns the long-lived collaborators: one HTTP
client, one fetcher, one store connection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from sourcereg.config import Settings
    from sourcereg.discovery import TopicDiscovery
    from sourcereg.models.registry import SourceType
    from sourcereg.protocols import FetcherProtocol, RegistryStoreProtocol, SourceAdapter
    from sourcereg.registry import RegistryService
    from sourcereg.retrieval import ContentRetriever


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    http_client: httpx.AsyncClient
    fetcher: FetcherProtocol
    store: RegistryStoreProtocol
    registry: RegistryService
    retriever: ContentRetriever
    discovery: TopicDiscovery
    adapters: dict[SourceType, SourceAdapter] = field(default_factory=dict)
