"""Source adapters, one per family of content provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sourcereg.adapters.generic_html import GenericHtmlAdapter, GenericHtmlConfig
from sourcereg.adapters.mit_ocw import MitOcwAdapter
from sourcereg.adapters.openstax import OpenStaxAdapter
from sourcereg.adapters.sphinx_docs import SphinxDocsAdapter
from sourcereg.errors import ErrorCode, SourceRegError
from sourcereg.models.registry import SourceType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sourcereg.protocols import FetcherProtocol, SourceAdapter

__all__ = [
    "GenericHtmlAdapter",
    "GenericHtmlConfig",
    "MitOcwAdapter",
    "OpenStaxAdapter",
    "SphinxDocsAdapter",
    "build_adapters",
    "get_adapter",
]


def build_adapters(fetcher: FetcherProtocol) -> dict[SourceType, SourceAdapter]:
    """Create one adapter per source type, all sharing ``fetcher``.

    ``custom`` sources are served by the generic HTML adapter.
    """
    generic = GenericHtmlAdapter(fetcher)
    return {
        SourceType.OPENSTAX: OpenStaxAdapter(fetcher),
        SourceType.MIT_OCW: MitOcwAdapter(fetcher),
        SourceType.SPHINX_DOCS: SphinxDocsAdapter(fetcher),
        SourceType.GENERIC_HTML: generic,
        SourceType.CUSTOM: generic,
    }


def get_adapter(
    adapters: Mapping[SourceType, SourceAdapter], source_type: SourceType | str
) -> SourceAdapter:
    try:
        return adapters[SourceType(source_type)]
    except (KeyError, ValueError) as exc:
        raise SourceRegError(
            code=ErrorCode.INVALID_INPUT,
            message=f"No adapter registered for source type {source_type!r}",
            suggestion=f"Use one of: {', '.join(t.value for t in adapters)}",
        ) from exc
