"""Connector registry keyed by source kind."""

from __future__ import annotations

from typing import Any, Dict, Type

from cti_ingest.models.domain import SourceKind

from .advisory import AdvisoryConnector
from .base import BaseConnector, ConnectorError, PermanentError, TransientError
from .generic_api import GenericAPIConnector
from .rss import RSSConnector
from .scrape import ScrapeConnector

CONNECTORS: Dict[SourceKind, Type[BaseConnector]] = {
    SourceKind.RSS: RSSConnector,
    SourceKind.GENERIC_API: GenericAPIConnector,
    SourceKind.ADVISORY_API: AdvisoryConnector,
    SourceKind.HTML_SCRAPE: ScrapeConnector,
}


def get_connector(kind: SourceKind | str, **kwargs: Any) -> BaseConnector:
    """Instantiate the connector registered for ``kind``."""
    try:
        connector_cls = CONNECTORS[SourceKind(kind)]
    except (KeyError, ValueError) as exc:
        raise PermanentError(f"Unknown source kind: {kind}") from exc
    return connector_cls(**kwargs)


__all__ = [
    "AdvisoryConnector",
    "BaseConnector",
    "CONNECTORS",
    "ConnectorError",
    "GenericAPIConnector",
    "PermanentError",
    "RSSConnector",
    "ScrapeConnector",
    "TransientError",
    "get_connector",
]
