"""Security advisory API connector (GitHub advisory database schema)."""

from __future__ import annotations

from typing import Any, Dict, List

from cti_ingest.models.domain import RawItem, SourceKind

from .base import BaseConnector, coerce_datetime, resolve_url, to_raw

ACCEPT_HEADER = "application/vnd.github+json"
SUMMARY_CHARS = 500


class AdvisoryConnector(BaseConnector):
    """Connector for advisory listings such as ``https://api.github.com/advisories``."""

    kind = SourceKind.ADVISORY_API

    def _fetch_raw(self, url: str, headers: Dict[str, str], mapping: Dict[str, Any]) -> Any:
        return self._get_json(url, {"Accept": ACCEPT_HEADER, **headers})

    def _to_items(self, url: str, payload: Any, mapping: Dict[str, Any]) -> List[RawItem]:
        if not isinstance(payload, list):
            return []
        items: List[RawItem] = []
        for advisory in payload:
            if not isinstance(advisory, dict):
                continue
            description = advisory.get("description") or ""
            items.append(
                RawItem(
                    title=advisory.get("summary") or advisory.get("ghsa_id"),
                    summary=description[:SUMMARY_CHARS],
                    content=description,
                    url=resolve_url(advisory.get("html_url") or advisory.get("url"), url),
                    published_at=coerce_datetime(advisory.get("published_at") or advisory.get("created_at")),
                    raw=to_raw(advisory),
                )
            )
        return items
