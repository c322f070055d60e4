"""Generic JSON API connector driven by dot-path mapping config."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from cti_ingest.models.domain import RawItem, SourceKind

from .base import BaseConnector, as_text, coerce_datetime, resolve_url, to_raw

DEFAULT_FIELDS = {
    "titleField": "title",
    "summaryField": "summary",
    "contentField": "description",
    "urlField": "url",
    "dateField": "published",
}


def get_path(value: Any, path: Optional[str]) -> Any:
    """Resolve a dot path like ``data.items.0.title``; ``None`` on any missing segment."""
    if not path:
        return value
    head, _, rest = path.partition(".")
    if isinstance(value, dict):
        child = value.get(head)
    elif isinstance(value, list) and head.isdigit() and int(head) < len(value):
        child = value[int(head)]
    else:
        return None
    if child is None or not rest:
        return child
    return get_path(child, rest)


class GenericAPIConnector(BaseConnector):
    """Connector for arbitrary JSON endpoints.

    ``mapping_config`` keys:
      - ``arrayPath``: dot path from the response root to the item array
      - ``titleField``/``summaryField``/``contentField``/``urlField``/``dateField``:
        dot paths inside each item (see ``DEFAULT_FIELDS``)
    """

    kind = SourceKind.GENERIC_API

    def _fetch_raw(self, url: str, headers: Dict[str, str], mapping: Dict[str, Any]) -> Any:
        return self._get_json(url, headers)

    def _to_items(self, url: str, payload: Any, mapping: Dict[str, Any]) -> List[RawItem]:
        data = get_path(payload, mapping.get("arrayPath"))
        if data is None:
            return []
        if not isinstance(data, list):
            data = [data]

        fields = {key: mapping.get(key) or default for key, default in DEFAULT_FIELDS.items()}
        items: List[RawItem] = []
        for entry in data:
            items.append(
                RawItem(
                    title=as_text(get_path(entry, fields["titleField"])),
                    summary=as_text(get_path(entry, fields["summaryField"])),
                    content=as_text(get_path(entry, fields["contentField"])),
                    url=resolve_url(get_path(entry, fields["urlField"]), url),
                    published_at=coerce_datetime(get_path(entry, fields["dateField"])),
                    raw=to_raw(entry),
                )
            )
        return items
