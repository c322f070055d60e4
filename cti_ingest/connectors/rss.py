"""RSS/Atom feed connector."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import feedparser
from bs4 import BeautifulSoup

from cti_ingest.models.domain import RawItem, SourceKind

from .base import BaseConnector, PermanentError, coerce_datetime, resolve_url, to_raw

SUMMARY_FALLBACK_CHARS = 500


def strip_html(markup: Optional[str]) -> str:
    if not markup:
        return ""
    return BeautifulSoup(markup, "html.parser").get_text(" ", strip=True)


def _rich_content(entry: Dict[str, Any]) -> Optional[str]:
    # feedparser exposes content:encoded / atom:content as a list of dicts
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            return value
    return None


def _published(entry: Dict[str, Any]) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return coerce_datetime(entry.get("published") or entry.get("updated"))


class RSSConnector(BaseConnector):
    """Connector for syndication feeds (RSS 0.9x/1.0/2.0, Atom)."""

    kind = SourceKind.RSS

    def _fetch_raw(self, url: str, headers: Dict[str, str], mapping: Dict[str, Any]) -> List[Any]:
        resp = self._get(url, headers)
        feed = feedparser.parse(resp.content)
        if feed.get("bozo") and not feed.entries:
            raise PermanentError(f"Malformed feed at {url}: {feed.get('bozo_exception')}")
        return list(feed.entries)

    def _to_items(self, url: str, payload: Any, mapping: Dict[str, Any]) -> List[RawItem]:
        items: List[RawItem] = []
        for entry in payload:
            plain = entry.get("summary") or entry.get("description")
            content = _rich_content(entry) or plain or ""
            snippet = strip_html(plain) or strip_html(content)
            items.append(
                RawItem(
                    title=entry.get("title"),
                    summary=snippet or content[:SUMMARY_FALLBACK_CHARS],
                    content=content,
                    url=resolve_url(entry.get("link"), url),
                    published_at=_published(entry),
                    raw=to_raw(entry),
                )
            )
        return items
