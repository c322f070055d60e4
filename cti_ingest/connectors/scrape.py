"""HTML page connector using CSS selectors."""

from __future__ import annotations

from typing import Any, Dict, List

from bs4 import BeautifulSoup

from cti_ingest.models.domain import RawItem, SourceKind

from .base import BaseConnector, resolve_url

DEFAULT_SELECTORS = {
    "itemSelector": "article",
    "titleSelector": "h2, h3, .title",
    "linkSelector": "a",
    "summarySelector": "p, .summary",
}


class ScrapeConnector(BaseConnector):
    """Connector that extracts repeated item blocks from an HTML page.

    Blocks without both a title and a link are skipped.
    """

    kind = SourceKind.HTML_SCRAPE

    def _fetch_raw(self, url: str, headers: Dict[str, str], mapping: Dict[str, Any]) -> str:
        return self._get(url, headers).text

    def _to_items(self, url: str, payload: Any, mapping: Dict[str, Any]) -> List[RawItem]:
        sel = {key: mapping.get(key) or default for key, default in DEFAULT_SELECTORS.items()}
        soup = BeautifulSoup(payload, "html.parser")

        items: List[RawItem] = []
        for block in soup.select(sel["itemSelector"]):
            title_el = block.select_one(sel["titleSelector"])
            link_el = block.select_one(sel["linkSelector"])
            summary_el = block.select_one(sel["summarySelector"])

            title = title_el.get_text(" ", strip=True) if title_el else ""
            link = (link_el.get("href") or "").strip() if link_el else ""
            summary = summary_el.get_text(" ", strip=True) if summary_el else ""
            if not title or not link:
                continue

            full_url = resolve_url(link, url)
            items.append(
                RawItem(
                    title=title,
                    summary=summary,
                    content=summary,
                    url=full_url,
                    raw={"title": title, "link": full_url, "summary": summary},
                )
            )
        return items
