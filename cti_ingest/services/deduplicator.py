"""Content fingerprinting used as the sole deduplication key."""

from __future__ import annotations

import hashlib
from typing import Optional

from cti_ingest.models.domain import RawItem

CONTENT_PREFIX_CHARS = 500


def fingerprint(url: str, title: str, content: Optional[str]) -> str:
    data = f"{url}|{title}|{(content or '')[:CONTENT_PREFIX_CHARS]}".encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def compute_fingerprint(item: RawItem) -> str:
    """Digest over ``(url, title, content[:500])``; independent of source and fetch time."""
    return fingerprint(item.url, item.title, item.content)
