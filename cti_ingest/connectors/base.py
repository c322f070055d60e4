"""Connector abstraction, errors, and helpers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urljoin

import httpx
from dateutil import parser as date_parser
from soupsieve import SelectorSyntaxError

from cti_ingest.models.domain import RawItem, SourceKind
from cti_ingest.settings import get_settings


class ConnectorError(Exception):
    """Base connector error. Aborts the whole fetch for a source."""


class TransientError(ConnectorError):
    """Likely to succeed on a later tick (timeout, rate limit, 5xx)."""


class PermanentError(ConnectorError):
    """Will not succeed without a configuration change (4xx, malformed payload)."""


def resolve_url(candidate: Any, source_url: str) -> str:
    """Return an absolute URL for ``candidate``, falling back to the source URL."""
    if not candidate:
        return source_url
    return urljoin(source_url, str(candidate).strip())


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Best-effort conversion of a payload timestamp; ``None`` when unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def to_raw(fragment: Any) -> Dict[str, Any]:
    """Return a JSON-safe copy of a payload fragment."""
    if not isinstance(fragment, Mapping):
        fragment = {"value": fragment}
    return json.loads(json.dumps(dict(fragment), default=str, ensure_ascii=False))


class BaseConnector(ABC):
    """Fetch-and-normalize strategy for one source kind."""

    kind: SourceKind

    def __init__(self, *, timeout_seconds: float | None = None, user_agent: str | None = None) -> None:
        cfg = get_settings() if timeout_seconds is None or user_agent is None else None
        self._timeout = float(timeout_seconds if timeout_seconds is not None else cfg.fetch_timeout_seconds)
        self._user_agent = user_agent if user_agent is not None else cfg.fetch_user_agent

    def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, Any]] = None,
        mapping_config: Optional[Mapping[str, Any]] = None,
    ) -> List[RawItem]:
        """Fetch ``url`` and return its items in payload order.

        Raises ConnectorError on any transport or parse failure; no partial result
        is returned in that case.
        """
        request_headers = {str(k): str(v) for k, v in (headers or {}).items()}
        mapping = dict(mapping_config or {})
        payload = self._fetch_raw(url, request_headers, mapping)
        try:
            return self._to_items(url, payload, mapping)
        except ConnectorError:
            raise
        except (ValueError, TypeError, AttributeError, KeyError, SelectorSyntaxError) as exc:
            raise PermanentError(f"Failed to normalize payload from {url}: {exc}") from exc

    @abstractmethod
    def _fetch_raw(self, url: str, headers: Dict[str, str], mapping: Dict[str, Any]) -> Any:
        """Return the decoded upstream payload."""

    @abstractmethod
    def _to_items(self, url: str, payload: Any, mapping: Dict[str, Any]) -> List[RawItem]:
        """Map a decoded payload onto RawItems."""

    def _get(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        merged = {"User-Agent": self._user_agent, **headers}
        try:
            resp = httpx.get(url, headers=merged, timeout=self._timeout, follow_redirects=True)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise PermanentError(f"Unusable source URL {url!r}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransientError(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"Transport error fetching {url}: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"Upstream temporarily failed: {resp.status_code} {url}")
        if not resp.is_success:
            raise PermanentError(f"Upstream returned {resp.status_code} for {url}")
        return resp

    def _get_json(self, url: str, headers: Dict[str, str]) -> Any:
        resp = self._get(url, headers)
        try:
            return resp.json()
        except ValueError as exc:
            raise PermanentError(f"Malformed JSON from {url}") from exc
