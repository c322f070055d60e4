"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNTITLED = "Untitled"


class SourceKind(str, Enum):
    RSS = "rss"
    GENERIC_API = "generic_api"
    ADVISORY_API = "advisory_api"
    HTML_SCRAPE = "html_scrape"


class VisibilityScope(str, Enum):
    PUBLIC = "public"
    GROUPS = "groups"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RawItem(BaseModel):
    """Normalized item produced by a connector, consumed once by the worker."""

    title: str = UNTITLED
    summary: Optional[str] = None
    content: Optional[str] = None
    url: str = Field(..., description="Absolute item URL (source URL when the payload has none)")
    published_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict, description="Untouched payload fragment")

    @field_validator("title", mode="before")
    @classmethod
    def _title_or_placeholder(cls, value: Any) -> str:
        if value is None:
            return UNTITLED
        title = str(value).strip()
        return title or UNTITLED


class SourceConfig(BaseModel):
    """Read-only view of an externally managed source record."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    name: str
    kind: SourceKind
    url: str
    headers: Dict[str, Any] = Field(default_factory=dict)
    mapping_config: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    schedule_cron: Optional[str] = None
    visibility_scope: VisibilityScope = VisibilityScope.PUBLIC
    visibility_group_ids: List[str] = Field(default_factory=list)
    category_ids: List[uuid.UUID] = Field(default_factory=list)

    @field_validator("headers", "mapping_config", mode="before")
    @classmethod
    def _none_to_empty_map(cls, value: Any) -> Any:
        return value or {}

    @field_validator("visibility_group_ids", mode="before")
    @classmethod
    def _none_to_empty_list(cls, value: Any) -> Any:
        return value or []


@dataclass
class IngestStats:
    """Per-job outcome counts."""

    source_id: str
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }
