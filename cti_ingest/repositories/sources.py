"""Read-only access to externally managed source configurations."""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from cti_ingest.db.models import Source, source_categories
from cti_ingest.models.domain import SourceConfig


def _to_config(row: Source) -> SourceConfig:
    return SourceConfig(
        id=row.id,
        name=row.name,
        kind=row.kind,
        url=row.url,
        headers=row.headers,
        mapping_config=row.mapping_config,
        enabled=row.enabled,
        schedule_cron=row.schedule_cron,
        visibility_scope=row.visibility_scope,
        visibility_group_ids=row.visibility_group_ids,
        category_ids=[category.id for category in row.categories],
    )


def _as_uuid(source_id: uuid.UUID | str) -> Optional[uuid.UUID]:
    if isinstance(source_id, uuid.UUID):
        return source_id
    try:
        return uuid.UUID(str(source_id))
    except ValueError:
        return None


def get_source_config(session: Session, source_id: uuid.UUID | str) -> Optional[SourceConfig]:
    key = _as_uuid(source_id)
    if key is None:
        return None
    row = session.get(Source, key)
    return _to_config(row) if row is not None else None


def list_enabled_sources(session: Session) -> List[SourceConfig]:
    stmt = select(Source).where(Source.enabled.is_(True)).order_by(Source.created_at, Source.id)
    return [_to_config(row) for row in session.execute(stmt).scalars()]


def get_source_category_ids(session: Session, source_id: uuid.UUID) -> List[uuid.UUID]:
    stmt = select(source_categories.c.category_id).where(source_categories.c.source_id == source_id)
    return [row[0] for row in session.execute(stmt)]
