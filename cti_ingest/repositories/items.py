"""Deduplicating persistence gateway for ingested items."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cti_ingest.db.models import Item, item_categories
from cti_ingest.models.domain import RawItem, SourceConfig
from cti_ingest.repositories.sources import get_source_category_ids
from cti_ingest.services.deduplicator import compute_fingerprint
from cti_ingest.services.enrichment import EnrichmentResult

FINGERPRINT_CONSTRAINT = "uq_items_fingerprint"


class PersistOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


def find_item_id_by_fingerprint(session: Session, fp: str) -> Optional[uuid.UUID]:
    stmt = select(Item.id).where(Item.fingerprint == fp)
    return session.execute(stmt).scalar_one_or_none()


def link_categories(session: Session, item_id: uuid.UUID, category_ids: Iterable[uuid.UUID]) -> int:
    """Link ``item_id`` to each category; already-linked categories are skipped."""
    wanted = list(dict.fromkeys(category_ids))
    if not wanted:
        return 0
    existing_stmt = select(item_categories.c.category_id).where(
        item_categories.c.item_id == item_id,
        item_categories.c.category_id.in_(wanted),
    )
    existing = {row[0] for row in session.execute(existing_stmt)}
    missing = [cid for cid in wanted if cid not in existing]
    if missing:
        session.execute(
            insert(item_categories),
            [{"item_id": item_id, "category_id": cid} for cid in missing],
        )
    return len(missing)


def is_fingerprint_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
    if constraint:
        return constraint == FINGERPRINT_CONSTRAINT
    message = str(orig)
    return FINGERPRINT_CONSTRAINT in message or "items.fingerprint" in message


def persist_item(
    session: Session,
    source: SourceConfig,
    item: RawItem,
    enrichment: EnrichmentResult,
) -> PersistOutcome:
    """Insert ``item`` once per fingerprint and link it to the source's categories.

    The session should be dedicated to this item: a fingerprint collision rolls it
    back and is reported as ``DUPLICATE``. Any other integrity error propagates.
    """
    fp = compute_fingerprint(item)
    if find_item_id_by_fingerprint(session, fp) is not None:
        return PersistOutcome.DUPLICATE

    entity = Item(
        source_id=source.id,
        title=item.title,
        summary=item.summary,
        content=item.content,
        url=item.url,
        published_at=item.published_at,
        fingerprint=fp,
        raw_json=item.raw,
        visibility_scope=source.visibility_scope,
        visibility_group_ids=list(source.visibility_group_ids),
        **enrichment.as_columns(),
    )
    try:
        session.add(entity)
        session.flush()
        link_categories(session, entity.id, get_source_category_ids(session, source.id))
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        if is_fingerprint_violation(exc):
            return PersistOutcome.DUPLICATE
        raise
    return PersistOutcome.INSERTED
