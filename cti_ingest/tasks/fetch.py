"""Celery task that ingests one source."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from cti_ingest.connectors import BaseConnector, ConnectorError, get_connector
from cti_ingest.db.session import session_scope
from cti_ingest.models.domain import IngestStats, RawItem, SourceConfig, SourceKind
from cti_ingest.repositories.items import PersistOutcome, persist_item
from cti_ingest.repositories.job_runs import JobRunRecorder
from cti_ingest.repositories.sources import get_source_config
from cti_ingest.services.enrichment import enrich
from cti_ingest.services.scheduler import FETCH_QUEUE, FETCH_TASK_NAME
from cti_ingest.utils.logging import get_logger

# Connector factory is kept pluggable for tests; it must return an object with .fetch(url, headers, mapping).
CONNECTOR_FACTORY: Callable[[SourceKind], BaseConnector] = get_connector


class SourceNotFoundError(Exception):
    """The job references a source that no longer exists. Not retried."""


def _ingest_item(source: SourceConfig, item: RawItem) -> PersistOutcome:
    enrichment = enrich(item.title, item.summary, item.content)
    with session_scope() as session:
        return persist_item(session, source, item, enrichment)


def ingest_source_core(source_id: str) -> IngestStats:
    """Fetch, enrich and persist one source's items; test-friendly."""
    trace_id = str(uuid.uuid4())
    logger = get_logger(__name__)
    stats = IngestStats(source_id=str(source_id))

    with session_scope() as run_session, JobRunRecorder(
        run_session, source_id=str(source_id), task_name=FETCH_TASK_NAME, trace_id=trace_id
    ) as run:
        with session_scope() as session:
            source = get_source_config(session, source_id)
        if source is None:
            logger.error("ingest.source_missing", extra={"trace_id": trace_id, "source_id": str(source_id)})
            raise SourceNotFoundError(f"Source {source_id} not found")

        log_ctx: Dict[str, Any] = {"trace_id": trace_id, "source_id": str(source.id), "source_name": source.name}
        logger.info("ingest.start", extra={**log_ctx, "kind": source.kind.value})

        try:
            items = CONNECTOR_FACTORY(source.kind).fetch(source.url, source.headers, source.mapping_config)
        except ConnectorError as exc:
            logger.error("ingest.fetch_failed", extra={**log_ctx, "error": str(exc)})
            raise
        stats.fetched = len(items)

        for item in items:
            try:
                outcome = _ingest_item(source, item)
            except SoftTimeLimitExceeded:
                run.record(stats)
                raise
            except Exception:
                stats.errors += 1
                logger.exception("ingest.item_failed", extra={**log_ctx, "title": item.title[:200]})
                continue
            if outcome is PersistOutcome.INSERTED:
                stats.inserted += 1
            else:
                stats.duplicates += 1

        run.record(stats)

    logger.info("ingest.done", extra={"trace_id": trace_id, **stats.as_dict()})
    return stats


def enqueue_source(source_id: str | uuid.UUID):
    """Manual one-off trigger; identical to a scheduled tick from the worker's view."""
    return fetch_source.apply_async(args=(str(source_id),), queue=FETCH_QUEUE)


@shared_task(name=FETCH_TASK_NAME)
def fetch_source(source_id: str) -> Dict[str, Any]:
    return ingest_source_core(source_id).as_dict()
