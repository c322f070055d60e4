from __future__ import annotations

import uuid
from pathlib import Path
from typing import Iterable, Optional

import pytest

from cti_ingest.db.models import Base, Category, Source
from cti_ingest.db.session import dispose_engine, get_engine, session_scope
from cti_ingest.models.domain import SourceKind, VisibilityScope
from cti_ingest.services.scheduler import reset_default_reconciler
from cti_ingest.settings import reset_settings_cache


@pytest.fixture(autouse=True)
def _base_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("INGESTION_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("POSTGRES_DSN", f"sqlite:///{tmp_path / 'ingest.db'}")
    monkeypatch.setenv("FETCH_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("FETCH_USER_AGENT", "cti-ingest-tests/1.0")
    reset_settings_cache()
    reset_default_reconciler()
    dispose_engine()
    yield
    dispose_engine()
    reset_settings_cache()
    reset_default_reconciler()


@pytest.fixture()
def db():
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    return engine


def add_source(
    *,
    name: str = "Example feed",
    kind: SourceKind = SourceKind.RSS,
    url: str = "https://feeds.example.com/rss.xml",
    enabled: bool = True,
    schedule_cron: Optional[str] = "*/15 * * * *",
    visibility_scope: VisibilityScope = VisibilityScope.PUBLIC,
    visibility_group_ids: Iterable[str] = (),
    category_slugs: Iterable[str] = (),
    mapping_config: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> uuid.UUID:
    with session_scope() as session:
        categories = []
        for slug in category_slugs:
            category = session.query(Category).filter_by(slug=slug).one_or_none()
            if category is None:
                category = Category(name=slug.replace("-", " ").title(), slug=slug)
                session.add(category)
            categories.append(category)
        source = Source(
            name=name,
            kind=kind,
            url=url,
            headers=headers,
            mapping_config=mapping_config,
            enabled=enabled,
            schedule_cron=schedule_cron,
            visibility_scope=visibility_scope,
            visibility_group_ids=list(visibility_group_ids),
            categories=categories,
        )
        session.add(source)
        session.flush()
        return source.id
