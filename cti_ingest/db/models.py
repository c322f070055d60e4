"""SQLAlchemy models for sources, items and job runs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import Uuid

from cti_ingest.models.domain import SourceKind, VisibilityScope


class Base(DeclarativeBase):
    """Base class for ORM models."""


class TimestampMixin:
    """Adds created_at/updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


source_categories = Table(
    "source_categories",
    Base.metadata,
    Column("source_id", Uuid(as_uuid=True), ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Uuid(as_uuid=True), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

item_categories = Table(
    "item_categories",
    Base.metadata,
    Column("item_id", Uuid(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Uuid(as_uuid=True), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    """Category managed by the admin surface; linked to sources and items."""

    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class Source(TimestampMixin, Base):
    """Source configuration. Owned by the admin surface, read-only here."""

    __tablename__ = "sources"
    __table_args__ = (Index("ix_sources_enabled", "enabled"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[SourceKind] = mapped_column(
        SAEnum(SourceKind, name="source_kind", native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    headers: Mapped[dict | None] = mapped_column(JSON)
    mapping_config: Mapped[dict | None] = mapped_column(JSON)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    schedule_cron: Mapped[str | None] = mapped_column(String(100), default="0 */6 * * *")
    visibility_scope: Mapped[VisibilityScope] = mapped_column(
        SAEnum(VisibilityScope, name="visibility_scope", native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=VisibilityScope.PUBLIC,
    )
    visibility_group_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    categories: Mapped[List[Category]] = relationship(secondary=source_categories, lazy="selectin")


class Item(Base):
    """Item persisted once per unique fingerprint."""

    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_items_fingerprint"),
        Index("ix_items_source_collected", "source_id", "collected_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    source_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="SET NULL"),
    )
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_json: Mapped[dict | None] = mapped_column(JSON)
    visibility_scope: Mapped[VisibilityScope] = mapped_column(
        SAEnum(VisibilityScope, name="visibility_scope", native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=VisibilityScope.PUBLIC,
    )
    visibility_group_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    cves: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    cwes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    vendors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    products: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    severity: Mapped[str | None] = mapped_column(String(16))


class JobRun(TimestampMixin, Base):
    """Represents a single ingestion job execution."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_source_status", "source_id", "status"),
        Index("ix_job_runs_trace", "trace_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus, name="job_status", native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.RUNNING,
    )
    source_id: Mapped[str | None] = mapped_column(String(64))
    task_name: Mapped[str | None] = mapped_column(String(100))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    fetched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inserted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(String(512))
    trace_id: Mapped[str | None] = mapped_column(String(64))
