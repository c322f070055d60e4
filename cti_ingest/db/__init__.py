"""Database utilities for the ingestion service."""

from .models import Base, Category, Item, JobRun, JobStatus, Source  # noqa: F401
from .session import check_connection, dispose_engine, get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "Category",
    "Item",
    "JobRun",
    "JobStatus",
    "Source",
    "check_connection",
    "dispose_engine",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
