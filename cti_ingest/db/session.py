"""Session helpers for the item store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from cti_ingest.settings import Settings, get_settings

_ENGINE: Engine | None = None
_SESSIONMAKER: sessionmaker[Session] | None = None
_CURRENT_DSN: str | None = None

# Bounds every connection checkout so a store outage cannot block a job forever.
_POOL_TIMEOUT_SECONDS = 10


def get_engine(settings: Settings | None = None) -> Engine:
    """Return a memoized SQLAlchemy engine."""
    global _ENGINE, _SESSIONMAKER, _CURRENT_DSN

    config = settings or get_settings()
    if _ENGINE is None or _CURRENT_DSN != config.postgres_dsn:
        if _ENGINE is not None:
            _ENGINE.dispose()
        kwargs = {"future": True, "pool_pre_ping": True}
        if not config.postgres_dsn.startswith("sqlite"):
            kwargs["pool_timeout"] = _POOL_TIMEOUT_SECONDS
        _ENGINE = create_engine(config.postgres_dsn, **kwargs)
        _SESSIONMAKER = sessionmaker(
            bind=_ENGINE,
            expire_on_commit=False,
            autoflush=False,
            future=True,
        )
        _CURRENT_DSN = config.postgres_dsn
    return _ENGINE


def get_sessionmaker(settings: Settings | None = None) -> sessionmaker[Session]:
    """Return a memoized sessionmaker."""
    get_engine(settings)
    assert _SESSIONMAKER is not None  # for mypy
    return _SESSIONMAKER


@contextmanager
def session_scope(settings: Settings | None = None) -> Iterator[Session]:
    """Provide a transactional scope for DB operations."""
    session = get_sessionmaker(settings)()
    try:
        yield session
        session.commit()
    except Exception:  # pragma: no cover - re-raise after rollback
        session.rollback()
        raise
    finally:
        session.close()


def check_connection(settings: Settings | None = None) -> None:
    """Run a trivial query; raises if the store is unreachable."""
    with get_engine(settings).connect() as conn:
        conn.execute(text("SELECT 1"))


def dispose_engine() -> None:
    """Release pooled connections (worker shutdown)."""
    global _ENGINE, _SESSIONMAKER, _CURRENT_DSN
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSIONMAKER = None
    _CURRENT_DSN = None
