"""Repeating-job registry and its reconciliation against source configs.

The registry is a Redis hash next to the Celery broker: one field per source
(``scheduled-<source id>``) holding the cron expression. ``SourceBeatScheduler``
in ``cti_ingest.beat`` turns the registry into beat entries.
"""

from __future__ import annotations

import json
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

import redis
from celery.schedules import ParseException, crontab

from cti_ingest.db.session import session_scope
from cti_ingest.models.domain import SourceConfig
from cti_ingest.repositories.sources import list_enabled_sources
from cti_ingest.settings import get_settings
from cti_ingest.utils.logging import get_logger

FETCH_TASK_NAME = "cti_ingest.tasks.fetch.fetch_source"
FETCH_QUEUE = "cti_ingest.fetch"
SCHEDULE_KEY_PREFIX = "scheduled-"
RECONCILE_LOCK_TIMEOUT_SECONDS = 60
RECONCILE_LOCK_WAIT_SECONDS = 30

logger = get_logger(__name__)


def crontab_from_string(expression: str) -> crontab:
    """Build a Celery ``crontab`` from a five-field cron expression.

    Expressions that parse but never fire (``0 0 31 2 *``) are rejected too:
    beat would otherwise fail computing the next run on its first tick.
    """
    fields = (expression or "").split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 fields: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        run_on = crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
    except ParseException as exc:
        raise ValueError(f"Invalid cron expression {expression!r}: {exc}") from exc
    try:
        run_on.remaining_estimate(datetime.now(timezone.utc))
    except RuntimeError as exc:
        raise ValueError(f"Cron expression never fires {expression!r}: {exc}") from exc
    return run_on


def is_valid_cron(expression: Optional[str]) -> bool:
    if not expression or not isinstance(expression, str):
        return False
    try:
        crontab_from_string(expression)
    except ValueError:
        return False
    return True


def schedule_key(source_id: object) -> str:
    return f"{SCHEDULE_KEY_PREFIX}{source_id}"


@dataclass(frozen=True)
class ScheduleEntry:
    key: str
    source_id: str
    cron: str

    def to_json(self) -> str:
        return json.dumps({"source_id": self.source_id, "cron": self.cron})

    @classmethod
    def from_json(cls, key: str, payload: str) -> "ScheduleEntry":
        data = json.loads(payload)
        return cls(key=key, source_id=str(data["source_id"]), cron=str(data["cron"]))


class RepeatingJobStore(Protocol):
    def keys(self) -> List[str]: ...  # noqa: D401
    def entries(self) -> List[ScheduleEntry]: ...  # noqa: D401
    def add(self, entry: ScheduleEntry) -> None: ...  # noqa: D401
    def remove(self, key: str) -> None: ...  # noqa: D401
    def reconcile_lock(self) -> AbstractContextManager[Any]: ...  # noqa: D401


class InMemoryScheduleStore:
    """Simple in-memory store for tests/local runs."""

    def __init__(self) -> None:
        self._entries: Dict[str, ScheduleEntry] = {}
        self._reconcile_lock = threading.Lock()

    def reconcile_lock(self) -> AbstractContextManager[Any]:
        return self._reconcile_lock

    def keys(self) -> List[str]:
        return list(self._entries)

    def entries(self) -> List[ScheduleEntry]:
        return list(self._entries.values())

    def add(self, entry: ScheduleEntry) -> None:
        self._entries[entry.key] = entry

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)


class _RedisHashClient(Protocol):
    def hkeys(self, name: str) -> List[bytes | str]: ...
    def hgetall(self, name: str) -> Dict[bytes | str, bytes | str]: ...
    def hset(self, name: str, key: str, value: str) -> int: ...
    def hdel(self, name: str, *keys: str) -> int: ...
    def lock(self, name: str, timeout: Optional[float] = None, blocking_timeout: Optional[float] = None) -> Any: ...


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisScheduleStore:
    """Redis hash backed store.

    - list: ``HKEYS`` / ``HGETALL``
    - add: ``HSET <hash> <entry key> <json>``
    - remove: ``HDEL <hash> <entry key>``
    - reconcile lock: redis-py ``Lock`` on ``<hash>:reconcile``, shared by every
      process pointing at the same Redis

    Works with redis-py clients with or without ``decode_responses``.
    """

    def __init__(self, client: _RedisHashClient, *, hash_key: str = "cti_ingest:schedules") -> None:
        self._client = client
        self._hash_key = hash_key

    @classmethod
    def from_url(cls, url: str, *, hash_key: str = "cti_ingest:schedules") -> "RedisScheduleStore":
        client = redis.Redis.from_url(url, socket_connect_timeout=5, socket_timeout=5)
        return cls(client, hash_key=hash_key)

    def keys(self) -> List[str]:
        return [_text(k) for k in self._client.hkeys(self._hash_key)]

    def entries(self) -> List[ScheduleEntry]:
        raw = self._client.hgetall(self._hash_key)
        result: List[ScheduleEntry] = []
        for key, payload in raw.items():
            try:
                result.append(ScheduleEntry.from_json(_text(key), _text(payload)))
            except (ValueError, KeyError):
                logger.warning("schedule.entry_unreadable", extra={"schedule_key": _text(key)})
        return sorted(result, key=lambda e: e.key)

    def add(self, entry: ScheduleEntry) -> None:
        self._client.hset(self._hash_key, entry.key, entry.to_json())

    def remove(self, key: str) -> None:
        self._client.hdel(self._hash_key, key)

    def reconcile_lock(self) -> AbstractContextManager[Any]:
        # Raises redis.exceptions.LockError if another holder keeps it past the wait.
        return self._client.lock(
            f"{self._hash_key}:reconcile",
            timeout=RECONCILE_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=RECONCILE_LOCK_WAIT_SECONDS,
        )


SourceLoader = Callable[[], Iterable[SourceConfig]]


class ScheduleReconciler:
    """Owns the repeating-job set; ``reconcile()`` replaces it wholesale.

    Calls are serialized by a thread lock and by the store's ``reconcile_lock()``,
    which for the Redis store is held across processes.
    """

    def __init__(self, store: RepeatingJobStore, load_sources: SourceLoader) -> None:
        self._store = store
        self._load_sources = load_sources
        self._lock = threading.Lock()

    @property
    def store(self) -> RepeatingJobStore:
        return self._store

    def reconcile(self) -> List[ScheduleEntry]:
        with self._lock, self._store.reconcile_lock():
            # Load first so a store read failure leaves the current schedule intact.
            sources = list(self._load_sources())

            removed = 0
            for key in self._store.keys():
                self._store.remove(key)
                removed += 1

            entries: List[ScheduleEntry] = []
            skipped = 0
            for source in sources:
                if not source.enabled:
                    continue
                if not is_valid_cron(source.schedule_cron):
                    skipped += 1
                    logger.info(
                        "schedule.skipped_invalid_cron",
                        extra={"source_id": str(source.id), "source_name": source.name, "cron": source.schedule_cron},
                    )
                    continue
                entry = ScheduleEntry(
                    key=schedule_key(source.id),
                    source_id=str(source.id),
                    cron=" ".join(source.schedule_cron.split()),
                )
                self._store.add(entry)
                entries.append(entry)
                logger.info(
                    "schedule.registered",
                    extra={"source_id": entry.source_id, "source_name": source.name, "cron": entry.cron},
                )

            logger.info(
                "schedule.reconciled",
                extra={"removed": removed, "registered": len(entries), "skipped": skipped},
            )
            return entries


def load_enabled_sources() -> List[SourceConfig]:
    with session_scope() as session:
        return list_enabled_sources(session)


def default_schedule_store() -> RedisScheduleStore:
    cfg = get_settings()
    return RedisScheduleStore.from_url(cfg.redis_url, hash_key=cfg.schedule_registry_key)


_default_reconciler: Optional[ScheduleReconciler] = None
_default_reconciler_guard = threading.Lock()


def default_reconciler() -> ScheduleReconciler:
    """Return the process-wide reconciler bound to the configured Redis store."""
    global _default_reconciler
    with _default_reconciler_guard:
        if _default_reconciler is None:
            _default_reconciler = ScheduleReconciler(default_schedule_store(), load_enabled_sources)
        return _default_reconciler


def reset_default_reconciler() -> None:
    """Drop the cached reconciler (for tests)."""
    global _default_reconciler
    with _default_reconciler_guard:
        _default_reconciler = None
