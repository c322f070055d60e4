from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager

import pytest

from conftest import add_source
from cti_ingest.models.domain import SourceConfig, SourceKind
from cti_ingest.services.scheduler import (
    InMemoryScheduleStore,
    RedisScheduleStore,
    ScheduleEntry,
    ScheduleReconciler,
    crontab_from_string,
    default_reconciler,
    is_valid_cron,
    load_enabled_sources,
    schedule_key,
)


class FakeRedis:
    """Minimal hash commands; returns bytes like a client without decode_responses."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[bytes, bytes]] = {}
        self.locks: list[tuple[str, float | None, float | None]] = []
        self.held: set[str] = set()

    def hkeys(self, name):
        return list(self.hashes.get(name, {}))

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key.encode()] = value.encode()
        return 1

    def hdel(self, name, *keys):
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key.encode(), None) is not None)

    @contextmanager
    def lock(self, name, timeout=None, blocking_timeout=None):
        self.locks.append((name, timeout, blocking_timeout))
        self.held.add(name)
        try:
            yield
        finally:
            self.held.discard(name)


def _source(cron: str | None, *, enabled: bool = True, name: str = "feed") -> SourceConfig:
    return SourceConfig(
        id=uuid.uuid4(),
        name=name,
        kind=SourceKind.RSS,
        url="https://feeds.example.com/rss.xml",
        enabled=enabled,
        schedule_cron=cron,
    )


@pytest.mark.parametrize(
    "expression",
    ["*/15 * * * *", "0 */6 * * *", "30 2 * * 1-5", "0 0 1 1 *", "  5  4 * * sun "],
)
def test_valid_cron_expressions(expression):
    assert is_valid_cron(expression)


@pytest.mark.parametrize(
    "expression",
    [None, "", "every hour", "* * * *", "0 0 * * * *", "61 * * * *", "* 25 * * *", "abc * * * *", "0 0 31 2 *", "0 0 30 2 *"],
)
def test_invalid_cron_expressions(expression):
    assert not is_valid_cron(expression)


def test_crontab_from_string_rejects_wrong_field_count():
    with pytest.raises(ValueError):
        crontab_from_string("* * *")


def test_reconcile_registers_enabled_sources_with_valid_cron():
    good_a = _source("*/15 * * * *", name="a")
    good_b = _source("0 */6 * * *", name="b")
    disabled = _source("*/5 * * * *", enabled=False, name="c")
    broken = _source("not a cron", name="d")
    store = InMemoryScheduleStore()
    reconciler = ScheduleReconciler(store, lambda: [good_a, good_b, disabled, broken])

    entries = reconciler.reconcile()

    assert {e.key for e in entries} == {f"scheduled-{good_a.id}", f"scheduled-{good_b.id}"}
    assert sorted(store.keys()) == sorted([schedule_key(good_a.id), schedule_key(good_b.id)])
    by_key = {e.key: e for e in store.entries()}
    assert by_key[schedule_key(good_a.id)].cron == "*/15 * * * *"
    assert by_key[schedule_key(good_b.id)].source_id == str(good_b.id)


def test_reconcile_is_idempotent_and_drops_stale_entries():
    source = _source("*/15 * * * *")
    store = InMemoryScheduleStore()
    store.add(ScheduleEntry(key="scheduled-deleted-source", source_id="deleted-source", cron="* * * * *"))
    reconciler = ScheduleReconciler(store, lambda: [source])

    reconciler.reconcile()
    reconciler.reconcile()

    assert store.keys() == [schedule_key(source.id)]


def test_reconcile_normalizes_cron_whitespace():
    source = _source("  0   */6 * *  * ")
    store = InMemoryScheduleStore()

    [entry] = ScheduleReconciler(store, lambda: [source]).reconcile()

    assert entry.cron == "0 */6 * * *"


def test_reconcile_keeps_schedule_when_sources_cannot_be_loaded():
    store = InMemoryScheduleStore()
    existing = ScheduleEntry(key="scheduled-x", source_id="x", cron="* * * * *")
    store.add(existing)

    def boom():
        raise RuntimeError("store down")

    with pytest.raises(RuntimeError):
        ScheduleReconciler(store, boom).reconcile()

    assert store.entries() == [existing]


def test_reconcile_reflects_source_changes():
    source = _source("*/15 * * * *")
    sources = [source]
    store = InMemoryScheduleStore()
    reconciler = ScheduleReconciler(store, lambda: list(sources))
    reconciler.reconcile()

    sources[0] = source.model_copy(update={"enabled": False})
    reconciler.reconcile()

    assert store.keys() == []


def test_redis_store_round_trips_entries():
    client = FakeRedis()
    store = RedisScheduleStore(client, hash_key="test:schedules")
    entry = ScheduleEntry(key="scheduled-1", source_id="1", cron="*/15 * * * *")

    store.add(entry)

    assert store.keys() == ["scheduled-1"]
    assert store.entries() == [entry]
    assert list(client.hashes) == ["test:schedules"]

    store.remove("scheduled-1")
    assert store.keys() == []


def test_redis_store_skips_unreadable_payloads():
    client = FakeRedis()
    client.hashes["test:schedules"] = {b"scheduled-bad": b"{oops", b"scheduled-ok": b'{"source_id": "7", "cron": "0 * * * *"}'}
    store = RedisScheduleStore(client, hash_key="test:schedules")

    assert store.entries() == [ScheduleEntry(key="scheduled-ok", source_id="7", cron="0 * * * *")]


def test_reconcile_against_redis_store():
    client = FakeRedis()
    store = RedisScheduleStore(client, hash_key="test:schedules")
    store.add(ScheduleEntry(key="scheduled-old", source_id="old", cron="* * * * *"))
    source = _source("0 */6 * * *")

    ScheduleReconciler(store, lambda: [source]).reconcile()

    assert store.keys() == [schedule_key(source.id)]


def test_load_enabled_sources_reads_item_store(db):
    enabled = add_source(name="enabled", schedule_cron="*/30 * * * *")
    add_source(name="disabled", enabled=False)

    sources = load_enabled_sources()

    assert [s.id for s in sources] == [enabled]
    assert sources[0].schedule_cron == "*/30 * * * *"


def test_crontab_from_string_rejects_dates_that_never_occur():
    with pytest.raises(ValueError, match="never fires"):
        crontab_from_string("0 0 31 2 *")


def test_reconcile_skips_sources_whose_cron_never_fires():
    ok = _source("*/15 * * * *", name="ok")
    feb31 = _source("0 0 31 2 *", name="feb31")
    store = InMemoryScheduleStore()

    entries = ScheduleReconciler(store, lambda: [ok, feb31]).reconcile()

    assert [e.key for e in entries] == [schedule_key(ok.id)]
    assert store.keys() == [schedule_key(ok.id)]


def test_reconcile_holds_redis_lock_while_rewriting_registry():
    client = FakeRedis()
    store = RedisScheduleStore(client, hash_key="test:schedules")
    seen_held: list[bool] = []

    def load():
        seen_held.append("test:schedules:reconcile" in client.held)
        return [_source("*/15 * * * *")]

    ScheduleReconciler(store, load).reconcile()

    assert seen_held == [True]
    assert [name for name, _, _ in client.locks] == ["test:schedules:reconcile"]
    _, timeout, blocking_timeout = client.locks[0]
    assert timeout and blocking_timeout
    assert client.held == set()


def test_separate_reconcilers_share_the_store_lock():
    store = InMemoryScheduleStore()
    inside = threading.Event()
    release = threading.Event()
    calls: list[str] = []

    def slow_load():
        calls.append("first")
        inside.set()
        release.wait(timeout=5)
        return []

    def quick_load():
        calls.append("second")
        return []

    first = threading.Thread(target=ScheduleReconciler(store, slow_load).reconcile)
    first.start()
    assert inside.wait(timeout=5)
    second = threading.Thread(target=ScheduleReconciler(store, quick_load).reconcile)
    second.start()
    second.join(timeout=0.2)
    assert calls == ["first"]

    release.set()
    first.join(timeout=5)
    second.join(timeout=5)
    assert calls == ["first", "second"]


def test_default_reconciler_is_shared_per_process(monkeypatch):
    from cti_ingest.services import scheduler

    built: list[RedisScheduleStore] = []

    def fake_store():
        store = RedisScheduleStore(FakeRedis(), hash_key="test:schedules")
        built.append(store)
        return store

    monkeypatch.setattr(scheduler, "default_schedule_store", fake_store)

    first = default_reconciler()
    second = default_reconciler()

    assert first is second
    assert len(built) == 1
    assert first.store is built[0]
