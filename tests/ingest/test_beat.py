from __future__ import annotations

import pytest

from cti_ingest.beat import SourceBeatScheduler, build_beat_schedule
from cti_ingest.celery_app import create_celery_app
from cti_ingest.services.scheduler import (
    FETCH_QUEUE,
    FETCH_TASK_NAME,
    InMemoryScheduleStore,
    ScheduleEntry,
    crontab_from_string,
)
from cti_ingest.settings import get_settings, reset_settings_cache


@pytest.fixture()
def app():
    celery_app = create_celery_app(get_settings())
    celery_app.conf.result_expires = None
    return celery_app


def test_build_beat_schedule_maps_entries_to_fetch_task():
    entries = [
        ScheduleEntry(key="scheduled-a", source_id="a", cron="*/15 * * * *"),
        ScheduleEntry(key="scheduled-b", source_id="b", cron="bogus"),
    ]

    schedule = build_beat_schedule(entries)

    assert list(schedule) == ["scheduled-a"]
    beat_entry = schedule["scheduled-a"]
    assert beat_entry["task"] == FETCH_TASK_NAME
    assert beat_entry["args"] == ("a",)
    assert beat_entry["options"] == {"queue": FETCH_QUEUE}
    assert beat_entry["schedule"] == crontab_from_string("*/15 * * * *")


def test_scheduler_mirrors_store_on_startup(app):
    store = InMemoryScheduleStore()
    store.add(ScheduleEntry(key="scheduled-a", source_id="a", cron="0 */6 * * *"))

    scheduler = SourceBeatScheduler(app=app, store=store)

    assert set(scheduler.schedule) == {"scheduled-a"}
    entry = scheduler.schedule["scheduled-a"]
    assert entry.task == FETCH_TASK_NAME
    assert tuple(entry.args) == ("a",)
    assert entry.options["queue"] == FETCH_QUEUE


def test_scheduler_refresh_adds_and_removes_entries(app):
    store = InMemoryScheduleStore()
    store.add(ScheduleEntry(key="scheduled-a", source_id="a", cron="*/15 * * * *"))
    scheduler = SourceBeatScheduler(app=app, store=store)

    store.remove("scheduled-a")
    store.add(ScheduleEntry(key="scheduled-b", source_id="b", cron="*/5 * * * *"))
    assert scheduler.refresh_from_store(force=True) is True

    assert set(scheduler.schedule) == {"scheduled-b"}
    assert scheduler.schedule["scheduled-b"].schedule == crontab_from_string("*/5 * * * *")


def test_scheduler_refresh_is_throttled(app):
    store = InMemoryScheduleStore()
    scheduler = SourceBeatScheduler(app=app, store=store)

    store.add(ScheduleEntry(key="scheduled-late", source_id="late", cron="* * * * *"))

    assert scheduler.refresh_from_store() is False
    assert "scheduled-late" not in scheduler.schedule


def test_scheduler_loop_interval_bounded_by_refresh(app, monkeypatch):
    monkeypatch.setenv("SCHEDULE_REFRESH_SECONDS", "15")
    reset_settings_cache()
    scheduler = SourceBeatScheduler(app=app, store=InMemoryScheduleStore())

    assert scheduler.refresh_interval == 15
    assert scheduler.max_interval <= 15


def test_build_beat_schedule_drops_cron_that_never_fires():
    entries = [
        ScheduleEntry(key="scheduled-a", source_id="a", cron="*/15 * * * *"),
        ScheduleEntry(key="scheduled-feb31", source_id="feb31", cron="0 0 31 2 *"),
    ]

    assert list(build_beat_schedule(entries)) == ["scheduled-a"]


def test_scheduler_ticks_past_registry_entry_that_never_fires(app):
    store = InMemoryScheduleStore()
    store.add(ScheduleEntry(key="scheduled-feb31", source_id="feb31", cron="0 0 31 2 *"))
    scheduler = SourceBeatScheduler(app=app, store=store)

    assert "scheduled-feb31" not in scheduler.schedule
    assert scheduler.tick() == scheduler.max_interval
