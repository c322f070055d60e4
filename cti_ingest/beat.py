"""Celery beat scheduler that fires the repeating-job registry.

Run with::

    celery -A cti_ingest.celery_app:app beat -S cti_ingest.beat:SourceBeatScheduler
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional

from celery.beat import Scheduler

from cti_ingest.services.scheduler import (
    FETCH_QUEUE,
    FETCH_TASK_NAME,
    RepeatingJobStore,
    ScheduleEntry,
    crontab_from_string,
    default_schedule_store,
)
from cti_ingest.settings import get_settings
from cti_ingest.utils.logging import get_logger

logger = get_logger(__name__)


def build_beat_schedule(entries: Iterable[ScheduleEntry]) -> Dict[str, Dict[str, Any]]:
    schedule: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        try:
            run_on = crontab_from_string(entry.cron)
        except ValueError:
            logger.warning("beat.entry_invalid_cron", extra={"schedule_key": entry.key, "cron": entry.cron})
            continue
        schedule[entry.key] = {
            "task": FETCH_TASK_NAME,
            "schedule": run_on,
            "args": (entry.source_id,),
            "options": {"queue": FETCH_QUEUE},
        }
    return schedule


class SourceBeatScheduler(Scheduler):
    """Beat scheduler whose entries mirror the repeating-job registry.

    The registry is re-read at most every ``SCHEDULE_REFRESH_SECONDS``; entries that
    survive a refresh keep their last-run bookkeeping.
    """

    def __init__(self, *args: Any, store: Optional[RepeatingJobStore] = None, **kwargs: Any) -> None:
        self._store = store
        self._last_refresh: Optional[float] = None
        self.refresh_interval = float(get_settings().schedule_refresh_seconds)
        super().__init__(*args, **kwargs)
        self.max_interval = min(self.max_interval, self.refresh_interval)

    def _get_store(self) -> RepeatingJobStore:
        if self._store is None:
            self._store = default_schedule_store()
        return self._store

    def setup_schedule(self) -> None:
        self.install_default_entries(self.data)
        self.refresh_from_store(force=True)

    def refresh_from_store(self, force: bool = False) -> bool:
        now = time.monotonic()
        if not force and self._last_refresh is not None and now - self._last_refresh < self.refresh_interval:
            return False
        self._last_refresh = now
        wanted = build_beat_schedule(self._get_store().entries())
        self.merge_inplace(wanted)
        logger.debug("beat.refreshed", extra={"entries": len(wanted)})
        return True

    def tick(self, *args: Any, **kwargs: Any) -> float:
        self.refresh_from_store()
        return super().tick(*args, **kwargs)
