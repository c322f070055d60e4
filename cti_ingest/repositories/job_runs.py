"""Job run lifecycle recording."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from cti_ingest.db.models import JobRun, JobStatus
from cti_ingest.models.domain import IngestStats


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        source_id: str | None,
        task_name: str,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            status=JobStatus.RUNNING,
            source_id=source_id,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )

    def record(self, stats: IngestStats) -> None:
        self._job.fetched_count = stats.fetched
        self._job.inserted_count = stats.inserted
        self._job.duplicate_count = stats.duplicates
        self._job.error_count = stats.errors

    def __enter__(self) -> "JobRunRecorder":
        self._session.add(self._job)
        # Commit initial RUNNING state so we have a durable record even if later work fails
        self._session.commit()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is None:
            self._job.status = JobStatus.SUCCEEDED
        else:
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512]
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        # Commit final state before outer transaction may roll back
        try:
            self._session.commit()
        except Exception:  # pragma: no cover
            self._session.rollback()
            if exc is None:
                raise
            # the job's own error is the one that propagates

    @property
    def job(self) -> JobRun:
        return self._job
