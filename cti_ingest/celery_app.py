"""Celery application bootstrap for the ingestion worker and beat."""

from __future__ import annotations

from celery import Celery, signals

from .db.session import check_connection, dispose_engine
from .services.scheduler import FETCH_QUEUE, FETCH_TASK_NAME, default_reconciler
from .settings import Settings, get_settings
from .utils.logging import configure_logging, get_logger

_CELERY_APP: Celery | None = None


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Build a Celery instance from settings."""
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery(
        "cti_ingest",
        broker=config.redis_url,
        backend=config.redis_url,
        include=["cti_ingest.tasks.fetch"],
    )
    app.conf.update(
        task_default_queue="cti_ingest.default",
        task_default_exchange="cti_ingest",
        task_default_routing_key="cti_ingest.default",
        task_routes={FETCH_TASK_NAME: {"queue": FETCH_QUEUE}},
        task_soft_time_limit=config.celery_task_soft_time_limit,
        task_time_limit=config.celery_task_soft_time_limit + 30,
        worker_concurrency=config.celery_worker_concurrency,
        worker_prefetch_multiplier=1,
        beat_scheduler="cti_ingest.beat:SourceBeatScheduler",
        beat_max_loop_interval=config.schedule_refresh_seconds,
        broker_connection_timeout=10,
        redis_socket_timeout=10,
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    _install_signal_handlers()
    return app


def get_celery_app() -> Celery:
    """Return the singleton Celery instance."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _install_signal_handlers() -> None:
    logger = get_logger("cti_ingest.worker")

    # Store first: an unreachable store aborts worker startup.
    @signals.worker_init.connect(weak=False, dispatch_uid="cti_ingest.check_store")
    def _on_worker_init(sender=None, **kwargs):  # noqa: ANN001
        check_connection()
        logger.info("Item store connection verified")

    # Forked pool children must not share the parent's pooled connections.
    @signals.worker_process_init.connect(weak=False, dispatch_uid="cti_ingest.reset_store")
    def _on_worker_process_init(sender=None, **kwargs):  # noqa: ANN001
        dispose_engine()

    @signals.worker_ready.connect(weak=False, dispatch_uid="cti_ingest.reconcile")
    def _on_worker_ready(sender=None, **kwargs):  # noqa: ANN001
        try:
            default_reconciler().reconcile()
        except Exception:  # keep consuming; beat keeps the previous schedule
            logger.exception("schedule.reconcile_failed")

    @signals.worker_shutdown.connect(weak=False, dispatch_uid="cti_ingest.dispose_store")
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        dispose_engine()
        logger.info("Celery worker shutdown detected", extra={"sender": str(sender)})


def __getattr__(name: str) -> Celery:
    # ``celery -A cti_ingest.celery_app:app`` resolves the app lazily.
    if name == "app":
        return get_celery_app()
    raise AttributeError(name)
