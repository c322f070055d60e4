from cti_ingest.celery_app import create_celery_app
from cti_ingest.services.scheduler import FETCH_QUEUE, FETCH_TASK_NAME
from cti_ingest.settings import get_settings, reset_settings_cache


def test_create_celery_app_uses_settings(monkeypatch):
    monkeypatch.setenv("CELERY_WORKER_CONCURRENCY", "7")
    monkeypatch.setenv("CELERY_TASK_SOFT_TIME_LIMIT", "90")
    reset_settings_cache()

    app = create_celery_app(get_settings())

    assert app.conf.broker_url == "redis://localhost:6379/0"
    assert app.conf.worker_concurrency == 7
    assert app.conf.task_soft_time_limit == 90
    assert app.conf.task_time_limit > 90
    assert app.conf.worker_prefetch_multiplier == 1
    assert app.conf.beat_scheduler == "cti_ingest.beat:SourceBeatScheduler"
    assert app.conf.task_routes[FETCH_TASK_NAME] == {"queue": FETCH_QUEUE}
    assert app.conf.timezone == "UTC"


def test_default_concurrency_is_three():
    app = create_celery_app(get_settings())
    assert app.conf.worker_concurrency == 3


def test_fetch_task_is_registered():
    app = create_celery_app(get_settings())
    app.loader.import_default_modules()

    assert FETCH_TASK_NAME in app.tasks
