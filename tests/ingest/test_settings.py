import pytest

from cti_ingest.settings import get_settings, reset_settings_cache


def test_get_settings_reads_environment():
    settings = get_settings()

    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.postgres_dsn.startswith("sqlite:///")
    assert settings.fetch_timeout_seconds == 5
    assert settings.fetch_user_agent == "cti-ingest-tests/1.0"


def test_defaults_apply(monkeypatch):
    monkeypatch.delenv("FETCH_TIMEOUT_SECONDS")
    reset_settings_cache()

    settings = get_settings()

    assert settings.fetch_timeout_seconds == 30
    assert settings.celery_worker_concurrency == 3
    assert settings.schedule_registry_key == "cti_ingest:schedules"
    assert settings.log_json is False


def test_reset_settings_cache_reloads(monkeypatch):
    first = get_settings()
    assert first.fetch_timeout_seconds == 5

    monkeypatch.setenv("FETCH_TIMEOUT_SECONDS", "12")
    assert get_settings().fetch_timeout_seconds == 5

    reset_settings_cache()
    assert get_settings().fetch_timeout_seconds == 12


def test_invalid_dsn_raises(monkeypatch):
    monkeypatch.setenv("POSTGRES_DSN", "not-a-dsn")
    reset_settings_cache()

    with pytest.raises(RuntimeError) as exc:
        get_settings()

    assert "POSTGRES_DSN" in str(exc.value)


def test_missing_redis_url_raises(monkeypatch):
    monkeypatch.delenv("INGESTION_REDIS_URL")
    reset_settings_cache()

    with pytest.raises(RuntimeError):
        get_settings()
