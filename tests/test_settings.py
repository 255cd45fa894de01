import pytest

from opsqueue.config.settings import Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "OpsQueue"
    assert settings.version == "1.0.0"
    assert settings.job_default_max_attempts == 5
    assert settings.job_backoff_base_s == 30
    assert settings.job_max_backoff_s == 3600
    assert settings.job_stale_after_s == 600
    assert settings.job_time_budget_s == 240
    assert settings.job_registry_factory.endswith("registry_init:build_job_registry")


def test_production_requires_cron_secret():
    """Trigger endpoints cannot be left open in production."""
    with pytest.raises(ValueError, match="CRON_SECRET must be set"):
        Settings(environment="production", cron_secret=None)


def test_production_with_cron_secret():
    settings = Settings(environment="production", cron_secret="s3cret")
    assert settings.environment == "production"


def test_backoff_bounds_validated():
    with pytest.raises(ValueError, match="JOB_MAX_BACKOFF_S"):
        Settings(job_backoff_base_s=100, job_max_backoff_s=10)


def test_is_sqlite():
    assert Settings(database_url="sqlite+aiosqlite:///./x.db").is_sqlite
    assert not Settings(
        database_url="postgresql+asyncpg://u:p@localhost/opsqueue"
    ).is_sqlite


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("JOB_CONCURRENCY", "9")
    monkeypatch.setenv("CRON_SECRET", "from-env")

    settings = Settings()

    assert settings.job_concurrency == 9
    assert settings.cron_secret == "from-env"


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
