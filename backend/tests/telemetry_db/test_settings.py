from __future__ import annotations

import importlib

import pytest


@pytest.fixture
def config_module(monkeypatch):
    for name in (
        "TELEMETRY_DATABASE_URL",
        "TELEMETRY_DB_ECHO",
        "TELEMETRY_DB_POOL_SIZE",
        "CORS_ORIGINS",
        "METRICS_ENABLED",
        "INGEST_MAX_RETRIES",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)

    import telemetry_db.config as config

    config = importlib.reload(config)
    yield config
    config.get_settings.cache_clear()
    config.get_service_settings.cache_clear()


def test_defaults(config_module):
    settings = config_module.get_settings()
    assert settings.url == config_module.DEFAULT_DB_URL
    assert settings.echo is False
    assert settings.pool_pre_ping is True

    service = config_module.get_service_settings()
    assert service.port == 3000
    assert service.cors_origins == ["*"]
    assert service.metrics_enabled is True
    assert service.ingest_max_retries == 0


def test_environment_overrides(config_module, monkeypatch):
    monkeypatch.setenv("TELEMETRY_DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("TELEMETRY_DB_ECHO", "yes")
    monkeypatch.setenv("TELEMETRY_DB_POOL_SIZE", "12")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.example, http://b.example")
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.setenv("INGEST_MAX_RETRIES", "3")
    monkeypatch.setenv("PORT", "8080")
    config_module.get_settings.cache_clear()
    config_module.get_service_settings.cache_clear()

    settings = config_module.get_settings()
    assert settings.url == "sqlite+pysqlite:///:memory:"
    assert settings.echo is True
    assert settings.pool_size == 12

    service = config_module.get_service_settings()
    assert service.cors_origins == ["http://a.example", "http://b.example"]
    assert service.metrics_enabled is False
    assert service.ingest_max_retries == 3
    assert service.port == 8080
