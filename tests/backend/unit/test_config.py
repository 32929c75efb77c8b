import logging

from dungeonqueue.backend.config import LOG_FORMAT, configure_logging, load_settings

_ENV_VARS = (
    "DUNGEONQUEUE_DATABASE_URL",
    "DUNGEONQUEUE_HOST",
    "DUNGEONQUEUE_PORT",
    "DUNGEONQUEUE_QUEUE_TTL_SECONDS",
    "DUNGEONQUEUE_SWEEP_INTERVAL_SECONDS",
    "DUNGEONQUEUE_IO_TIMEOUT_SECONDS",
    "DUNGEONQUEUE_PROVISION_WORKERS",
    "DUNGEONQUEUE_LOG_LEVEL",
    "DUNGEONQUEUE_PROFILE_STORE",
)


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("DUNGEONQUEUE_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("DUNGEONQUEUE_HOST", "localhost")
    monkeypatch.setenv("DUNGEONQUEUE_PORT", "9000")
    monkeypatch.setenv("DUNGEONQUEUE_QUEUE_TTL_SECONDS", "600")
    monkeypatch.setenv("DUNGEONQUEUE_SWEEP_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("DUNGEONQUEUE_IO_TIMEOUT_SECONDS", "1.5")
    monkeypatch.setenv("DUNGEONQUEUE_PROVISION_WORKERS", "8")
    monkeypatch.setenv("DUNGEONQUEUE_LOG_LEVEL", "debug")
    monkeypatch.setenv("DUNGEONQUEUE_PROFILE_STORE", "profiles.factory:build")

    settings = load_settings()

    assert settings.database_url == "postgresql://local"
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.queue_ttl_seconds == 600
    assert settings.sweep_interval_seconds == 2.5
    assert settings.io_timeout_seconds == 1.5
    assert settings.provision_workers == 8
    assert settings.log_level == "DEBUG"
    assert settings.profile_store_factory == "profiles.factory:build"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.queue_ttl_seconds == 1800
    assert settings.sweep_interval_seconds == 15
    assert settings.io_timeout_seconds == 5
    assert settings.provision_workers == 4
    assert settings.log_level == "INFO"
    assert settings.profile_store_factory is None


def test_configure_logging_installs_backend_format(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("DEBUG")

    assert calls == [{"level": "DEBUG", "format": LOG_FORMAT}]
