from pathlib import Path

import pytest

from backend.src.services import config as config_module

ENV_KEYS = (
    "MINDMAP_DB_PATH",
    "DEFAULT_AI_PROVIDER",
    "PROVIDER_MAX_RETRIES",
    "PROVIDER_RETRY_BASE_DELAY",
    "PROVIDER_RETRY_MAX_JITTER",
    "PROVIDER_TIMEOUT_SECONDS",
    "PROVIDER_STATUS_TTL_SECONDS",
    "SUMMARY_CACHE_TTL_SECONDS",
)


@pytest.fixture(autouse=True)
def restore_config_cache(monkeypatch):
    """
    Ensure configuration cache is cleared between tests.
    """
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    config_module.get_config.cache_clear()
    yield
    config_module.get_config.cache_clear()


def test_get_config_defaults(monkeypatch, tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "maps.db"
    monkeypatch.setenv("MINDMAP_DB_PATH", str(db_path))

    cfg = config_module.reload_config()

    assert cfg.db_path == db_path.resolve()
    assert db_path.parent.is_dir()
    assert cfg.default_provider is None
    assert cfg.provider_max_retries == 3
    assert cfg.provider_retry_base_delay == 1.0
    assert cfg.provider_status_ttl_seconds == 300.0
    assert cfg.summary_cache_ttl_seconds == 3600.0


def test_get_config_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MINDMAP_DB_PATH", str(tmp_path / "maps.db"))
    monkeypatch.setenv("DEFAULT_AI_PROVIDER", "  Gemini ")
    monkeypatch.setenv("PROVIDER_MAX_RETRIES", "0")
    monkeypatch.setenv("SUMMARY_CACHE_TTL_SECONDS", "60")

    cfg = config_module.reload_config()

    assert cfg.default_provider == "gemini"
    assert cfg.provider_max_retries == 0
    assert cfg.summary_cache_ttl_seconds == 60.0


def test_get_config_is_cached(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MINDMAP_DB_PATH", str(tmp_path / "maps.db"))

    assert config_module.get_config() is config_module.get_config()


def test_get_config_rejects_negative_retries(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MINDMAP_DB_PATH", str(tmp_path / "maps.db"))
    monkeypatch.setenv("PROVIDER_MAX_RETRIES", "-1")

    with pytest.raises(ValueError):
        config_module.reload_config()


def test_get_config_rejects_zero_ttl(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MINDMAP_DB_PATH", str(tmp_path / "maps.db"))
    monkeypatch.setenv("PROVIDER_STATUS_TTL_SECONDS", "0")

    with pytest.raises(ValueError):
        config_module.reload_config()
