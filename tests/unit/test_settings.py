"""
Tests for import settings.
"""

from catalog_import.config.settings import ImportSettings, get_settings, reset_settings


def test_environment_aliases(monkeypatch):
    monkeypatch.setenv("IMPORT_MAX_ROWS", "250")
    monkeypatch.setenv("IMPORT_JOB_TIMEOUT_MINUTES", "0.5")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    settings = ImportSettings(_env_file=None)

    assert settings.max_rows == 250
    assert settings.job_timeout_seconds == 30
    assert settings.database_url == "sqlite://"


def test_currencies_are_normalized():
    settings = ImportSettings(_env_file=None, allowed_currencies="USD, eur,,gbp")
    assert settings.allowed_currencies == ["usd", "eur", "gbp"]


def test_currencies_accept_json():
    settings = ImportSettings(_env_file=None, allowed_currencies='["JPY"]')
    assert settings.allowed_currencies == ["jpy"]


def test_max_file_size_bytes():
    assert ImportSettings(_env_file=None, max_file_size_mb=2).max_file_size_bytes == 2097152


def test_settings_singleton(monkeypatch):
    reset_settings()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("IMPORT_MAX_ROWS", "7")
    reset_settings()
    assert get_settings().max_rows == 7
    reset_settings()
