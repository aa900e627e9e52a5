import pytest

from config import DEFAULT_SECRET_KEY, load_settings
from models import DEFAULT_CATEGORIES


def test_defaults(monkeypatch):
    for name in ("FINANCE_DATA_DIR", "SECRET_KEY", "FINANCE_CATEGORIES", "FINANCE_AUTH_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.data_dir == "data"
    assert settings.secret_key == DEFAULT_SECRET_KEY
    assert settings.categories == DEFAULT_CATEGORIES
    assert settings.auth_enabled is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FINANCE_DATA_DIR", "/srv/finance")
    monkeypatch.setenv("FINANCE_LENIENT_READS", "yes")
    monkeypatch.setenv("FINANCE_AUTH_ENABLED", "false")
    monkeypatch.setenv("FINANCE_CATEGORIES", " Rent, food ,")
    monkeypatch.setenv("FINANCE_CORS_ORIGINS", "http://a.test, http://b.test")
    settings = load_settings()
    assert settings.data_dir == "/srv/finance"
    assert settings.lenient_reads is True
    assert settings.auth_enabled is False
    assert settings.categories == ("rent", "food")
    assert settings.cors_origins == ("http://a.test", "http://b.test")


@pytest.mark.parametrize("name,value", [
    ("FINANCE_LENIENT_READS", "maybe"),
    ("FINANCE_LOCK_TIMEOUT", "0"),
    ("FINANCE_LOCK_TIMEOUT", "soon"),
])
def test_bad_values_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_settings()
