import pytest
from pydantic import ValidationError

from slotbook.core.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.cache_ttl_seconds == 30
    assert settings.max_concurrent_bookings == 3
    assert settings.max_slots_per_booking == 10
    assert settings.timezone == "America/New_York"


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("CACHE_TTL_SECONDS", "120")
    monkeypatch.setenv("MAX_CONCURRENT_BOOKINGS", "5")
    monkeypatch.setenv("ROW_STORE", "memory")
    settings = Settings(_env_file=None)
    assert settings.cache_ttl_seconds == 120
    assert settings.max_concurrent_bookings == 5
    assert settings.row_store == "memory"


@pytest.mark.parametrize("field", ["cache_ttl_seconds", "max_concurrent_bookings", "max_slots_per_booking"])
def test_limits_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})


@pytest.mark.parametrize("ttl", [0, -1])
def test_cache_ttl_must_be_positive(ttl):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, cache_ttl_seconds=ttl)


def test_sub_second_cache_ttl_is_allowed(monkeypatch):
    monkeypatch.setenv("CACHE_TTL_SECONDS", "0.5")
    assert Settings(_env_file=None).cache_ttl_seconds == 0.5


def test_private_key_newlines_are_unescaped():
    settings = Settings(_env_file=None, google_private_key="-----BEGIN-----\\nabc\\n-----END-----")
    assert settings.google_private_key == "-----BEGIN-----\nabc\n-----END-----"


def test_allowed_origins_list():
    settings = Settings(_env_file=None, allowed_origins="https://a.example, https://b.example,")
    assert settings.allowed_origins_list == ["https://a.example", "https://b.example"]
