# CirrusFlags/cirrusflags/tests/test_config.py
"""
Unit tests for EngineConfig and its environment loader.
"""


import pytest

from cirrusflags.config import EngineConfig
from cirrusflags.errors.exceptions import FlagConfigurationError


ENV_VARS = (
    "CIRRUS_CACHE_TTL",
    "CIRRUS_SEGMENT_CACHE_TTL",
    "CIRRUS_CACHE_MAX_SIZE",
    "CIRRUS_SEGMENT_CACHE_MAX_SIZE",
    "CIRRUS_OFFLINE_MODE",
    "CIRRUS_DEBUG",
    "CIRRUS_FALLBACKS",
    "CIRRUS_FLAGS_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = EngineConfig.from_env()
    assert config.cache_ttl == 300
    assert config.segment_cache_ttl == 60
    assert config.cache_max_size == 10000
    assert config.segment_cache_max_size == 10000
    assert config.offline_mode is False
    assert config.fallbacks == {}
    assert config.flags_file is None


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("CIRRUS_CACHE_TTL", "0")
    monkeypatch.setenv("CIRRUS_CACHE_MAX_SIZE", "500")
    monkeypatch.setenv("CIRRUS_OFFLINE_MODE", "true")
    monkeypatch.setenv("CIRRUS_DEBUG", "1")
    monkeypatch.setenv("CIRRUS_FALLBACKS", '{"checkout-v2": "control"}')
    monkeypatch.setenv("CIRRUS_FLAGS_FILE", "/etc/cirrus/flags.json")

    config = EngineConfig.from_env()
    assert config.cache_ttl == 0
    assert config.cache_max_size == 500
    assert config.offline_mode is True
    assert config.debug is True
    assert config.fallback_for("checkout-v2") == "control"
    assert config.fallback_for("other") is False
    assert config.flags_file == "/etc/cirrus/flags.json"


@pytest.mark.parametrize(
    "name,value",
    [
        ("CIRRUS_CACHE_TTL", "soon"),
        ("CIRRUS_SEGMENT_CACHE_TTL", "-1"),
        ("CIRRUS_CACHE_MAX_SIZE", "0"),
        ("CIRRUS_SEGMENT_CACHE_MAX_SIZE", "lots"),
        ("CIRRUS_FALLBACKS", "{not json"),
        ("CIRRUS_FALLBACKS", "[1, 2]"),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(FlagConfigurationError):
        EngineConfig.from_env()
