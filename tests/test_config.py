import pytest

from deedscraper.config import RetrievalSettings
from deedscraper.errors import ConfigurationError


def test_from_env_reads_current_environment(monkeypatch) -> None:
    monkeypatch.setenv("HEADLESS", "false")
    monkeypatch.setenv("LOCATE_TIMEOUT_MS", "2500")
    monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "4")
    monkeypatch.setenv("RESOLVER_ENDPOINT", "https://parcels.test/api")
    monkeypatch.delenv("RESOLVER_TOKEN", raising=False)

    settings = RetrievalSettings.from_env()

    assert settings.headless is False
    assert settings.locate_timeout_ms == 2500
    assert settings.max_concurrent_sessions == 4
    assert settings.resolver_endpoint == "https://parcels.test/api"
    assert settings.resolver_token is None


def test_from_env_validates(monkeypatch) -> None:
    monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "0")
    with pytest.raises(ConfigurationError):
        RetrievalSettings.from_env()


@pytest.mark.parametrize(
    "overrides",
    [
        {"locate_timeout_ms": 0},
        {"stage_timeout_s": -1},
        {"politeness_min_ms": 2000, "politeness_max_ms": 1000},
        {"politeness_min_ms": -5},
        {"max_concurrent_sessions": 0},
    ],
)
def test_invalid_settings(overrides) -> None:
    with pytest.raises(ConfigurationError):
        RetrievalSettings(**overrides).validate()


def test_defaults_are_valid() -> None:
    settings = RetrievalSettings()
    assert settings.validate() is settings
