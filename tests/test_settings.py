import pytest

from errors import ConfigurationError, IngestionError, IngestionFailure
from settings import RELEVANCE_THRESHOLD, Settings


def test_defaults_from_empty_environment(monkeypatch):
    for name in ("OPENAI_API_KEY", "RELEVANCE_THRESHOLD", "TOP_K", "SCRAPER_BACKEND", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.openai_api_key is None
    assert settings.relevance_threshold == RELEVANCE_THRESHOLD
    assert settings.top_k == 5
    assert settings.scraper_backend == "firecrawl"
    assert settings.cors_origins == ["*"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RELEVANCE_THRESHOLD", "0.55")
    monkeypatch.setenv("MAX_HISTORY_TURNS", "4")
    monkeypatch.setenv("SUPPRESS_SUFFIX_ON_PARTIAL_REFUSAL", "true")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.com, https://b.com")

    settings = Settings.from_env()

    assert settings.relevance_threshold == 0.55
    assert settings.max_history_turns == 4
    assert settings.suppress_suffix_on_partial_refusal is True
    assert settings.cors_origins == ["https://a.com", "https://b.com"]


def test_missing_provider_key_is_configuration_error():
    with pytest.raises(ConfigurationError) as exc_info:
        Settings(openai_api_key=None).require_provider()
    assert exc_info.value.to_dict()["details"] == {"setting": "OPENAI_API_KEY"}
    assert Settings(openai_api_key="sk-test").require_provider() == "sk-test"


def test_scraper_requirements():
    with pytest.raises(ConfigurationError):
        Settings(scraper_backend="firecrawl", firecrawl_api_key=None).require_scraper()
    with pytest.raises(ConfigurationError):
        Settings(scraper_backend="selenium").require_scraper()
    Settings(scraper_backend="html").require_scraper()


def test_ingestion_error_serializes_reason_and_url():
    error = IngestionError("No content", IngestionFailure.NO_CONTENT, url="https://a.com")
    assert error.to_dict() == {
        "error": "No content",
        "code": "ingestion_error",
        "details": {"reason": "no_content", "url": "https://a.com"},
    }
