"""Tests for environment-driven settings."""

import math

from newsdash.settings import Settings


def test_defaults():
    settings = Settings.model_validate({})

    assert settings.api_url == "http://localhost:8080"
    assert settings.api_key is None
    assert settings.request_timeout == 30
    assert settings.max_retries == 3
    assert settings.cache_gc_seconds == 300
    assert settings.poll_max_interval == 600
    assert settings.poll_backoff_factor == 2
    assert math.isinf(settings.poll_hidden_multiplier)
    assert settings.poll_idle_after_seconds == 300
    assert settings.poll_idle_multiplier == 4
    assert settings.reconnect_refresh_age_seconds == 60
    assert settings.reconnect_grace_seconds == 3
    assert settings.locale == "nl"
    assert settings.debug is False


def test_from_env(monkeypatch):
    monkeypatch.setenv("API_URL", "https://news.example.com")
    monkeypatch.setenv("API_KEY", "")
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("POLL_HIDDEN_MULTIPLIER", "4")
    monkeypatch.setenv("LOCALE", "en")
    monkeypatch.setenv("DEBUG", "true")

    settings = Settings.from_env()

    assert settings.api_url == "https://news.example.com"
    assert settings.api_key is None
    assert settings.max_retries == 5
    assert settings.poll_hidden_multiplier == 4
    assert settings.locale == "en"
    assert settings.debug is True


def test_field_names_are_accepted():
    settings = Settings(api_url="http://api.test", retry_delay=0)

    assert settings.api_url == "http://api.test"
    assert settings.retry_delay == 0
