"""Unit tests for configuration management."""

import pytest

from src.utils.config import Config


class TestConfigInitialization:
    """Test Config class initialization and environment variable loading."""

    def test_config_loads_default_values(self, monkeypatch):
        """Test that Config uses default values when env vars not set."""
        for name in (
            "GEMINI_MODEL",
            "FAST_MODEL",
            "COMPLETION_TIMEOUT_MS",
            "WEB_DETAILED_TOKENS",
            "FAST_CONCISE_TOKENS",
            "MAX_SEARCH_ATTEMPTS",
            "DEFAULT_COUNTRY",
            "STORE_DB_FILE",
            "TAVILY_API_KEY",
        ):
            monkeypatch.delenv(name, raising=False)

        config = Config()

        assert config.GEMINI_MODEL == "gemini-3-flash-preview"
        assert config.FAST_MODEL == "gemini-2.5-flash-lite"
        assert config.COMPLETION_TIMEOUT_MS == 45000
        assert config.WEB_DETAILED_TOKENS == 4200
        assert config.WEB_CONCISE_TOKENS == 3000
        assert config.FAST_DETAILED_TOKENS == 2600
        assert config.FAST_CONCISE_TOKENS == 1800
        assert config.IMAGE_LOOKUP_MAX_TOKENS == 800
        assert config.MAX_SEARCH_ATTEMPTS == 2
        assert config.DEFAULT_COUNTRY == "United States"
        assert config.STORE_DB_FILE is None
        assert config.TAVILY_API_KEY == ""

    def test_config_loads_from_environment(self, monkeypatch):
        """Test that Config loads values from environment variables."""
        monkeypatch.setenv("GEMINI_API_KEY", "test_gemini_key")
        monkeypatch.setenv("GEMINI_MODEL", "custom-model")
        monkeypatch.setenv("COMPLETION_TIMEOUT_MS", "60000")
        monkeypatch.setenv("MAX_SEARCH_ATTEMPTS", "3")
        monkeypatch.setenv("APP_DOMAIN", "cook.example")
        monkeypatch.setenv("STORE_DB_FILE", "recipes.db")

        config = Config()

        assert config.GEMINI_API_KEY == "test_gemini_key"
        assert config.GEMINI_MODEL == "custom-model"
        assert config.COMPLETION_TIMEOUT_MS == 60000
        assert config.MAX_SEARCH_ATTEMPTS == 3
        assert config.APP_DOMAIN == "cook.example"
        assert config.STORE_DB_FILE == "recipes.db"

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("yes", True), ("false", False), ("0", False)])
    def test_boolean_flags(self, monkeypatch, value, expected):
        """Boolean env vars accept true/1/yes."""
        monkeypatch.setenv("IMAGE_FALLBACK_ENABLED", value)
        assert Config().IMAGE_FALLBACK_ENABLED is expected


class TestConfigValidation:
    """Test Config validation logic."""

    def test_defaults_are_valid_without_api_key(self, monkeypatch):
        """validate() does not require GEMINI_API_KEY (checked when a client is built)."""
        monkeypatch.setenv("GEMINI_API_KEY", "")
        Config().validate()

    def test_invalid_temperature(self, monkeypatch):
        """TEMPERATURE outside [0, 1] is rejected."""
        monkeypatch.setenv("TEMPERATURE", "1.5")
        with pytest.raises(ValueError, match="TEMPERATURE"):
            Config().validate()

    def test_token_budget_too_small(self, monkeypatch):
        """Token budgets below 512 are rejected."""
        monkeypatch.setenv("PARSE_RETRY_TOKENS", "100")
        with pytest.raises(ValueError, match="PARSE_RETRY_TOKENS"):
            Config().validate()

    def test_max_search_attempts_bounds(self, monkeypatch):
        """MAX_SEARCH_ATTEMPTS must be within [1, 5]."""
        monkeypatch.setenv("MAX_SEARCH_ATTEMPTS", "0")
        with pytest.raises(ValueError, match="MAX_SEARCH_ATTEMPTS"):
            Config().validate()

    def test_timeout_too_small(self, monkeypatch):
        """Completion timeouts below one second are rejected."""
        monkeypatch.setenv("FAST_COMPLETION_TIMEOUT_MS", "10")
        with pytest.raises(ValueError, match="COMPLETION_TIMEOUT_MS"):
            Config().validate()

    def test_app_domain_must_be_host(self, monkeypatch):
        """APP_DOMAIN must not contain a path."""
        monkeypatch.setenv("APP_DOMAIN", "example.com/recipes")
        with pytest.raises(ValueError, match="APP_DOMAIN"):
            Config().validate()
