"""Configuration management for the Recipe Ingestion service.

Loads environment variables from system environment and .env file.
Priority order: system environment > .env file > hardcoded defaults
"""

import os
from typing import Optional

from dotenv import load_dotenv


# Load .env file (if exists, silently continues if missing)
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    """Pipeline configuration loaded from environment variables."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        self.GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
        # Primary Model: web-search-augmented calls
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
        # Fast Model: generation-only calls (no browsing), including timeout recovery
        self.FAST_MODEL: str = os.getenv("FAST_MODEL", "gemini-2.5-flash-lite")
        # Temperature: 0.2 keeps recipe output consistent across retries
        self.TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.2"))

        # Hard wall-clock deadlines for a single completion call (milliseconds)
        self.COMPLETION_TIMEOUT_MS: int = int(os.getenv("COMPLETION_TIMEOUT_MS", "45000"))
        self.FAST_COMPLETION_TIMEOUT_MS: int = int(os.getenv("FAST_COMPLETION_TIMEOUT_MS", "30000"))

        # Output token budgets per mode and instruction detail
        # Web search calls get larger budgets: grounded answers carry URLs and more text
        self.WEB_DETAILED_TOKENS: int = int(os.getenv("WEB_DETAILED_TOKENS", "4200"))
        self.WEB_CONCISE_TOKENS: int = int(os.getenv("WEB_CONCISE_TOKENS", "3000"))
        self.FAST_DETAILED_TOKENS: int = int(os.getenv("FAST_DETAILED_TOKENS", "2600"))
        self.FAST_CONCISE_TOKENS: int = int(os.getenv("FAST_CONCISE_TOKENS", "1800"))
        # Recovery budgets (see RecipeSearchPipeline recovery rules)
        self.TIMEOUT_RETRY_TOKENS: int = int(os.getenv("TIMEOUT_RETRY_TOKENS", "2000"))
        self.PARSE_RETRY_TOKENS: int = int(os.getenv("PARSE_RETRY_TOKENS", "2000"))
        self.EMPTY_RETRY_TOKENS: int = int(os.getenv("EMPTY_RETRY_TOKENS", "1800"))
        # Image lookup: single batched call, small JSON payload
        self.IMAGE_LOOKUP_MAX_TOKENS: int = int(os.getenv("IMAGE_LOOKUP_MAX_TOKENS", "800"))

        # Maximum completion attempts per search (initial call + recoveries). Default: 2
        self.MAX_SEARCH_ATTEMPTS: int = int(os.getenv("MAX_SEARCH_ATTEMPTS", "2"))
        # Request JSON-schema constrained output together with Google Search grounding.
        # Gemini 3 models support this; set false for older models that reject the combination
        self.SCHEMA_WITH_WEB_SEARCH: bool = _env_bool("SCHEMA_WITH_WEB_SEARCH", "true")
        # Country used when a search request leaves it blank
        self.DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY", "United States")

        # Image Enrichment: backfill missing recipe images after a search
        self.IMAGE_FALLBACK_ENABLED: bool = _env_bool("IMAGE_FALLBACK_ENABLED", "true")
        # Tavily API Key: secondary image provider (tier 2 is skipped when empty)
        self.TAVILY_API_KEY: str = os.getenv("TAVILY_API_KEY", "")

        # Domain used to build source URLs for generation-only recipes
        self.APP_DOMAIN: str = os.getenv("APP_DOMAIN", "recipes.local")
        # User-Agent sent when fetching source pages for hydration and image repair
        self.IMPORTER_USER_AGENT: str = os.getenv(
            "IMPORTER_USER_AGENT",
            "Mozilla/5.0 (compatible; RecipeIngest-Importer/1.0)",
        )
        # Per-page fetch timeout (seconds)
        self.FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))

        # SQLite file for the persistent recipe store. None = in-memory store
        self.STORE_DB_FILE: Optional[str] = os.getenv("STORE_DB_FILE")

    def validate(self) -> None:
        """Validate configuration values.

        The Gemini API key is not checked here; it is required only when a
        client is built (see create_genai_client).

        Raises:
            ValueError: If invalid values are provided.
        """
        if not (0.0 <= self.TEMPERATURE <= 1.0):
            raise ValueError(
                f"TEMPERATURE must be between 0.0 and 1.0, got: {self.TEMPERATURE}"
            )
        if self.COMPLETION_TIMEOUT_MS < 1000 or self.FAST_COMPLETION_TIMEOUT_MS < 1000:
            raise ValueError(
                "COMPLETION_TIMEOUT_MS and FAST_COMPLETION_TIMEOUT_MS must be at least 1000, "
                f"got: {self.COMPLETION_TIMEOUT_MS}, {self.FAST_COMPLETION_TIMEOUT_MS}"
            )
        budgets = {
            "WEB_DETAILED_TOKENS": self.WEB_DETAILED_TOKENS,
            "WEB_CONCISE_TOKENS": self.WEB_CONCISE_TOKENS,
            "FAST_DETAILED_TOKENS": self.FAST_DETAILED_TOKENS,
            "FAST_CONCISE_TOKENS": self.FAST_CONCISE_TOKENS,
            "TIMEOUT_RETRY_TOKENS": self.TIMEOUT_RETRY_TOKENS,
            "PARSE_RETRY_TOKENS": self.PARSE_RETRY_TOKENS,
            "EMPTY_RETRY_TOKENS": self.EMPTY_RETRY_TOKENS,
        }
        for name, value in budgets.items():
            if value < 512:
                raise ValueError(f"{name} must be at least 512, got: {value}")
        if self.IMAGE_LOOKUP_MAX_TOKENS < 128:
            raise ValueError(
                f"IMAGE_LOOKUP_MAX_TOKENS must be at least 128, got: {self.IMAGE_LOOKUP_MAX_TOKENS}"
            )
        if not (1 <= self.MAX_SEARCH_ATTEMPTS <= 5):
            raise ValueError(
                f"MAX_SEARCH_ATTEMPTS must be between 1 and 5, got: {self.MAX_SEARCH_ATTEMPTS}"
            )
        if self.FETCH_TIMEOUT_SECONDS <= 0:
            raise ValueError(
                f"FETCH_TIMEOUT_SECONDS must be positive, got: {self.FETCH_TIMEOUT_SECONDS}"
            )
        if not self.APP_DOMAIN or "/" in self.APP_DOMAIN:
            raise ValueError(f"APP_DOMAIN must be a bare host name, got: {self.APP_DOMAIN!r}")


# Create module-level config instance and validate immediately
config = Config()
config.validate()
