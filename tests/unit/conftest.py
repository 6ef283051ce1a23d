"""Shared fixtures for unit tests."""

import pytest

from src.models.models import SearchFilters
from src.utils.config import Config


@pytest.fixture
def settings(monkeypatch):
    """Fresh Config with deterministic defaults, independent of the local .env."""
    for name in ("GEMINI_MODEL", "FAST_MODEL", "MAX_SEARCH_ATTEMPTS", "SCHEMA_WITH_WEB_SEARCH", "APP_DOMAIN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("TAVILY_API_KEY", "")
    monkeypatch.setenv("IMAGE_FALLBACK_ENABLED", "true")
    return Config()


@pytest.fixture
def filters():
    return SearchFilters(query="jollof rice", country="Nigeria", max_results=5)


def _recipe_dict(index: int = 1, **overrides) -> dict:
    """Valid raw recipe dict as the completion service would return it."""
    recipe = {
        "title": f"Recipe {index}",
        "source": f"https://example.com/recipes/{index}",
        "ingredients": [{"item": "rice", "quantity": 2, "unit": "cup"}],
        "instructions": [{"step": 1, "text": "Cook everything."}],
    }
    recipe.update(overrides)
    return recipe


@pytest.fixture
def make_recipe():
    """Factory for valid raw recipe dicts: make_recipe(index, **overrides)."""
    return _recipe_dict
