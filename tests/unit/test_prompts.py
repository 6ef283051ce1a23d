"""Unit tests for prompt and input builders."""

import json

from src.models.models import SearchFilters
from src.prompts.prompts import (
    STRICT_JSON_DIRECTIVE,
    build_image_lookup_prompt,
    build_input,
    build_instructions,
)


class TestBuildInstructions:
    """Test build_instructions()."""

    def test_web_search_mode(self):
        """Web mode asks for real sources and ends with the strict JSON directive."""
        text = build_instructions(web_search=True, detailed=False)
        assert "Web Search Enabled" in text
        assert "Concise" in text
        assert text.endswith(STRICT_JSON_DIRECTIVE)

    def test_generation_mode(self):
        """Generation mode forbids browsing."""
        text = build_instructions(web_search=False, detailed=True)
        assert "No Browsing" in text
        assert "Detailed" in text
        assert "Web Search Enabled" not in text


class TestBuildInput:
    """Test build_input()."""

    def test_omits_empty_fields(self):
        """Undefined query and empty lists are left out."""
        payload = json.loads(build_input(SearchFilters(country="Nigeria")))
        assert payload == {"country": "Nigeria", "maxResults": 5, "instructionDetail": "concise"}

    def test_full_payload_is_compact(self):
        """All fields appear in camelCase with no insignificant whitespace."""
        filters = SearchFilters(
            query="jollof",
            country="Nigeria",
            include_ingredients=["rice"],
            exclude_ingredients=["peanuts"],
            max_results=8,
            exclude_sources=["https://a.example/x"],
            detailed_instructions=True,
        )
        text = build_input(filters)
        assert " " not in text
        payload = json.loads(text)
        assert payload["query"] == "jollof"
        assert payload["includeIngredients"] == ["rice"]
        assert payload["excludeIngredients"] == ["peanuts"]
        assert payload["maxResults"] == 8
        assert payload["excludeSources"] == ["https://a.example/x"]
        assert payload["instructionDetail"] == "detailed"

    def test_max_results_override_is_clamped(self):
        """Attempt overrides are clamped to [1, 10]."""
        filters = SearchFilters(country="Nigeria", max_results=9)
        assert json.loads(build_input(filters, max_results=3))["maxResults"] == 3
        assert json.loads(build_input(filters, max_results=0))["maxResults"] == 1
        assert json.loads(build_input(filters, max_results=40))["maxResults"] == 10

    def test_non_ascii_is_kept(self):
        """Non-ASCII text is not escaped."""
        assert "Côte d'Ivoire" in build_input(SearchFilters(country="Côte d'Ivoire"))


class TestImageLookupPrompt:
    """Test build_image_lookup_prompt()."""

    def test_lists_recipes(self):
        """The input carries the source and title of each recipe."""
        instructions, input_text = build_image_lookup_prompt([{"source": "https://a.example/x", "title": "Stew"}])
        assert "image" in instructions
        assert json.loads(input_text) == {"recipes": [{"source": "https://a.example/x", "title": "Stew"}]}
