"""Unit tests for the image enrichment pass."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.enrichment.images import (
    ImageEnricher,
    TavilyImageSearch,
    choose_image,
    collect_image_candidates,
    likely_image,
)
from src.models.models import RecipeRecord, ResponseEnvelope, ResponseMeta, SearchFilters, UsedFilters


def _recipe(index, image=None):
    return RecipeRecord.model_validate(
        {
            "title": f"Recipe {index}",
            "source": f"https://cook.example/r/{index}",
            "image": image,
            "ingredients": [{"item": "rice"}],
            "instructions": [{"step": 1, "text": "Cook."}],
        }
    )


def _envelope(*recipes, filters=None):
    filters = filters or SearchFilters(country="Nigeria")
    return ResponseEnvelope(recipes=list(recipes), meta=ResponseMeta(used_filters=UsedFilters.from_filters(filters)))


def _model_invoker(images):
    invoker = MagicMock()
    invoker.complete = AsyncMock(return_value=json.dumps({"images": images}))
    return invoker


class TestHelpers:
    """Test image URL helpers."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://cdn.example/a.jpg", True),
            ("https://cdn.example/a.JPEG?w=800", True),
            ("https://cdn.example/a.webp", True),
            ("https://cdn.example/page.html", False),
            ("/a.jpg", False),
            ("data:image/png;base64,xyz", False),
            (None, False),
        ],
    )
    def test_likely_image(self, url, expected):
        assert likely_image(url) is expected

    def test_collect_candidates(self):
        """Top-level and per-result images are collected without duplicates."""
        data = {
            "images": ["https://cdn.example/1.jpg", {"url": "https://cdn.example/2.jpg"}],
            "results": [{"images": ["https://cdn.example/1.jpg", "https://cdn.example/3.png"]}],
        }
        assert collect_image_candidates(data) == [
            "https://cdn.example/1.jpg",
            "https://cdn.example/2.jpg",
            "https://cdn.example/3.png",
        ]

    def test_choose_prefers_source_domain(self):
        candidates = ["https://other.example/x.jpg", "https://img.cook.example/dish"]
        assert choose_image(candidates, "https://www.cook.example/r/1") == "https://img.cook.example/dish"
        assert choose_image(["https://other.example/x.jpg"], "https://cook.example/r/1") == "https://other.example/x.jpg"
        assert choose_image(["https://other.example/page"], "https://cook.example/r/1") is None

    def test_choose_does_not_match_domain_suffix(self):
        """A host that merely ends with the source domain is not the same site."""
        candidates = ["https://notcook.example/page", "https://cook.example/hero"]
        assert choose_image(candidates, "https://cook.example/r/1") == "https://cook.example/hero"
        assert choose_image(["https://notcook.example/page"], "https://cook.example/r/1") is None


class TestTavilyImageSearch:
    """Test TavilyImageSearch.find_image()."""

    @pytest.mark.asyncio
    async def test_find_image(self, settings):
        """The query targets the source domain and the best candidate is returned."""
        tavily = TavilyImageSearch("tvly-key", settings)
        with patch.object(
            TavilyImageSearch, "_post", new=AsyncMock(return_value={"images": ["https://cook.example/img/1.jpg"]})
        ) as mock_post:
            image = await tavily.find_image("Jollof", "https://www.cook.example/r/1")

        assert image == "https://cook.example/img/1.jpg"
        payload = mock_post.call_args.args[0]
        assert payload["query"] == "Jollof site:cook.example image"
        assert payload["include_images"] is True


class TestImageEnricher:
    """Test ImageEnricher tiers and envelope merging."""

    @pytest.mark.asyncio
    async def test_model_tier_fills_missing_images(self, settings):
        """Tier 1 results are merged and existing images are kept."""
        invoker = _model_invoker(
            [
                {"source": "https://cook.example/r/1", "image": "https://cook.example/1.jpg"},
                {"source": "https://cook.example/r/2", "image": "https://cook.example/should-not-win.jpg"},
                {"source": "https://unknown.example/x", "image": "https://unknown.example/x.jpg"},
            ]
        )
        enricher = ImageEnricher(invoker, None, settings)
        envelope = _envelope(_recipe(1), _recipe(2, image="https://cook.example/2-original.jpg"))

        result = await enricher.enrich(envelope, SearchFilters(country="Nigeria"))

        assert result.recipes[0].image == "https://cook.example/1.jpg"
        assert result.recipes[1].image == "https://cook.example/2-original.jpg"
        assert result.meta.used_filters.image_fallback is True
        assert result.meta.used_filters.image_fallback_provider == "gemini"
        request = invoker.complete.call_args.args[0]
        assert request.web_search is True
        assert request.max_output_tokens == settings.IMAGE_LOOKUP_MAX_TOKENS
        assert "cook.example/r/2" not in request.input_text

    @pytest.mark.asyncio
    async def test_tavily_tier_covers_the_rest(self, settings):
        """Tier 2 runs for recipes tier 1 missed; one failing lookup does not stop the others."""
        invoker = _model_invoker([{"source": "https://cook.example/r/1", "image": "https://cook.example/1.jpg"}])
        tavily = TavilyImageSearch("tvly-key", settings)

        async def find_image(title, source):
            if source.endswith("/2"):
                raise RuntimeError("rate limited")
            return "https://cook.example/3.png"

        tavily.find_image = AsyncMock(side_effect=find_image)
        enricher = ImageEnricher(invoker, tavily, settings)

        result = await enricher.enrich(_envelope(_recipe(1), _recipe(2), _recipe(3)), SearchFilters(country="Nigeria"))

        assert [recipe.image for recipe in result.recipes] == [
            "https://cook.example/1.jpg",
            None,
            "https://cook.example/3.png",
        ]
        assert result.meta.used_filters.image_fallback_provider == "gemini+tavily"
        assert tavily.find_image.await_count == 2

    @pytest.mark.asyncio
    async def test_model_failure_is_not_fatal(self, settings):
        """A failing tier 1 call falls through to tier 2."""
        invoker = MagicMock()
        invoker.complete = AsyncMock(side_effect=RuntimeError("quota"))
        tavily = TavilyImageSearch("tvly-key", settings)
        tavily.find_image = AsyncMock(return_value="https://cook.example/1.jpg")
        enricher = ImageEnricher(invoker, tavily, settings)

        result = await enricher.enrich(_envelope(_recipe(1)), SearchFilters(country="Nigeria"))

        assert result.recipes[0].image == "https://cook.example/1.jpg"
        assert result.meta.used_filters.image_fallback_provider == "tavily"

    @pytest.mark.asyncio
    async def test_nothing_found_returns_envelope_unchanged(self, settings):
        enricher = ImageEnricher(_model_invoker([]), None, settings)
        envelope = _envelope(_recipe(1))

        result = await enricher.enrich(envelope, SearchFilters(country="Nigeria"))

        assert result is envelope
        assert result.meta.used_filters.image_fallback is False

    @pytest.mark.asyncio
    async def test_disabled_by_filters_or_settings(self, settings):
        """The caller flag and IMAGE_FALLBACK_ENABLED both gate enrichment."""
        invoker = _model_invoker([{"source": "https://cook.example/r/1", "image": "https://cook.example/1.jpg"}])
        enricher = ImageEnricher(invoker, None, settings)
        envelope = _envelope(_recipe(1))

        result = await enricher.enrich(envelope, SearchFilters(country="Nigeria", image_fallback_enabled=False))
        assert result is envelope

        settings.IMAGE_FALLBACK_ENABLED = False
        result = await enricher.enrich(envelope, SearchFilters(country="Nigeria"))
        assert result is envelope
        invoker.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_missing_images_skips_lookup(self, settings):
        invoker = _model_invoker([])
        enricher = ImageEnricher(invoker, None, settings)

        await enricher.enrich(_envelope(_recipe(1, image="https://cook.example/1.jpg")), SearchFilters(country="Nigeria"))

        invoker.complete.assert_not_called()
