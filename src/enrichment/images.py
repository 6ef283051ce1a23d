"""Image enrichment pass: backfill missing recipe images.

Tier 1: one batched Gemini call (Google Search grounding) for every recipe
        missing an image
Tier 2: per-recipe Tavily search for whatever tier 1 did not find, run
        concurrently

Existing images are never overwritten, and nothing in this module fails the
search: every error is logged and the envelope comes back unchanged.

Core Functions:
- likely_image(): absolute http(s) URL whose path ends in an image extension
- choose_image(): pick the best Tavily candidate for a source domain
- TavilyImageSearch.find_image(): tier 2 lookup (async)
- ImageEnricher.enrich(): run both tiers over an envelope (async)
"""

import asyncio
import re
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp

from src.models.models import RecipeRecord, ResponseEnvelope, SearchFilters, is_absolute_url
from src.pipeline.extractor import extract_json
from src.pipeline.invoker import CompletionInvoker, CompletionRequest
from src.prompts.prompts import IMAGE_LOOKUP_SCHEMA, build_image_lookup_prompt
from src.utils.config import Config, config
from src.utils.errors import safe_execute_async
from src.utils.logger import logger

IMAGE_EXTENSION = re.compile(r"\.(jpe?g|png|webp|gif|avif)$", re.IGNORECASE)
TAVILY_SEARCH_URL = "https://api.tavily.com/search"


def likely_image(url: Any) -> bool:
    """True for absolute http(s) URLs whose path ends in an image extension."""
    if not is_absolute_url(url):
        return False
    return bool(IMAGE_EXTENSION.search(urlparse(url.strip()).path))


def _bare_domain(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def _same_site(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def collect_image_candidates(data: Any) -> list[str]:
    """Gather image URLs from a Tavily response (top-level and per-result images)."""
    if not isinstance(data, dict):
        return []

    def _urls(entries: Any) -> list[str]:
        urls = []
        for entry in entries if isinstance(entries, list) else []:
            url = entry.get("url") if isinstance(entry, dict) else entry
            if isinstance(url, str) and url.strip():
                urls.append(url.strip())
        return urls

    candidates = _urls(data.get("images"))
    for result in data.get("results") or []:
        if isinstance(result, dict):
            candidates.extend(_urls(result.get("images")))
    return list(dict.fromkeys(candidates))


def choose_image(candidates: list[str], source: str) -> Optional[str]:
    """Prefer an image on the source's domain, else any likely image file."""
    domain = _bare_domain(source)
    for candidate in candidates:
        if is_absolute_url(candidate) and domain and _same_site(_bare_domain(candidate), domain):
            return candidate
    for candidate in candidates:
        if likely_image(candidate):
            return candidate
    return None


class TavilyImageSearch:
    """Secondary image provider backed by the Tavily search API."""

    def __init__(self, api_key: str, settings: Config = config) -> None:
        self.api_key = api_key
        self.settings = settings

    async def _post(self, payload: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.settings.FETCH_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession() as session:
            async with session.post(TAVILY_SEARCH_URL, json=payload, headers=headers, timeout=timeout) as response:
                response.raise_for_status()
                return await response.json()

    async def find_image(self, title: str, source: str) -> Optional[str]:
        """Search for a dish photo of one recipe.

        Raises:
            aiohttp.ClientError: On network or HTTP errors (callers isolate these).
        """
        payload = {
            "query": f"{title} site:{_bare_domain(source)} image",
            "search_depth": "basic",
            "include_images": True,
            "max_results": 3,
        }
        data = await self._post(payload)
        return choose_image(collect_image_candidates(data), source)


class ImageEnricher:
    """Runs the two-tier image lookup over a search result."""

    def __init__(
        self,
        invoker: Optional[CompletionInvoker],
        tavily: Optional[TavilyImageSearch] = None,
        settings: Config = config,
    ) -> None:
        self.invoker = invoker
        self.tavily = tavily
        self.settings = settings

    async def lookup_with_model(self, recipes: list[RecipeRecord]) -> dict[str, str]:
        """Tier 1: single batched completion call.

        Returns:
            Mapping of recipe source URL to a validated image URL.
        """
        if self.invoker is None or not recipes:
            return {}
        wanted = {recipe.source for recipe in recipes}
        instructions, input_text = build_image_lookup_prompt(
            [{"source": recipe.source, "title": recipe.title} for recipe in recipes]
        )
        text = await self.invoker.complete(
            CompletionRequest(
                instructions=instructions,
                input_text=input_text,
                web_search=True,
                max_output_tokens=self.settings.IMAGE_LOOKUP_MAX_TOKENS,
                response_schema=IMAGE_LOOKUP_SCHEMA,
                operation="image lookup",
            )
        )
        data = extract_json(text)
        entries = data.get("images") if isinstance(data, dict) else data

        found = {}
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            source, image = entry.get("source"), entry.get("image")
            if source in wanted and source not in found and likely_image(image):
                found[source] = image.strip()
        return found

    async def lookup_with_tavily(self, recipes: list[RecipeRecord]) -> dict[str, str]:
        """Tier 2: concurrent per-recipe Tavily searches, failures isolated per recipe."""
        if self.tavily is None or not recipes:
            return {}
        results = await asyncio.gather(
            *(
                safe_execute_async(
                    self.tavily.find_image(recipe.title, recipe.source),
                    f"Tavily image search for {recipe.source}",
                    log_level="debug",
                    default_return=None,
                )
                for recipe in recipes
            )
        )
        return {recipe.source: image for recipe, image in zip(recipes, results) if image}

    async def find_images(self, recipes: list[RecipeRecord]) -> tuple[dict[str, str], list[str]]:
        """Run tier 1 then tier 2 for recipes without images.

        Returns:
            Tuple of (source -> image mapping, provider names that contributed).
        """
        # Per call; never shared between searches
        attempted: set[str] = set()
        found: dict[str, str] = {}
        providers: list[str] = []

        pending = []
        for recipe in recipes:
            if recipe.image or recipe.source in attempted:
                continue
            attempted.add(recipe.source)
            pending.append(recipe)

        tier1 = await safe_execute_async(
            self.lookup_with_model(pending),
            "Image lookup via completion service",
            default_return={},
        )
        if tier1:
            found.update(tier1)
            providers.append("gemini")

        pending = [recipe for recipe in pending if recipe.source not in found]
        tier2 = await self.lookup_with_tavily(pending)
        if tier2:
            found.update(tier2)
            providers.append("tavily")
        return found, providers

    def enabled_for(self, filters: SearchFilters) -> bool:
        return self.settings.IMAGE_FALLBACK_ENABLED and filters.image_fallback_enabled

    async def enrich(self, envelope: ResponseEnvelope, filters: SearchFilters) -> ResponseEnvelope:
        """Backfill images on recipes that lack one.

        Args:
            envelope: Final search result.
            filters: Canonical filters (image_fallback_enabled gate).

        Returns:
            A new envelope with images merged in and used_filters marked, or
            the original envelope when disabled, nothing is missing, nothing
            was found or any error occurred.
        """
        if not self.enabled_for(filters):
            return envelope
        missing = [recipe for recipe in envelope.recipes if not recipe.image]
        if not missing:
            return envelope

        try:
            logger.info(f"Looking up images for {len(missing)} recipe(s)...")
            found, providers = await self.find_images(missing)
            if not found:
                logger.info("✗ No images found")
                return envelope

            recipes = [
                recipe.model_copy(update={"image": found[recipe.source]})
                if not recipe.image and recipe.source in found
                else recipe
                for recipe in envelope.recipes
            ]
            used_filters = envelope.meta.used_filters.model_copy(
                update={"image_fallback": True, "image_fallback_provider": "+".join(providers)}
            )
            meta = envelope.meta.model_copy(update={"used_filters": used_filters})
            logger.info(f"✓ Added {len(found)} image(s) via {'+'.join(providers)}")
            return envelope.model_copy(update={"recipes": recipes, "meta": meta})
        except Exception as e:
            logger.warning(f"Image enrichment failed: {e}")
            return envelope
