"""Prompts, request payloads and output schemas for the completion service.

Provides factory functions that turn canonical search filters into a
completion request: an instruction string plus a compact JSON input.
Supports two modes: web-search-augmented (Google Search grounding) and
generation-only (model knowledge, no browsing), and two instruction styles
(concise / detailed).

The closing strict-JSON directive is shared by both modes; the tolerant
extractor's happy path relies on it.
"""

import json
from typing import Optional

from src.models.models import MAX_RESULTS, SearchFilters

STRICT_JSON_DIRECTIVE = (
    "Output strictly as a single valid JSON object that matches the provided schema. "
    "Do not include any markdown code fences, comments, or extra text before or after the JSON."
)


# ============================================================================
# Output schemas (passed to Gemini as response_json_schema)
# ============================================================================

_INGREDIENT_SCHEMA = {
    "type": "object",
    "properties": {
        "item": {"type": "string"},
        "quantity": {"type": ["number", "string"]},
        "unit": {"type": "string"},
        "notes": {"type": "string"},
    },
    "required": ["item"],
}

_INSTRUCTION_SCHEMA = {
    "type": "object",
    "properties": {
        "step": {"type": "integer", "minimum": 1},
        "text": {"type": "string"},
    },
    "required": ["step", "text"],
}

_RECIPE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "cuisine": {"type": "string"},
        "source": {"type": "string", "description": "Absolute https:// URL of the recipe page"},
        "image": {"type": "string", "description": "Absolute https:// URL of a dish photo"},
        "servings": {"type": "integer", "minimum": 1},
        "total_time_minutes": {"type": "integer", "minimum": 0},
        "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
        "ingredients": {"type": "array", "minItems": 1, "items": _INGREDIENT_SCHEMA},
        "instructions": {"type": "array", "minItems": 1, "items": _INSTRUCTION_SCHEMA},
        "nutrition": {
            "type": "object",
            "properties": {
                "calories": {"type": "integer", "minimum": 0},
                "protein_g": {"type": "number", "minimum": 0},
                "fat_g": {"type": "number", "minimum": 0},
                "carbs_g": {"type": "number", "minimum": 0},
            },
        },
    },
    "required": ["title", "source", "ingredients", "instructions"],
}

RECIPE_RESULT_SCHEMA = {
    "type": "object",
    "properties": {
        "recipes": {"type": "array", "maxItems": MAX_RESULTS, "items": _RECIPE_SCHEMA},
        "meta": {
            "type": "object",
            "properties": {
                "has_more": {"type": "boolean"},
                "sources": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"url": {"type": "string"}, "title": {"type": "string"}},
                        "required": ["url"],
                    },
                },
            },
            "required": ["has_more", "sources"],
        },
    },
    "required": ["recipes", "meta"],
}

IMAGE_LOOKUP_SCHEMA = {
    "type": "object",
    "properties": {
        "images": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"source": {"type": "string"}, "image": {"type": "string"}},
                "required": ["source", "image"],
            },
        }
    },
    "required": ["images"],
}


# ============================================================================
# Instruction builders
# ============================================================================


def _get_web_search_section() -> str:
    """Instructions for web-search-augmented mode.

    Steers the model toward real, uniquely-sourced, non-paywalled pages and
    absolute URLs; recipes without a real source are dropped downstream.
    """
    return """
## Recipe Search (Web Search Enabled)

Use the web search tool to find authentic recipe pages that match the user's filters.

**Rules:**
- Apply all filters directly. Do NOT ask clarifying questions.
- Prefer non-paywalled pages that show the full ingredient list and method.
- Return between 5 and 10 recipes (never more than the requested maxResults), each from a unique page.
- Every recipe MUST include `source`: the canonical URL of the page it came from.
- Include an `image` URL for each recipe when the page has a dish photo.
- All URLs must be absolute and start with https://
- Include `difficulty` as one of: easy, medium, hard.
- Never return a recipe whose URL appears in excludeSources.
- Respect includeIngredients (should feature) and excludeIngredients (must not contain).
- Each recipe needs at least 1 ingredient and 1 instruction step.
- List every page you consulted in `meta.sources` ({url, title}).
- Set `meta.has_more` to true when more matching recipes exist beyond the ones returned.
"""


def _get_generation_section() -> str:
    """Instructions for generation-only (fast) mode."""
    return """
## Recipe Generation (No Browsing)

Generate recipes from your own culinary knowledge. Do NOT browse or cite search results.

**Rules:**
- Apply all filters directly. Do NOT ask clarifying questions.
- Return between 5 and 10 distinct recipes (never more than the requested maxResults).
- Include a plausible `image` URL only if you know one; otherwise omit the field.
- If any field is unknown, omit it rather than guess.
- Respect includeIngredients (should feature) and excludeIngredients (must not contain).
- Each recipe needs at least 1 ingredient and 1 instruction step.
- Set `meta.has_more` to false and `meta.sources` to an empty list unless you know real source pages.
"""


def _get_instruction_detail_section(detailed: bool) -> str:
    if detailed:
        return """
## Instruction Style: Detailed
- Write 2-4 sentences per step.
- Include heat levels, timing, pan size, texture cues and doneness signals.
"""
    return """
## Instruction Style: Concise
- One short imperative sentence per step.
"""


def build_instructions(web_search: bool, detailed: bool) -> str:
    """Generate the instruction string for a recipe search completion call.

    Args:
        web_search: True for web-search-augmented mode, False for generation-only.
        detailed: True for detailed multi-sentence steps, False for concise steps.

    Returns:
        str: Complete instruction text ending with the strict-JSON directive.
    """
    mode_section = _get_web_search_section() if web_search else _get_generation_section()
    return f"""You are a recipe research assistant that returns structured recipe data.
The user input is a JSON object with search filters (query, country, includeIngredients,
excludeIngredients, maxResults, excludeSources, instructionDetail).
{mode_section}{_get_instruction_detail_section(detailed)}
## Output
Return a JSON object with `recipes` (list of recipe objects) and `meta` ({{has_more, sources}}).
Ingredients are objects: {{item, quantity, unit, notes}}. Instructions are objects: {{step, text}}.

{STRICT_JSON_DIRECTIVE}"""


def build_input(
    filters: SearchFilters,
    max_results: Optional[int] = None,
) -> str:
    """Encode filters as the compact JSON input for the completion call.

    Keys are omitted when undefined or empty so the request stays small and
    deterministic.

    Args:
        filters: Canonical search filters.
        max_results: Attempt-level override (recovery attempts shrink the batch).
            Clamped to [1, 10]. Defaults to filters.max_results.

    Returns:
        str: JSON with no insignificant whitespace.
    """
    requested = filters.max_results if max_results is None else max_results
    payload: dict = {}
    if filters.query:
        payload["query"] = filters.query
    payload["country"] = filters.country
    if filters.include_ingredients:
        payload["includeIngredients"] = list(filters.include_ingredients)
    if filters.exclude_ingredients:
        payload["excludeIngredients"] = list(filters.exclude_ingredients)
    payload["maxResults"] = min(MAX_RESULTS, max(1, requested))
    if filters.exclude_sources:
        payload["excludeSources"] = list(filters.exclude_sources)
    payload["instructionDetail"] = "detailed" if filters.detailed_instructions else "concise"
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def build_image_lookup_prompt(items: list[dict]) -> tuple[str, str]:
    """Build instructions and input for the batched image lookup call.

    Args:
        items: List of {"source": url, "title": str} for recipes missing images.

    Returns:
        Tuple of (instructions, input_text).
    """
    instructions = f"""You find photos for recipes.
For each recipe page in the input, use web search to find a direct image URL of the finished dish.

**Rules:**
- Prefer an image hosted on the same domain as the recipe source.
- The URL must point directly to an image file ending in .jpg, .jpeg, .png, .webp or .gif
- No HTML pages, relative URLs, data: URIs or tracking/redirect links.
- Skip a recipe if no suitable image is found.
- Return {{"images": [{{"source": <recipe source url>, "image": <image url>}}]}}

{STRICT_JSON_DIRECTIVE}"""
    input_text = json.dumps({"recipes": items}, separators=(",", ":"), ensure_ascii=False)
    return instructions, input_text
