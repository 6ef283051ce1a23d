"""Filter normalizer: raw search request -> canonical SearchFilters.

Accepts snake_case or camelCase keys, so payloads coming from a UI
(`maxResults`, `includeIngredients`) and Python callers both work.
normalize_filters() never raises: unusable values fall back to defaults.
"""

from typing import Any, Optional

from src.models.models import MAX_RESULTS, MIN_RESULTS, SearchFilters
from src.utils.config import config

_ALIASES = {
    "query": ("query", "q"),
    "country": ("country",),
    "include_ingredients": ("include_ingredients", "includeIngredients"),
    "exclude_ingredients": ("exclude_ingredients", "excludeIngredients"),
    "max_results": ("max_results", "maxResults"),
    "exclude_sources": ("exclude_sources", "excludeSources"),
    "detailed_instructions": ("detailed_instructions", "detailedInstructions", "instructionDetail"),
    "image_fallback_enabled": ("image_fallback_enabled", "imageFallbackEnabled", "imageFallback"),
}


def _pick(raw: dict, field: str) -> Any:
    for key in _ALIASES[field]:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _clean_list(value: Any) -> list[str]:
    """Drop falsy/blank entries; accept a comma-separated string too."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        return []
    cleaned = []
    for entry in value:
        if not entry:
            continue
        text = str(entry).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def clamp_max_results(value: Any) -> int:
    """Default to 5, clamp into [5, 10]. Non-numeric input falls back to 5."""
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return MIN_RESULTS
    return min(MAX_RESULTS, max(MIN_RESULTS, number))


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        if value.lower() == "detailed":
            return True
        return value.lower() in ("true", "1", "yes")
    return bool(value)


def normalize_filters(raw: Optional[dict | SearchFilters] = None, default_country: Optional[str] = None) -> SearchFilters:
    """Clamp and default a caller-supplied filter object.

    Args:
        raw: Partial filter dict (snake_case or camelCase), an existing
            SearchFilters (re-normalized), or None.
        default_country: Fallback for a blank country. Defaults to config.DEFAULT_COUNTRY.

    Returns:
        SearchFilters with max_results in [5, 10], a non-blank country and
        ingredient/source lists free of empty entries.
    """
    if isinstance(raw, SearchFilters):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raw = {}

    fallback_country = (default_country or config.DEFAULT_COUNTRY).strip() or "United States"
    country = _pick(raw, "country")
    country = str(country).strip() if country is not None else ""

    query = _pick(raw, "query")
    query = str(query).strip()[:500] if query is not None else None

    return SearchFilters(
        query=query or None,
        country=country or fallback_country,
        include_ingredients=_clean_list(_pick(raw, "include_ingredients")),
        exclude_ingredients=_clean_list(_pick(raw, "exclude_ingredients")),
        max_results=clamp_max_results(_pick(raw, "max_results")),
        exclude_sources=_clean_list(_pick(raw, "exclude_sources")),
        detailed_instructions=_as_bool(_pick(raw, "detailed_instructions"), False),
        image_fallback_enabled=_as_bool(_pick(raw, "image_fallback_enabled"), True),
    )
