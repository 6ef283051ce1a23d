"""Shape normalizer: repair structural drift in parsed completion output.

Known alternate shapes seen from the completion service:
- bare top-level array of recipes instead of {recipes, meta}
- a single recipe object instead of an envelope
- ingredients as an object map {"flour": "2 cups"} instead of a list
- ingredients as plain strings, or with name/amount/qty/units/note keys
- instructions as one string, a list of strings, or steps without numbers
- image_url / imageUrl and url / source_url instead of image / source

normalize_shape() is total: it never raises, works on a deep copy and only
improves the odds that sanitization accepts the value.
"""

import copy
import re
from typing import Any

from src.models.models import SearchFilters, UsedFilters

_RECIPE_ALIASES = {
    "title": ("name", "recipe_name"),
    "source": ("source_url", "sourceUrl", "url", "link"),
    "image": ("image_url", "imageUrl", "photo"),
    "total_time_minutes": ("totalTimeMinutes", "total_time", "time_minutes"),
}
_INGREDIENT_ALIASES = {
    "item": ("name", "ingredient"),
    "quantity": ("amount", "qty"),
    "unit": ("units",),
    "notes": ("note",),
}
_INSTRUCTION_TEXT_ALIASES = ("text", "instruction", "description", "step_text")


def _apply_aliases(entry: dict, aliases: dict) -> dict:
    for canonical, alternates in aliases.items():
        if entry.get(canonical) not in (None, ""):
            continue
        for alternate in alternates:
            if entry.get(alternate) not in (None, ""):
                entry[canonical] = entry.pop(alternate)
                break
    return entry


def _normalize_ingredients(raw: Any) -> list:
    if isinstance(raw, dict):
        entries = []
        for name, value in raw.items():
            if isinstance(value, dict):
                entries.append({"item": name, **value})
            else:
                entries.append({"item": name, "quantity": value})
        raw = entries
    elif isinstance(raw, str):
        raw = [line for line in raw.splitlines() if line.strip()]
    if not isinstance(raw, list):
        return []

    normalized = []
    for entry in raw:
        if isinstance(entry, str):
            normalized.append({"item": entry})
        elif isinstance(entry, dict):
            normalized.append(_apply_aliases(entry, _INGREDIENT_ALIASES))
        else:
            normalized.append(entry)
    return normalized


def _is_step_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 1
    return isinstance(value, str) and re.fullmatch(r"[0-9]+", value.strip()) is not None and int(value) >= 1


def _normalize_instructions(raw: Any) -> list:
    if isinstance(raw, str):
        raw = [line for line in raw.splitlines() if line.strip()]
    if not isinstance(raw, list):
        return []

    steps = []
    for entry in raw:
        if isinstance(entry, str):
            steps.append({"text": entry})
        elif isinstance(entry, dict):
            text = next((entry[key] for key in _INSTRUCTION_TEXT_ALIASES if entry.get(key)), entry.get("text"))
            step = dict(entry)
            step["text"] = text
            steps.append(step)
        else:
            steps.append(entry)

    dict_steps = [step for step in steps if isinstance(step, dict)]
    if any(not _is_step_number(step.get("step")) for step in dict_steps):
        for number, step in enumerate(dict_steps, start=1):
            step["step"] = number
    else:
        for step in dict_steps:
            step["step"] = int(step["step"])
    return steps


def _normalize_recipe(recipe: Any) -> Any:
    if not isinstance(recipe, dict):
        return recipe
    recipe = _apply_aliases(recipe, _RECIPE_ALIASES)
    recipe["ingredients"] = _normalize_ingredients(recipe.get("ingredients"))
    recipe["instructions"] = _normalize_instructions(recipe.get("instructions", recipe.get("steps")))
    recipe.pop("steps", None)
    return recipe


def _normalize_sources(raw: Any, recipes: list) -> list:
    if not isinstance(raw, list):
        derived = []
        for recipe in recipes:
            if isinstance(recipe, dict) and isinstance(recipe.get("source"), str):
                derived.append({"url": recipe["source"], "title": recipe.get("title")})
        return derived

    sources = []
    for entry in raw:
        if isinstance(entry, str):
            sources.append({"url": entry})
        elif isinstance(entry, dict):
            sources.append(_apply_aliases(dict(entry), {"url": ("link", "href", "source")}))
    return sources


def normalize_shape(value: Any, filters: SearchFilters) -> dict:
    """Coerce a parsed value into the {recipes, meta} envelope shape.

    Args:
        value: Output of extract_json (dict, list, or anything else).
        filters: Canonical filters, echoed into meta.used_filters.

    Returns:
        A new dict with a recipes list and a meta dict holding has_more,
        sources and used_filters. Entries are not validated here.
    """
    value = copy.deepcopy(value)

    if isinstance(value, list):
        envelope = {"recipes": value, "meta": {}}
    elif isinstance(value, dict):
        envelope = value
        if "recipes" not in envelope and "title" in envelope and "ingredients" in envelope:
            envelope = {"recipes": [value], "meta": {}}
    else:
        envelope = {}

    recipes = envelope.get("recipes")
    if isinstance(recipes, dict):
        recipes = [recipes]
    if not isinstance(recipes, list):
        recipes = []
    recipes = [_normalize_recipe(recipe) for recipe in recipes]

    meta = envelope.get("meta")
    if not isinstance(meta, dict):
        meta = {}
    has_more = meta.get("has_more", meta.get("hasMore"))

    return {
        "recipes": recipes,
        "meta": {
            "has_more": has_more if isinstance(has_more, bool) else False,
            "sources": _normalize_sources(meta.get("sources"), recipes),
            "used_filters": UsedFilters.from_filters(filters).model_dump(),
        },
    }
