"""Schema validator / sanitizer for normalized completion output.

Sanitization is per field and per element rather than a single pass/fail gate:
- invalid optional scalars (wrong type, out of range) are deleted
- malformed ingredient / instruction entries are dropped
- a recipe left with zero ingredients or zero instructions is dropped
- source handling depends on mode:
    web search: a recipe without a valid absolute source is dropped
    generation-only: a source is synthesized under the app domain

Every drop is recorded as a SanitizationIssue on meta.diagnostics. The
rebuilt envelope is then validated as a whole; failure there surfaces as
SchemaViolation.
"""

import math
import re
from typing import Any, Optional

from pydantic import ValidationError

from src.models.models import (
    RecipeRecord,
    ResponseEnvelope,
    SanitizationIssue,
    SearchFilters,
    is_absolute_url,
)
from src.utils.errors import SchemaViolation
from src.utils.logger import logger

DIFFICULTIES = ("easy", "medium", "hard")
NUTRITION_FIELDS = ("calories", "protein_g", "fat_g", "carbs_g")
MAX_ISSUES_REPORTED = 5


def _coerce_number(value: Any) -> Optional[float]:
    """Return a finite float for numbers and numeric strings, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "ai-generated"


def synthesize_source(title: str, app_domain: str) -> str:
    """Stable source URL for a generation-only recipe."""
    return f"https://{app_domain}/ai/{slugify(title)}"


class _Sanitizer:
    """Holds per-call state: mode, issue list and seen sources."""

    def __init__(self, filters: SearchFilters, web_search: bool, app_domain: str) -> None:
        self.filters = filters
        self.web_search = web_search
        self.app_domain = app_domain
        self.issues: list[SanitizationIssue] = []
        self.excluded = set(filters.exclude_sources)
        self.seen_sources: set[str] = set()

    def note(self, path: str, reason: str) -> None:
        self.issues.append(SanitizationIssue(path=path, reason=reason))

    def scalar_fields(self, raw: dict, clean: dict, path: str) -> None:
        for field in ("description", "cuisine"):
            if field in raw and raw[field] is not None:
                text = _clean_text(raw[field])
                if text:
                    clean[field] = text
                else:
                    self.note(f"{path}.{field}", "not a non-empty string")

        difficulty = raw.get("difficulty")
        if difficulty is not None:
            if isinstance(difficulty, str) and difficulty.strip().lower() in DIFFICULTIES:
                clean["difficulty"] = difficulty.strip().lower()
            else:
                self.note(f"{path}.difficulty", f"not one of {', '.join(DIFFICULTIES)}")

        for field, minimum in (("servings", 1), ("total_time_minutes", 0)):
            if raw.get(field) is None:
                continue
            number = _coerce_number(raw[field])
            if number is None or number < minimum:
                self.note(f"{path}.{field}", "not a number in range")
            else:
                clean[field] = int(round(number))

        image = raw.get("image")
        if image is not None:
            image = image.strip() if isinstance(image, str) else image
            if is_absolute_url(image):
                clean["image"] = image
            else:
                self.note(f"{path}.image", "not an absolute URL")

    def nutrition(self, raw: Any, path: str) -> Optional[dict]:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            self.note(f"{path}.nutrition", "not an object")
            return None
        clean = {}
        for field in NUTRITION_FIELDS:
            if raw.get(field) is None:
                continue
            number = _coerce_number(raw[field])
            if number is None or number < 0:
                self.note(f"{path}.nutrition.{field}", "not a non-negative number")
                continue
            clean[field] = int(round(number)) if field == "calories" else number
        if not clean:
            self.note(f"{path}.nutrition", "no usable fields")
            return None
        return clean

    def ingredients(self, raw: Any, path: str) -> list[dict]:
        clean = []
        for index, entry in enumerate(raw if isinstance(raw, list) else []):
            entry_path = f"{path}.ingredients[{index}]"
            if not isinstance(entry, dict):
                self.note(entry_path, "not an object")
                continue
            item = entry.get("item")
            if isinstance(item, (int, float)) and not isinstance(item, bool):
                item = str(item)
            item = _clean_text(item)
            if not item:
                self.note(entry_path, "missing item")
                continue
            ingredient = {"item": item[:300]}
            quantity = entry.get("quantity")
            if isinstance(quantity, (int, float)) and not isinstance(quantity, bool) and math.isfinite(quantity):
                ingredient["quantity"] = quantity
            elif _clean_text(quantity):
                ingredient["quantity"] = quantity.strip()
            for field in ("unit", "notes"):
                text = _clean_text(entry.get(field))
                if text:
                    ingredient[field] = text
            clean.append(ingredient)
        return clean

    def instructions(self, raw: Any, path: str) -> list[dict]:
        kept = []
        for index, entry in enumerate(raw if isinstance(raw, list) else []):
            if not isinstance(entry, dict):
                self.note(f"{path}.instructions[{index}]", "not an object")
                continue
            kept.append(_clean_text(entry.get("text")))
        # Renumber sequentially after drops; empty text gets a placeholder
        return [
            {"step": number, "text": text or f"Step {number}"}
            for number, text in enumerate(kept, start=1)
        ]

    def source(self, raw: dict, title: str, path: str) -> Optional[str]:
        source = raw.get("source")
        source = source.strip() if isinstance(source, str) else source
        if is_absolute_url(source):
            return source
        if self.web_search:
            self.note(path, "dropped: missing or invalid source URL")
            return None
        return synthesize_source(title, self.app_domain)

    def recipe(self, raw: Any, index: int) -> Optional[RecipeRecord]:
        path = f"recipes[{index}]"
        if not isinstance(raw, dict):
            self.note(path, "dropped: not an object")
            return None

        title = _clean_text(raw.get("title"))
        if not title:
            self.note(path, "dropped: missing title")
            return None

        source = self.source(raw, title, path)
        if source is None:
            return None
        if source in self.excluded:
            self.note(path, "dropped: source is excluded")
            return None
        if source in self.seen_sources:
            self.note(path, "dropped: duplicate source")
            return None

        clean: dict = {"title": title[:300], "source": source}
        self.scalar_fields(raw, clean, path)
        nutrition = self.nutrition(raw.get("nutrition"), path)
        if nutrition:
            clean["nutrition"] = nutrition
        clean["ingredients"] = self.ingredients(raw.get("ingredients"), path)
        clean["instructions"] = self.instructions(raw.get("instructions"), path)

        if not clean["ingredients"] or not clean["instructions"]:
            self.note(path, "dropped: needs at least 1 ingredient and 1 instruction")
            return None

        try:
            record = RecipeRecord.model_validate(clean)
        except ValidationError as e:
            self.note(path, f"dropped: {e.error_count()} validation error(s)")
            return None
        self.seen_sources.add(source)
        return record

    def sources(self, raw: Any) -> list[dict]:
        clean = []
        seen = set()
        for index, entry in enumerate(raw if isinstance(raw, list) else []):
            url = entry.get("url") if isinstance(entry, dict) else None
            url = url.strip() if isinstance(url, str) else url
            if not is_absolute_url(url):
                self.note(f"meta.sources[{index}]", "not an absolute URL")
                continue
            if url in seen or url in self.excluded:
                continue
            seen.add(url)
            source = {"url": url}
            title = _clean_text(entry.get("title"))
            if title:
                source["title"] = title
            clean.append(source)
        return clean


def _format_issues(error: ValidationError) -> list[str]:
    issues = []
    for detail in error.errors()[:MAX_ISSUES_REPORTED]:
        location = ".".join(str(part) for part in detail["loc"]) or "<root>"
        issues.append(f"{location}: {detail['msg']}")
    return issues


def sanitize_envelope(
    value: dict,
    filters: SearchFilters,
    web_search: bool,
    app_domain: str,
) -> ResponseEnvelope:
    """Validate and sanitize a normalized envelope.

    Args:
        value: Output of normalize_shape().
        filters: Canonical filters (exclusions, echoed used_filters).
        web_search: True when the attempt ran in web-search mode.
        app_domain: Host used for generation-only synthesized sources.

    Returns:
        ResponseEnvelope with only well-formed recipes and valid source URLs.
        Zero recipes with non-empty sources is a valid result.

    Raises:
        SchemaViolation: If the rebuilt envelope fails validation (e.g. more
            than 10 recipes), or if nothing survived and there are no sources
            (empty_recipes=True).
    """
    sanitizer = _Sanitizer(filters, web_search, app_domain)
    raw_recipes = value.get("recipes") if isinstance(value, dict) else None
    raw_meta = value.get("meta") if isinstance(value, dict) else None
    raw_meta = raw_meta if isinstance(raw_meta, dict) else {}

    recipes = []
    for index, raw in enumerate(raw_recipes if isinstance(raw_recipes, list) else []):
        record = sanitizer.recipe(raw, index)
        if record is not None:
            recipes.append(record)
    sources = sanitizer.sources(raw_meta.get("sources"))

    if sanitizer.issues:
        logger.debug(f"Sanitizer dropped {len(sanitizer.issues)} field(s)/entry(ies)")

    if not recipes and not sources:
        raise SchemaViolation(
            "Structured output schema mismatch: recipes must contain at least 1 element",
            issues=["recipes: must contain at least 1 element"],
            empty_recipes=True,
        )

    try:
        return ResponseEnvelope.model_validate(
            {
                "recipes": recipes,
                "meta": {
                    "has_more": raw_meta.get("has_more") is True,
                    "sources": sources,
                    "used_filters": raw_meta.get("used_filters"),
                    "diagnostics": sanitizer.issues,
                },
            }
        )
    except ValidationError as e:
        issues = _format_issues(e)
        raise SchemaViolation(f"Structured output schema mismatch: {'; '.join(issues)}", issues=issues) from None
