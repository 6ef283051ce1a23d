"""Recipe extraction from raw HTML pages.

Two tiers:
1. JSON-LD: a <script type="application/ld+json"> block containing a
   schema.org Recipe (possibly nested in @graph or a list)
2. Heuristics: page title plus "Ingredients" / "Instructions" sections found
   by heading text, read from the following list items or paragraphs

Core Functions:
- parse_ingredient_line(): "1 ½ cups flour, sifted" -> Ingredient fields
- parse_iso_duration(): "PT1H30M" -> 90
- extract_page_image(): og:image / twitter:image / image_src as absolute URL
- parse_recipe_html(): full page -> RecipeRecord, or None
"""

import json
import re
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from pydantic import ValidationError

from src.models.models import RecipeRecord, is_absolute_url
from src.utils.logger import logger

UNICODE_FRACTIONS = {
    "½": "1/2", "⅓": "1/3", "⅔": "2/3", "¼": "1/4", "¾": "3/4",
    "⅕": "1/5", "⅖": "2/5", "⅗": "3/5", "⅘": "4/5", "⅙": "1/6",
    "⅚": "5/6", "⅛": "1/8", "⅜": "3/8", "⅝": "5/8", "⅞": "7/8",
}
KNOWN_UNITS = {
    "cup", "cups", "c", "tbsp", "tbsp.", "tablespoon", "tablespoons", "tsp", "tsp.", "teaspoon",
    "teaspoons", "g", "gram", "grams", "kg", "kilogram", "kilograms", "mg", "ml", "milliliter",
    "milliliters", "l", "liter", "liters", "litre", "litres", "oz", "oz.", "ounce", "ounces",
    "lb", "lb.", "lbs", "pound", "pounds", "pinch", "pinches", "dash", "clove", "cloves", "can",
    "cans", "slice", "slices", "stick", "sticks", "bunch", "bunches", "sprig", "sprigs",
    "piece", "pieces", "handful", "quart", "quarts", "pint", "pints", "package", "packages",
}
INGREDIENT_LINE = re.compile(r"^(\d+\s+\d+/\d+|\d+/\d+|\d+(?:\.\d+)?)(?:\s+([a-zA-Z\.]+))?\s+(.*)$")
ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)
INGREDIENTS_HEADING = re.compile(r"\bingredients?\b", re.IGNORECASE)
INSTRUCTIONS_HEADING = re.compile(r"\b(instructions?|directions?|method|preparation)\b", re.IGNORECASE)
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
MAX_ITEMS = 60


# ============================================================================
# Field helpers
# ============================================================================


def _normalize_fractions(text: str) -> str:
    # "1½" -> "1 1/2", "½" -> "1/2"
    for char, ascii_fraction in UNICODE_FRACTIONS.items():
        text = re.sub(rf"(\d){char}", rf"\1 {ascii_fraction}", text)
        text = text.replace(char, ascii_fraction)
    return text


def _quantity_value(raw: str) -> float | int | str:
    if re.fullmatch(r"\d+", raw):
        return int(raw)
    if re.fullmatch(r"\d+\.\d+", raw):
        return float(raw)
    return raw


def parse_ingredient_line(line: str) -> Optional[dict]:
    """Split a free-text ingredient line into item, quantity and unit.

    Lines with a leading quantity but no recognized unit get unit "each".
    Lines without a leading quantity keep the whole text as the item.

    Args:
        line: Raw ingredient text, e.g. "2 ½ cups all-purpose flour".

    Returns:
        Ingredient dict, or None for blank lines.
    """
    text = " ".join(_normalize_fractions(line).split())
    if not text:
        return None

    match = INGREDIENT_LINE.match(text)
    if not match:
        return {"item": text}

    quantity, unit, rest = match.group(1), match.group(2), match.group(3).strip()
    if unit and unit.lower() not in KNOWN_UNITS:
        rest = f"{unit} {rest}".strip()
        unit = None
    if not rest:
        return {"item": text}
    return {"item": rest, "quantity": _quantity_value(quantity), "unit": unit or "each"}


def parse_iso_duration(value: Any) -> Optional[int]:
    """Convert an ISO-8601 duration (PT1H30M, P0DT45M) to whole minutes."""
    if not isinstance(value, str):
        return None
    match = ISO_DURATION.match(value.strip())
    if not match or not any(match.groupdict().values()):
        return None
    parts = {key: float(amount) if amount else 0.0 for key, amount in match.groupdict().items()}
    minutes = parts["days"] * 1440 + parts["hours"] * 60 + parts["minutes"] + parts["seconds"] / 60
    return int(round(minutes))


def _first_int(value: Any) -> Optional[int]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 1 else None
    match = re.search(r"\d+", str(value))
    return int(match.group()) if match and int(match.group()) >= 1 else None


def _image_from_ld(value: Any) -> Optional[str]:
    if isinstance(value, list):
        for entry in value:
            found = _image_from_ld(entry)
            if found:
                return found
        return None
    if isinstance(value, dict):
        return _image_from_ld(value.get("url") or value.get("contentUrl"))
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = " ".join(BeautifulSoup(value, "html.parser").get_text(" ").split())
    return cleaned or None


def extract_page_image(soup: BeautifulSoup | str, page_url: str) -> Optional[str]:
    """Find the page's share image (og:image, twitter:image, image_src).

    Returns:
        Absolute image URL resolved against page_url, or None.
    """
    if isinstance(soup, str):
        soup = BeautifulSoup(soup, "html.parser")

    candidates = [
        soup.find("meta", attrs={"property": "og:image"}),
        soup.find("meta", attrs={"name": "og:image"}),
        soup.find("meta", attrs={"name": "twitter:image"}),
        soup.find("meta", attrs={"property": "twitter:image"}),
    ]
    for tag in candidates:
        if tag and tag.get("content"):
            resolved = urljoin(page_url, tag["content"].strip())
            if is_absolute_url(resolved):
                return resolved

    link = soup.find("link", rel="image_src")
    if link and link.get("href"):
        resolved = urljoin(page_url, link["href"].strip())
        if is_absolute_url(resolved):
            return resolved
    return None


# ============================================================================
# Tier 1: JSON-LD
# ============================================================================


def _is_recipe_node(node: dict) -> bool:
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return any(isinstance(t, str) and t.lower() == "recipe" for t in types)


def find_recipe_node(data: Any) -> Optional[dict]:
    """Depth-first search for a schema.org Recipe object (handles @graph and lists)."""
    if isinstance(data, list):
        for entry in data:
            found = find_recipe_node(entry)
            if found:
                return found
    elif isinstance(data, dict):
        if _is_recipe_node(data):
            return data
        for value in data.values():
            if isinstance(value, (dict, list)):
                found = find_recipe_node(value)
                if found:
                    return found
    return None


def _flatten_instructions(value: Any) -> list[str]:
    if isinstance(value, str):
        lines = re.split(r"\n+|<br\s*/?>", value)
        return [t for t in (_text(line) for line in lines) if t]
    if isinstance(value, list):
        steps = []
        for entry in value:
            steps.extend(_flatten_instructions(entry))
        return steps
    if isinstance(value, dict):
        if value.get("itemListElement"):
            return _flatten_instructions(value["itemListElement"])
        text = _text(value.get("text")) or _text(value.get("name"))
        return [text] if text else []
    return []


def _record_from_json_ld(soup: BeautifulSoup) -> Optional[dict]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue

        node = find_recipe_node(data)
        if not node:
            continue

        ingredients_raw = node.get("recipeIngredient") or node.get("ingredients") or []
        if isinstance(ingredients_raw, str):
            ingredients_raw = [ingredients_raw]
        total = parse_iso_duration(node.get("totalTime"))
        if total is None:
            prep = parse_iso_duration(node.get("prepTime"))
            cook = parse_iso_duration(node.get("cookTime"))
            if prep is not None or cook is not None:
                total = (prep or 0) + (cook or 0)

        cuisine = node.get("recipeCuisine")
        if isinstance(cuisine, list):
            cuisine = cuisine[0] if cuisine else None

        return {
            "title": _text(node.get("name")) or _text(node.get("headline")),
            "description": _text(node.get("description")),
            "cuisine": _text(cuisine),
            "ingredients": [_text(line) for line in ingredients_raw if _text(line)],
            "instructions": _flatten_instructions(node.get("recipeInstructions")),
            "total_time_minutes": total,
            "servings": _first_int(node.get("recipeYield") or node.get("yield")),
            "image": _image_from_ld(node.get("image")),
        }
    return None


# ============================================================================
# Tier 2: heuristics
# ============================================================================


def _section_items(heading) -> list[str]:
    """Items after a section heading: first ul/ol list, else paragraphs, until the next heading."""
    paragraphs = []
    for element in heading.find_all_next():
        if element.name in HEADING_TAGS:
            break
        if element.name in ("ul", "ol"):
            items = [li.get_text(" ", strip=True) for li in element.find_all("li")]
            items = [item for item in items if item]
            if items:
                return items[:MAX_ITEMS]
        elif element.name == "p":
            text = element.get_text(" ", strip=True)
            if text:
                paragraphs.append(text)
    return paragraphs[:MAX_ITEMS]


def _find_section(soup: BeautifulSoup, pattern: re.Pattern) -> list[str]:
    for heading in soup.find_all(HEADING_TAGS):
        if pattern.search(heading.get_text(" ", strip=True)):
            items = _section_items(heading)
            if items:
                return items
    return []


def _record_from_heuristics(soup: BeautifulSoup) -> dict:
    title = None
    if soup.h1:
        title = soup.h1.get_text(" ", strip=True)
    if not title and soup.title:
        title = soup.title.get_text(" ", strip=True)
    return {
        "title": title,
        "ingredients": _find_section(soup, INGREDIENTS_HEADING),
        "instructions": _find_section(soup, INSTRUCTIONS_HEADING),
    }


def _title_from_url(url: str) -> str:
    segment = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    segment = re.sub(r"\.[a-z]+$", "", segment)
    words = re.sub(r"[-_]+", " ", segment).strip()
    return words.title() if words else urlparse(url).netloc


def parse_recipe_html(html: str, url: str) -> Optional[RecipeRecord]:
    """Derive a RecipeRecord from a raw recipe page.

    Args:
        html: Page body.
        url: Page URL, used as the record source and to resolve relative images.

    Returns:
        RecipeRecord with at least one ingredient and one instruction, or None
        if neither tier yields both.
    """
    soup = BeautifulSoup(html, "html.parser")
    fields = _record_from_json_ld(soup)
    if not fields or not fields["ingredients"] or not fields["instructions"]:
        heuristic = _record_from_heuristics(soup)
        if fields:
            for key in ("title", "ingredients", "instructions"):
                fields[key] = fields.get(key) or heuristic[key]
        else:
            fields = heuristic

    ingredients = [parsed for parsed in (parse_ingredient_line(line) for line in fields["ingredients"]) if parsed]
    instructions = [
        {"step": number, "text": text}
        for number, text in enumerate((t for t in fields["instructions"] if t), start=1)
    ]
    if not ingredients or not instructions:
        return None

    image = fields.get("image")
    image = urljoin(url, image) if image else extract_page_image(soup, url)
    record = {
        "title": (fields.get("title") or _title_from_url(url))[:300],
        "source": url,
        "ingredients": ingredients[:MAX_ITEMS],
        "instructions": instructions[:MAX_ITEMS],
    }
    for key in ("description", "cuisine", "servings", "total_time_minutes"):
        if fields.get(key) is not None:
            record[key] = fields[key]
    if image and is_absolute_url(image):
        record["image"] = image

    try:
        return RecipeRecord.model_validate(record)
    except ValidationError as e:
        logger.debug(f"Hydrated record from {url} failed validation: {e.error_count()} error(s)")
        return None
