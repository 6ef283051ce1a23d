"""Unit tests for recipe extraction from HTML pages."""

import json

import pytest

from src.hydration.html_parser import (
    extract_page_image,
    find_recipe_node,
    parse_ingredient_line,
    parse_iso_duration,
    parse_recipe_html,
)

PAGE_URL = "https://cook.example/recipes/egusi-soup"


def _json_ld_page(node, extra_head=""):
    return f"""<html><head>
<title>Egusi Soup | Cook Example</title>
{extra_head}
<script type="application/ld+json">{json.dumps(node)}</script>
</head><body><h1>Egusi Soup</h1></body></html>"""


RECIPE_NODE = {
    "@context": "https://schema.org",
    "@type": "Recipe",
    "name": "Egusi Soup",
    "description": "A rich <b>Nigerian</b> soup.",
    "recipeCuisine": ["Nigerian"],
    "recipeYield": "6 servings",
    "prepTime": "PT20M",
    "cookTime": "PT1H",
    "image": [{"@type": "ImageObject", "url": "/images/egusi.jpg"}],
    "recipeIngredient": ["2 cups ground egusi", "1 ½ lb beef", "3 large tomatoes", "Salt to taste"],
    "recipeInstructions": [
        {"@type": "HowToSection", "itemListElement": [
            {"@type": "HowToStep", "text": "Boil the beef."},
            {"@type": "HowToStep", "text": "Stir in the egusi."},
        ]},
        {"@type": "HowToStep", "text": "Season and serve."},
    ],
}


class TestParseIngredientLine:
    """Test parse_ingredient_line()."""

    def test_quantity_and_known_unit(self):
        assert parse_ingredient_line("2 cups ground egusi") == {"item": "ground egusi", "quantity": 2, "unit": "cups"}

    def test_unicode_fraction(self):
        """Unicode fractions are normalized to ASCII."""
        assert parse_ingredient_line("1½ cups flour") == {"item": "flour", "quantity": "1 1/2", "unit": "cups"}
        assert parse_ingredient_line("½ tsp salt") == {"item": "salt", "quantity": "1/2", "unit": "tsp"}

    def test_unknown_unit_is_part_of_item(self):
        """A word that is not a unit stays in the item and the unit defaults to each."""
        assert parse_ingredient_line("3 large tomatoes") == {"item": "large tomatoes", "quantity": 3, "unit": "each"}

    def test_no_quantity(self):
        assert parse_ingredient_line("Salt to taste") == {"item": "Salt to taste"}

    def test_blank_line(self):
        assert parse_ingredient_line("   ") is None


class TestParseIsoDuration:
    """Test parse_iso_duration()."""

    @pytest.mark.parametrize(
        "value,expected",
        [("PT1H30M", 90), ("PT45M", 45), ("P0DT2H", 120), ("P1D", 1440), ("PT90S", 2), ("pt10m", 10)],
    )
    def test_valid_durations(self, value, expected):
        assert parse_iso_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "P", "45 minutes", None, 30])
    def test_invalid_durations(self, value):
        assert parse_iso_duration(value) is None


class TestExtractPageImage:
    """Test extract_page_image()."""

    def test_og_image_resolved_against_page(self):
        html = '<html><head><meta property="og:image" content="/img/share.jpg"></head></html>'
        assert extract_page_image(html, PAGE_URL) == "https://cook.example/img/share.jpg"

    def test_twitter_image_and_image_src(self):
        html = '<html><head><meta name="twitter:image" content="https://cdn.example/t.png"></head></html>'
        assert extract_page_image(html, PAGE_URL) == "https://cdn.example/t.png"
        html = '<html><head><link rel="image_src" href="https://cdn.example/l.webp"></head></html>'
        assert extract_page_image(html, PAGE_URL) == "https://cdn.example/l.webp"

    def test_no_image(self):
        assert extract_page_image("<html><head></head></html>", PAGE_URL) is None


class TestParseRecipeHtml:
    """Test parse_recipe_html()."""

    def test_json_ld_recipe(self):
        """A schema.org Recipe block yields a full record."""
        record = parse_recipe_html(_json_ld_page(RECIPE_NODE), PAGE_URL)

        assert record.title == "Egusi Soup"
        assert record.source == PAGE_URL
        assert record.description == "A rich Nigerian soup."
        assert record.cuisine == "Nigerian"
        assert record.servings == 6
        assert record.total_time_minutes == 80
        assert record.image == "https://cook.example/images/egusi.jpg"
        assert [ingredient.item for ingredient in record.ingredients] == [
            "ground egusi",
            "beef",
            "large tomatoes",
            "Salt to taste",
        ]
        assert [(step.step, step.text) for step in record.instructions] == [
            (1, "Boil the beef."),
            (2, "Stir in the egusi."),
            (3, "Season and serve."),
        ]

    def test_json_ld_in_graph(self):
        """A Recipe nested in @graph is found."""
        graph = {"@context": "https://schema.org", "@graph": [{"@type": "WebPage"}, RECIPE_NODE]}
        assert find_recipe_node(graph)["name"] == "Egusi Soup"
        assert parse_recipe_html(_json_ld_page(graph), PAGE_URL).title == "Egusi Soup"

    def test_heuristic_sections(self):
        """Without JSON-LD, headed ingredient and method sections are used."""
        html = """<html><head><title>Puff Puff</title>
<meta property="og:image" content="https://cook.example/pp.jpg"></head><body>
<h1>Puff Puff</h1>
<h2>Ingredients</h2><ul><li>3 cups flour</li><li>1 tsp yeast</li></ul>
<h2>Method</h2><p>Mix everything.</p><p>Fry until golden.</p>
<h2>Comments</h2><p>Lovely!</p>
</body></html>"""
        record = parse_recipe_html(html, "https://cook.example/puff-puff")

        assert record.title == "Puff Puff"
        assert [ingredient.item for ingredient in record.ingredients] == ["flour", "yeast"]
        assert [step.text for step in record.instructions] == ["Mix everything.", "Fry until golden."]
        assert record.image == "https://cook.example/pp.jpg"

    def test_malformed_json_ld_falls_back(self):
        """A broken JSON-LD block is skipped in favour of heuristics."""
        html = """<html><body><script type="application/ld+json">{not json</script>
<h2>Ingredients</h2><ul><li>2 eggs</li></ul><h2>Directions</h2><ol><li>Whisk.</li></ol></body></html>"""
        record = parse_recipe_html(html, "https://cook.example/scrambled-eggs")

        assert record.title == "Scrambled Eggs"
        assert record.ingredients[0].item == "eggs"

    def test_page_without_recipe(self):
        """A page with no ingredients or instructions yields None."""
        assert parse_recipe_html("<html><body><h1>About us</h1><p>Hi.</p></body></html>", PAGE_URL) is None
