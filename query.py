#!/usr/bin/env python3
"""Ad hoc recipe search runner.

Runs one search through the ingestion pipeline, upserts the results and
prints them.

Usage:
    python query.py "jollof rice"
    python query.py --country Nigeria --max 5 "jollof rice"
    python query.py --include chicken,rice --exclude peanuts "weeknight dinner"
    python query.py --detailed --no-images "pad thai"
    python query.py --fast "banana bread"                 # generation-only, no browsing
    python query.py --exclude-sources https://a.example/x "lasagna"
    python query.py --db recipes.db "ramen"               # persist to SQLite
    python query.py --debug "ramen"                       # print full envelope JSON

Features:
- Web-search-augmented search by default, --fast for generation-only mode
- Results upserted into an in-memory store, or SQLite with --db / STORE_DB_FILE
- Found / upserted counts and elapsed time
"""

import asyncio
import sys
import time

from rich.console import Console
from rich.table import Table

from src.models.models import ResponseEnvelope
from src.pipeline.orchestrator import create_pipeline
from src.storage.store import InMemoryRecipeStore, SqliteRecipeStore
from src.utils.config import config
from src.utils.errors import RecipePipelineError
from src.utils.logger import logger

console = Console()

USAGE = (
    'Usage: python query.py [--debug] [--country C] [--include a,b] [--exclude a,b] [--max N] '
    '[--detailed] [--fast] [--no-images] [--exclude-sources u1,u2] [--db FILE] "<query>"'
)
VALUE_FLAGS = {
    "--country": "country",
    "--include": "include_ingredients",
    "--exclude": "exclude_ingredients",
    "--max": "max_results",
    "--exclude-sources": "exclude_sources",
    "--db": "db",
}


def render_envelope(envelope: ResponseEnvelope) -> None:
    """Print recipes as a table, plus sources when nothing was found."""
    if not envelope.recipes:
        console.print(f"[yellow]No recipes found[/yellow] (reason: {envelope.meta.reason or 'none'})")
        for source in envelope.meta.sources:
            console.print(f"  [dim]source:[/dim] {source.url}")
        return

    table = Table(title="Recipes", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Time", justify="right")
    table.add_column("Difficulty")
    table.add_column("Ingr.", justify="right")
    table.add_column("Source", overflow="fold")
    table.add_column("Image", justify="center")
    for index, recipe in enumerate(envelope.recipes, start=1):
        table.add_row(
            str(index),
            recipe.title,
            f"{recipe.total_time_minutes} min" if recipe.total_time_minutes is not None else "-",
            recipe.difficulty or "-",
            str(len(recipe.ingredients)),
            recipe.source,
            "✓" if recipe.image else "✗",
        )
    console.print(table)


def run_query(query: str, options: dict, debug: bool = False, fast: bool = False) -> None:
    """Execute a single search and print the results.

    Args:
        query: Free-text dish or theme.
        options: Filter options parsed from flags (plus optional "db").
        debug: If True, display the full envelope JSON.
        fast: If True, run in generation-only mode (no web search).
    """
    db_file = options.pop("db", None) or config.STORE_DB_FILE
    store = SqliteRecipeStore(db_file) if db_file else InMemoryRecipeStore()
    try:
        pipeline = create_pipeline()
        started = time.monotonic()
        envelope, rows = asyncio.run(
            pipeline.search_and_store(store, {"query": query, **options}, web_search=not fast)
        )
        elapsed = time.monotonic() - started

        console.print()
        if debug:
            console.print("[bold cyan]Debug Mode: Full Envelope[/bold cyan]")
            console.print_json(envelope.model_dump_json())
            console.print()

        render_envelope(envelope)
        console.print(
            f"[green]✓ Found {len(envelope.recipes)} recipe(s), upserted {len(rows)} row(s) "
            f"in {elapsed:.1f}s[/green]"
        )
    except KeyboardInterrupt:
        logger.info("\nQuery interrupted by user.")
        sys.exit(0)
    except RecipePipelineError as e:
        console.print(f"[red]✗ Search failed ({e.category}): {e.message}[/red]")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Query execution failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if isinstance(store, SqliteRecipeStore):
            store.close()


def parse_args(argv: list[str]) -> tuple[str, dict, bool, bool]:
    """Parse flags followed by the query words.

    Returns:
        Tuple of (query, options, debug, fast).
    """
    options: dict = {}
    debug = fast = False
    index = 0
    while index < len(argv) and argv[index].startswith("--"):
        flag = argv[index]
        if flag == "--debug":
            debug = True
        elif flag == "--fast":
            fast = True
        elif flag == "--detailed":
            options["detailed_instructions"] = True
        elif flag == "--no-images":
            options["image_fallback_enabled"] = False
        elif flag in VALUE_FLAGS:
            index += 1
            if index >= len(argv):
                print(f"Error: {flag} flag requires a value")
                sys.exit(1)
            options[VALUE_FLAGS[flag]] = argv[index]
        else:
            print(f"Unknown flag: {flag}")
            sys.exit(1)
        index += 1

    if index >= len(argv):
        print("Error: No query provided")
        print(USAGE)
        sys.exit(1)
    return " ".join(argv[index:]), options, debug, fast


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    query, options, debug_mode, fast_mode = parse_args(sys.argv[1:])
    run_query(query, options, debug=debug_mode, fast=fast_mode)
