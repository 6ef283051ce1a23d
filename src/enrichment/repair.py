"""Image repair for recipes that are already in the store.

Tries, in order: the source page's share image (og:image and friends, only
when it looks like an image file), then the enricher's completion-service
lookup and Tavily search. The first hit is written to metadata.image_url.
"""

from datetime import datetime, timezone
from typing import Optional

from src.enrichment.images import ImageEnricher, likely_image
from src.hydration.html_parser import extract_page_image
from src.hydration.hydrator import HtmlFetcher
from src.models.models import PersistedRow, RecipeRecord
from src.storage.store import RecipeStore
from src.utils.errors import safe_execute_async, safe_execute_sync
from src.utils.logger import logger


def row_to_record(row: PersistedRow) -> RecipeRecord:
    """Rebuild a RecipeRecord from a stored row (for the image lookup tiers)."""
    metadata = row.metadata
    return RecipeRecord.model_validate(
        {
            "title": row.title,
            "description": row.description,
            "cuisine": row.cuisine,
            "source": metadata.get("source_url"),
            "servings": metadata.get("servings"),
            "total_time_minutes": metadata.get("total_time_minutes"),
            "difficulty": metadata.get("difficulty"),
            "ingredients": row.ingredients,
            "instructions": row.instructions,
            "nutrition": row.nutritional_info,
        }
    )


async def _image_from_source_page(fetcher: Optional[HtmlFetcher], source_url: str) -> Optional[str]:
    if fetcher is None:
        return None
    page = await safe_execute_async(
        fetcher.fetch(source_url),
        f"Fetch source page {source_url} for image repair",
        log_level="debug",
        default_return=None,
    )
    if page is None or not page.ok:
        return None
    image = extract_page_image(page.body, source_url)
    return image if likely_image(image) else None


async def repair_stored_image(
    store: RecipeStore,
    row_id: Optional[str] = None,
    source: Optional[str] = None,
    fetcher: Optional[HtmlFetcher] = None,
    enricher: Optional[ImageEnricher] = None,
) -> Optional[PersistedRow]:
    """Find an image for a stored recipe and persist it.

    Args:
        store: Recipe store.
        row_id: Row id to repair (takes precedence over source).
        source: Source URL of the row to repair.
        fetcher: Page fetcher for the og:image tier.
        enricher: Image enricher for the completion-service and Tavily tiers.

    Returns:
        The updated row, or None if no image was found.

    Raises:
        LookupError: If no stored row matches row_id / source.
        PersistenceConflict: If the store rejects the update.
    """
    row = store.get(row_id) if row_id else store.find_by_source(source) if source else None
    if row is None:
        raise LookupError(f"No stored recipe for id={row_id!r} source={source!r}")

    source_url = row.source_url
    image = await _image_from_source_page(fetcher, source_url)
    provider = "og:image"

    if image is None and enricher is not None:
        record = safe_execute_sync(
            lambda: row_to_record(row),
            f"Rebuild record for {source_url}",
            default_return=None,
        )
        if record is not None:
            found, providers = await enricher.find_images([record])
            image = found.get(source_url)
            provider = "+".join(providers)

    if image is None:
        logger.info(f"✗ No image found for {source_url}")
        return None

    updated = row.model_copy(
        update={
            "metadata": {**row.metadata, "image_url": image},
            "updated_at": datetime.now(timezone.utc),
        }
    )
    store.update(updated)
    logger.info(f"✓ Repaired image for {source_url} via {provider}")
    return updated
