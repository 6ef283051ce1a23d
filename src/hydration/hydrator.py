"""Source hydration fallback.

When a search validates with zero recipes but reports candidate source
pages, those pages are fetched directly and parsed into recipes. Fetches run
concurrently; a timed-out or 4xx page only loses that one source.
"""

import asyncio
from typing import Optional

import aiohttp
from pydantic import BaseModel

from src.hydration.html_parser import parse_recipe_html
from src.models.models import MAX_RESULTS, RecipeRecord, SourceRef
from src.utils.config import Config, config
from src.utils.errors import safe_execute_async, safe_execute_sync
from src.utils.logger import logger


class FetchResult(BaseModel):
    """HTTP response as seen by the hydration fallback."""

    status: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HtmlFetcher:
    """aiohttp-backed page fetcher.

    A shared ClientSession can be injected; otherwise one session is opened
    per fetch.
    """

    def __init__(self, settings: Config = config, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.settings = settings
        self.session = session

    def default_headers(self) -> dict:
        return {
            "User-Agent": self.settings.IMPORTER_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml",
        }

    async def fetch(self, url: str, headers: Optional[dict] = None) -> FetchResult:
        """GET a page and return its status and decoded body.

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError: On network failure.
        """
        timeout = aiohttp.ClientTimeout(total=self.settings.FETCH_TIMEOUT_SECONDS)
        request_headers = {**self.default_headers(), **(headers or {})}

        async def _get(session: aiohttp.ClientSession) -> FetchResult:
            async with session.get(url, headers=request_headers, timeout=timeout, allow_redirects=True) as response:
                body = await response.text(errors="replace") if response.status < 400 else ""
                return FetchResult(status=response.status, body=body)

        if self.session is not None:
            return await _get(self.session)
        async with aiohttp.ClientSession() as session:
            return await _get(session)


class SourceHydrator:
    """Re-derives recipes from candidate source pages."""

    def __init__(self, fetcher: HtmlFetcher) -> None:
        self.fetcher = fetcher

    async def _hydrate_one(self, url: str) -> Optional[RecipeRecord]:
        result = await safe_execute_async(
            self.fetcher.fetch(url),
            f"Fetch source page {url}",
            log_level="debug",
            default_return=None,
        )
        if result is None:
            return None
        if not result.ok:
            logger.debug(f"✗ Source page returned HTTP {result.status}", extra={"source_url": url})
            return None

        record = safe_execute_sync(
            lambda: parse_recipe_html(result.body, url),
            f"Parse source page {url}",
            log_level="debug",
            default_return=None,
        )
        if record is None:
            logger.debug("✗ No recipe found on source page", extra={"source_url": url})
        return record

    async def hydrate(self, sources: list[SourceRef], max_results: int) -> list[RecipeRecord]:
        """Fetch and parse candidate sources concurrently.

        Args:
            sources: Candidate pages from the envelope's meta.sources.
            max_results: Cap on pages fetched, clamped to [1, 10].

        Returns:
            Recipes recovered from the pages that hydrated (possibly empty),
            in source order, one per page.
        """
        cap = min(MAX_RESULTS, max(1, max_results))
        urls: list[str] = []
        for source in sources:
            if source.url not in urls:
                urls.append(source.url)
        urls = urls[:cap]
        if not urls:
            return []

        logger.info(f"Hydrating {len(urls)} source page(s)...")
        results = await asyncio.gather(*(self._hydrate_one(url) for url in urls))
        recipes = [record for record in results if record is not None]
        logger.info(f"✓ Hydrated {len(recipes)}/{len(urls)} source page(s)")
        return recipes
