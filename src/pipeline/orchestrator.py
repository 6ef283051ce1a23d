"""Retry/recovery orchestrator and public search entry points.

One search runs attempts of: build prompt -> invoke -> extract -> normalize
-> sanitize. A failed attempt is matched against an ordered list of recovery
rules (first match wins), each usable at most once per search:

1. timeout        CompletionTimeout        -> fast generation-only, 5 results, reduced tokens
2. empty_recipes  SchemaViolation (empty)  -> generation-only, 5 results
3. parse_failure  ParseFailure             -> generation-only, more output tokens
4. shrink_batch   anything else            -> one fewer result, not below 5 (skipped when it cannot shrink)

The total number of attempts is capped by MAX_SEARCH_ATTEMPTS. When no rule
applies, the failure is surfaced with its category intact. A validated
envelope with zero recipes but candidate sources goes to the hydration
fallback instead of another completion call.

Entry points:
- RecipeSearchPipeline.search(): filters -> ResponseEnvelope
- RecipeSearchPipeline.search_more(): previous envelope + filters -> ResponseEnvelope
- RecipeSearchPipeline.search_and_store(): search, then upsert
- RecipeSearchPipeline.repair_image(): backfill the image of a stored recipe
- create_pipeline(): build a pipeline from configuration
"""

import asyncio
import math
import time
import uuid
from typing import Callable, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.enrichment.images import ImageEnricher, TavilyImageSearch
from src.enrichment.repair import repair_stored_image
from src.hydration.hydrator import HtmlFetcher, SourceHydrator
from src.models.models import (
    MAX_RESULTS,
    MIN_RESULTS,
    PersistedRow,
    ResponseEnvelope,
    ResponseMeta,
    SearchFilters,
    UsedFilters,
)
from src.pipeline.extractor import extract_json
from src.pipeline.filters import normalize_filters
from src.pipeline.invoker import CompletionInvoker, CompletionRequest, create_genai_client, select_token_budget
from src.pipeline.normalizer import normalize_shape
from src.pipeline.sanitizer import sanitize_envelope
from src.prompts.prompts import RECIPE_RESULT_SCHEMA, build_input, build_instructions
from src.storage.store import RecipeStore, upsert_recipes
from src.utils.config import Config, config
from src.utils.errors import (
    EMPTY_RESULT,
    CompletionTimeout,
    ParseFailure,
    RecipePipelineError,
    SchemaViolation,
)
from src.utils.logger import logger


class AttemptPlan(BaseModel):
    """Parameters for one completion attempt. Recovery rules derive a new plan."""

    model_config = ConfigDict(frozen=True)

    web_search: bool
    fast: bool = False
    max_results: int = Field(ge=1, le=MAX_RESULTS)
    max_output_tokens: int = Field(ge=1)


class RecoveryRule(NamedTuple):
    name: str
    applies: Callable[[Exception, AttemptPlan], bool]
    recover: Callable[[AttemptPlan], AttemptPlan]


def _is_empty_violation(error: Exception) -> bool:
    return isinstance(error, SchemaViolation) and error.empty_recipes


def _has_dedicated_rule(error: Exception) -> bool:
    return isinstance(error, (CompletionTimeout, ParseFailure)) or _is_empty_violation(error)


def _shrunk(plan: AttemptPlan) -> int:
    return max(MIN_RESULTS, plan.max_results - 1)


class RecipeSearchPipeline:
    """Drives the ingestion stages for a single search at a time.

    Holds no per-search state: every search builds its own attempt plan and
    used-rule set, so one pipeline can serve concurrent searches.
    """

    def __init__(
        self,
        invoker: CompletionInvoker,
        hydrator: Optional[SourceHydrator] = None,
        enricher: Optional[ImageEnricher] = None,
        fetcher: Optional[HtmlFetcher] = None,
        settings: Config = config,
    ) -> None:
        self.invoker = invoker
        self.hydrator = hydrator
        self.enricher = enricher
        self.fetcher = fetcher
        self.settings = settings

    # ------------------------------------------------------------------
    # Recovery policy
    # ------------------------------------------------------------------

    def recovery_rules(self) -> list[RecoveryRule]:
        """Ordered (predicate, action) pairs evaluated against a failed attempt."""
        settings = self.settings
        return [
            RecoveryRule(
                "timeout",
                lambda error, plan: isinstance(error, CompletionTimeout),
                lambda plan: plan.model_copy(
                    update={
                        "web_search": False,
                        "fast": True,
                        "max_results": MIN_RESULTS,
                        "max_output_tokens": settings.TIMEOUT_RETRY_TOKENS,
                    }
                ),
            ),
            RecoveryRule(
                "empty_recipes",
                lambda error, plan: _is_empty_violation(error),
                lambda plan: plan.model_copy(
                    update={
                        "web_search": False,
                        "max_results": min(plan.max_results, MIN_RESULTS),
                        "max_output_tokens": settings.EMPTY_RETRY_TOKENS,
                    }
                ),
            ),
            RecoveryRule(
                "parse_failure",
                lambda error, plan: isinstance(error, ParseFailure),
                lambda plan: plan.model_copy(
                    update={
                        "web_search": False,
                        "max_output_tokens": max(
                            math.ceil(plan.max_output_tokens * 1.5), settings.PARSE_RETRY_TOKENS
                        ),
                    }
                ),
            ),
            RecoveryRule(
                "shrink_batch",
                lambda error, plan: not _has_dedicated_rule(error) and _shrunk(plan) != plan.max_results,
                lambda plan: plan.model_copy(update={"max_results": _shrunk(plan)}),
            ),
        ]

    def select_rule(self, error: Exception, plan: AttemptPlan, used: set[str]) -> Optional[RecoveryRule]:
        """First rule whose predicate matches. A used rule blocks its category.

        Returns None when the matching rule was already used, so a second
        failure of the same category is surfaced instead of retried.
        """
        for rule in self.recovery_rules():
            if rule.applies(error, plan):
                return None if rule.name in used else rule
        return None

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def initial_plan(self, filters: SearchFilters, web_search: bool) -> AttemptPlan:
        return AttemptPlan(
            web_search=web_search,
            max_results=filters.max_results,
            max_output_tokens=select_token_budget(web_search, filters.detailed_instructions, self.settings),
        )

    async def run_attempt(self, filters: SearchFilters, plan: AttemptPlan) -> ResponseEnvelope:
        """Built -> Invoked -> Extracted -> Validated for one plan.

        Raises:
            CompletionTimeout, ParseFailure, SchemaViolation: Typed failures.
            Exception: Unclassified client errors.
        """
        request = CompletionRequest(
            instructions=build_instructions(plan.web_search, filters.detailed_instructions),
            input_text=build_input(filters, plan.max_results),
            web_search=plan.web_search,
            fast=plan.fast,
            max_output_tokens=plan.max_output_tokens,
            response_schema=RECIPE_RESULT_SCHEMA,
        )
        text = await self.invoker.complete(request)
        value = extract_json(text)
        envelope = sanitize_envelope(
            normalize_shape(value, filters),
            filters,
            web_search=plan.web_search,
            app_domain=self.settings.APP_DOMAIN,
        )
        if len(envelope.recipes) > plan.max_results:
            meta = envelope.meta.model_copy(update={"has_more": True})
            envelope = envelope.model_copy(update={"recipes": envelope.recipes[: plan.max_results], "meta": meta})
        return envelope

    @staticmethod
    def empty_envelope(filters: SearchFilters) -> ResponseEnvelope:
        return ResponseEnvelope(
            recipes=[],
            meta=ResponseMeta(used_filters=UsedFilters.from_filters(filters), reason=EMPTY_RESULT),
        )

    async def _hydrate(self, envelope: ResponseEnvelope, filters: SearchFilters, log_extra: dict) -> ResponseEnvelope:
        if self.hydrator is None:
            return envelope.model_copy(update={"meta": envelope.meta.model_copy(update={"reason": EMPTY_RESULT})})

        logger.info(
            f"No recipes in validated response, hydrating {len(envelope.meta.sources)} source(s)",
            extra=log_extra,
        )
        excluded = set(filters.exclude_sources)
        hydrated = await self.hydrator.hydrate(envelope.meta.sources, filters.max_results)
        hydrated = [record for record in hydrated if record.source not in excluded][: filters.max_results]
        if not hydrated:
            logger.info("✗ Hydration recovered nothing, returning empty result", extra=log_extra)
            return envelope.model_copy(update={"meta": envelope.meta.model_copy(update={"reason": EMPTY_RESULT})})
        return envelope.model_copy(update={"recipes": hydrated})

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def search(self, raw_filters: Optional[dict | SearchFilters] = None, web_search: bool = True) -> ResponseEnvelope:
        """Run a recipe search with recovery, hydration and image enrichment.

        Args:
            raw_filters: Caller filters (normalized here).
            web_search: Start in web-search mode (True) or generation-only mode.

        Returns:
            A valid ResponseEnvelope. An empty result carries meta.reason
            "empty_result" and is not an error.

        Raises:
            RecipePipelineError: Typed failure (timeout, parse_failure,
                schema_violation, or unclassified) when recovery is exhausted.
        """
        filters = normalize_filters(raw_filters, self.settings.DEFAULT_COUNTRY)
        log_extra = {"search_id": uuid.uuid4().hex[:8]}
        started = time.monotonic()
        plan = self.initial_plan(filters, web_search)
        used_rules: set[str] = set()
        attempt = 0

        logger.info(
            f"Searching recipes (query={filters.query!r}, country={filters.country!r}, "
            f"max_results={filters.max_results}, web_search={web_search})",
            extra=log_extra,
        )

        while True:
            attempt += 1
            try:
                envelope = await self.run_attempt(filters, plan)
                break
            except Exception as error:
                rule = self.select_rule(error, plan, used_rules)
                if rule is None or attempt >= self.settings.MAX_SEARCH_ATTEMPTS:
                    if _is_empty_violation(error):
                        logger.info("✗ No recipes after recovery, returning empty result", extra=log_extra)
                        return self.empty_envelope(filters)
                    logger.error(f"✗ Recipe search failed after {attempt} attempt(s): {error}", extra=log_extra)
                    if isinstance(error, RecipePipelineError):
                        raise
                    raise RecipePipelineError(f"Recipe search failed: {type(error).__name__}") from error

                used_rules.add(rule.name)
                plan = rule.recover(plan)
                logger.warning(
                    f"Attempt {attempt} failed ({getattr(error, 'category', type(error).__name__)}), "
                    f"recovering with '{rule.name}' (web_search={plan.web_search}, "
                    f"max_results={plan.max_results}, max_tokens={plan.max_output_tokens})",
                    extra={**log_extra, "attempt": attempt, "recovery": rule.name},
                )

        if not envelope.recipes:
            envelope = await self._hydrate(envelope, filters, log_extra)

        if envelope.recipes and self.enricher is not None:
            envelope = await self.enricher.enrich(envelope, filters)

        logger.info(
            f"✓ Search finished: {len(envelope.recipes)} recipe(s), {len(envelope.meta.sources)} source(s) "
            f"in {time.monotonic() - started:.1f}s",
            extra=log_extra,
        )
        return envelope

    async def search_more(
        self,
        previous: ResponseEnvelope,
        raw_filters: Optional[dict | SearchFilters] = None,
        web_search: bool = True,
    ) -> ResponseEnvelope:
        """Fresh search that skips everything the previous response already surfaced.

        The exclusion set is the union of previous.meta.sources urls,
        previous.recipes sources and caller-supplied exclude_sources.

        Args:
            previous: Envelope returned by an earlier search.
            raw_filters: Filters for the new search; defaults to the previous used_filters.
            web_search: Start in web-search mode.
        """
        if raw_filters is None:
            raw_filters = previous.meta.used_filters.model_dump(exclude={"image_fallback", "image_fallback_provider"})
        filters = normalize_filters(raw_filters, self.settings.DEFAULT_COUNTRY)

        excluded = [source.url for source in previous.meta.sources]
        excluded += [recipe.source for recipe in previous.recipes]
        excluded += list(filters.exclude_sources)
        merged = list(dict.fromkeys(excluded))

        return await self.search({**filters.model_dump(), "exclude_sources": merged}, web_search=web_search)

    async def search_and_store(
        self,
        store: RecipeStore,
        raw_filters: Optional[dict | SearchFilters] = None,
        web_search: bool = True,
    ) -> tuple[ResponseEnvelope, list[PersistedRow]]:
        """Search, then upsert every returned recipe keyed by source URL."""
        envelope = await self.search(raw_filters, web_search=web_search)
        rows = await asyncio.to_thread(upsert_recipes, store, envelope.recipes)
        return envelope, rows

    async def repair_image(
        self,
        store: RecipeStore,
        row_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Optional[PersistedRow]:
        """Find and store an image for an already persisted recipe."""
        return await repair_stored_image(
            store,
            row_id=row_id,
            source=source,
            fetcher=self.fetcher,
            enricher=self.enricher,
        )


def create_pipeline(settings: Config = config) -> RecipeSearchPipeline:
    """Build a pipeline with Gemini, aiohttp fetching and (when keyed) Tavily.

    Raises:
        ValueError: If GEMINI_API_KEY is not configured.
    """
    invoker = CompletionInvoker(create_genai_client(settings), settings)
    fetcher = HtmlFetcher(settings)
    tavily = TavilyImageSearch(settings.TAVILY_API_KEY, settings) if settings.TAVILY_API_KEY else None
    return RecipeSearchPipeline(
        invoker=invoker,
        hydrator=SourceHydrator(fetcher),
        enricher=ImageEnricher(invoker, tavily, settings),
        fetcher=fetcher,
        settings=settings,
    )
