"""Data models and schemas for the recipe ingestion pipeline.

Defines Pydantic models for search filters, validated recipe records, the
response envelope and persisted store rows. All models use Pydantic v2.

Raw completion output never reaches these models directly: it goes through
the shape normalizer and sanitizer first, so a ValidationError here means the
value is structurally unrecoverable (surfaced as SchemaViolation).
"""

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Annotated
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_RESULTS = 5
MAX_RESULTS = 10

Difficulty = Literal["easy", "medium", "hard"]


def is_absolute_url(value: Any) -> bool:
    """Check that value is an absolute http(s) URL with a host."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and " " not in value.strip()


class SearchFilters(BaseModel):
    """Canonical search request, built once per user action by normalize_filters().

    Immutable through the pipeline; recovery attempts override parameters on
    their own attempt plan, never on the filters.
    """

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    query: Annotated[Optional[str], Field(None, max_length=500, description="Free-text dish or theme")]
    country: Annotated[str, Field(min_length=1, description="Country or cuisine region to search")]
    include_ingredients: Annotated[List[str], Field(default_factory=list)]
    exclude_ingredients: Annotated[List[str], Field(default_factory=list)]
    max_results: Annotated[int, Field(MIN_RESULTS, ge=MIN_RESULTS, le=MAX_RESULTS)]
    exclude_sources: Annotated[
        List[str], Field(default_factory=list, description="Source URLs to omit (used by search_more)")
    ]
    detailed_instructions: bool = False
    image_fallback_enabled: bool = True


class Ingredient(BaseModel):
    """One ingredient line. Entries without an item never get this far."""

    model_config = ConfigDict(str_strip_whitespace=True)

    item: Annotated[str, Field(min_length=1, max_length=300)]
    quantity: Optional[float | int | str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


class InstructionStep(BaseModel):
    """Numbered instruction step."""

    model_config = ConfigDict(str_strip_whitespace=True)

    step: Annotated[int, Field(ge=1)]
    text: Annotated[str, Field(min_length=1)]


class Nutrition(BaseModel):
    """Per-serving nutrition. Every field is optional; the block is omitted when empty."""

    calories: Annotated[Optional[int], Field(None, ge=0)]
    protein_g: Annotated[Optional[float], Field(None, ge=0)]
    fat_g: Annotated[Optional[float], Field(None, ge=0)]
    carbs_g: Annotated[Optional[float], Field(None, ge=0)]


class RecipeRecord(BaseModel):
    """Validated recipe.

    A record always has at least one ingredient, at least one instruction and
    an absolute source URL. Records that cannot satisfy this are dropped by the
    sanitizer instead of being defaulted into existence.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Annotated[str, Field(min_length=1, max_length=300)]
    description: Optional[str] = None
    cuisine: Optional[str] = None
    source: Annotated[str, Field(description="Absolute URL of the recipe page")]
    image: Optional[str] = None
    servings: Annotated[Optional[int], Field(None, ge=1)]
    total_time_minutes: Annotated[Optional[int], Field(None, ge=0)]
    difficulty: Optional[Difficulty] = None
    ingredients: Annotated[List[Ingredient], Field(min_length=1)]
    instructions: Annotated[List[InstructionStep], Field(min_length=1)]
    nutrition: Optional[Nutrition] = None

    @field_validator("source")
    @classmethod
    def validate_source(cls, source: str) -> str:
        """Source must be an absolute http(s) URL."""
        if not is_absolute_url(source):
            raise ValueError(f"source must be an absolute URL, got: {source[:80]!r}")
        return source

    @field_validator("image")
    @classmethod
    def validate_image(cls, image: Optional[str]) -> Optional[str]:
        """Image, when present, must be an absolute http(s) URL."""
        if image is not None and not is_absolute_url(image):
            raise ValueError(f"image must be an absolute URL, got: {image[:80]!r}")
        return image


class SourceRef(BaseModel):
    """Candidate source page reported by the completion service."""

    url: str
    title: Optional[str] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, url: str) -> str:
        if not is_absolute_url(url):
            raise ValueError(f"source url must be absolute, got: {url[:80]!r}")
        return url


class UsedFilters(BaseModel):
    """Filters echoed back on the envelope, plus enrichment markers."""

    query: Optional[str] = None
    country: str
    include_ingredients: List[str] = Field(default_factory=list)
    exclude_ingredients: List[str] = Field(default_factory=list)
    max_results: Annotated[int, Field(ge=MIN_RESULTS, le=MAX_RESULTS)]
    exclude_sources: List[str] = Field(default_factory=list)
    detailed_instructions: bool = False
    image_fallback_enabled: bool = True
    image_fallback: bool = False
    image_fallback_provider: Optional[str] = None

    @classmethod
    def from_filters(cls, filters: SearchFilters) -> "UsedFilters":
        return cls(
            query=filters.query,
            country=filters.country,
            include_ingredients=list(filters.include_ingredients),
            exclude_ingredients=list(filters.exclude_ingredients),
            max_results=filters.max_results,
            exclude_sources=list(filters.exclude_sources),
            detailed_instructions=filters.detailed_instructions,
            image_fallback_enabled=filters.image_fallback_enabled,
        )


class SanitizationIssue(BaseModel):
    """One field or entry dropped during sanitization, and why."""

    path: str
    reason: str


class ResponseMeta(BaseModel):
    """Envelope metadata."""

    has_more: bool = False
    sources: List[SourceRef] = Field(default_factory=list)
    used_filters: UsedFilters
    reason: Optional[str] = Field(None, description="Reason code for a benign empty result")
    diagnostics: List[SanitizationIssue] = Field(default_factory=list)


class ResponseEnvelope(BaseModel):
    """Final search result: 0..10 validated recipes plus metadata."""

    recipes: Annotated[List[RecipeRecord], Field(default_factory=list, max_length=MAX_RESULTS)]
    meta: ResponseMeta


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistedRow(BaseModel):
    """Store row produced by the upsert persister.

    metadata holds servings, total_time_minutes, difficulty, image_url and
    source_url; source_url is the natural key.
    """

    id: str
    title: str
    description: Optional[str] = None
    cuisine: str = "international"
    ingredients: List[dict] = Field(default_factory=list)
    instructions: List[dict] = Field(default_factory=list)
    nutritional_info: Optional[dict] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def source_url(self) -> Optional[str]:
        return self.metadata.get("source_url")
