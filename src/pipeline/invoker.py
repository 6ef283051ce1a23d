"""Completion invoker: one bounded-time call to Gemini.

The client and configuration are injected, never resolved from process-wide
state, so concurrent searches with different models or budgets are safe.

Core Functions:
- create_genai_client(): Build a google-genai Client from configuration
- select_token_budget(): Output-token budget by mode and instruction detail
- CompletionInvoker.complete(): Single call with hard timeout (async)
"""

import asyncio
import time
from typing import Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, ConfigDict, Field

from src.utils.config import Config, config
from src.utils.errors import CompletionTimeout
from src.utils.logger import logger


class CompletionRequest(BaseModel):
    """Parameters for a single completion call."""

    model_config = ConfigDict(frozen=True)

    instructions: str
    input_text: str
    web_search: bool = True
    fast: bool = False
    max_output_tokens: int = Field(1800, ge=1)
    response_schema: Optional[dict] = None
    operation: str = "recipe search"


def create_genai_client(settings: Config = config) -> genai.Client:
    """Create a Gemini client from configuration.

    Raises:
        ValueError: If GEMINI_API_KEY is not configured.
    """
    if not settings.GEMINI_API_KEY:
        raise ValueError("GEMINI_API_KEY environment variable is required")
    return genai.Client(api_key=settings.GEMINI_API_KEY)


def select_token_budget(web_search: bool, detailed: bool, settings: Config = config) -> int:
    """Pick the output-token budget for a search attempt.

    Web search calls get materially larger budgets than generation-only calls.
    """
    if web_search:
        return settings.WEB_DETAILED_TOKENS if detailed else settings.WEB_CONCISE_TOKENS
    return settings.FAST_DETAILED_TOKENS if detailed else settings.FAST_CONCISE_TOKENS


class CompletionInvoker:
    """Issues completion calls with a hard wall-clock deadline.

    No retries happen here; the orchestrator decides what to do with a
    CompletionTimeout or any other failure.
    """

    def __init__(self, client: genai.Client, settings: Config = config) -> None:
        self.client = client
        self.settings = settings

    def model_for(self, request: CompletionRequest) -> str:
        if request.fast or not request.web_search:
            return self.settings.FAST_MODEL
        return self.settings.GEMINI_MODEL

    def timeout_for(self, request: CompletionRequest) -> float:
        timeout_ms = self.settings.FAST_COMPLETION_TIMEOUT_MS if request.fast else self.settings.COMPLETION_TIMEOUT_MS
        return timeout_ms / 1000

    def build_generation_config(self, request: CompletionRequest) -> types.GenerateContentConfig:
        """Translate a request into GenerateContentConfig.

        Web search mode attaches the Google Search grounding tool. The JSON
        schema constraint is always set for generation-only calls and, for
        web search calls, only when SCHEMA_WITH_WEB_SEARCH allows it.
        """
        kwargs = {
            "system_instruction": request.instructions,
            "temperature": self.settings.TEMPERATURE,
            "max_output_tokens": request.max_output_tokens,
        }
        if request.web_search:
            kwargs["tools"] = [types.Tool(google_search=types.GoogleSearch())]
        if request.response_schema and (not request.web_search or self.settings.SCHEMA_WITH_WEB_SEARCH):
            kwargs["response_mime_type"] = "application/json"
            kwargs["response_json_schema"] = request.response_schema
        return types.GenerateContentConfig(**kwargs)

    async def complete(self, request: CompletionRequest) -> str:
        """Run one completion call and return the raw response text.

        Args:
            request: Instructions, input and mode for this attempt.

        Returns:
            Raw response text ("" when the model returned no text parts).

        Raises:
            CompletionTimeout: If the call exceeds the configured deadline.
            Exception: Any client error is propagated unchanged.
        """
        model = self.model_for(request)
        timeout = self.timeout_for(request)
        generation_config = self.build_generation_config(request)

        logger.debug(
            f"Calling {model} for {request.operation} "
            f"(web_search={request.web_search}, max_tokens={request.max_output_tokens}, timeout={timeout:.0f}s)"
        )
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.models.generate_content,
                    model=model,
                    contents=request.input_text,
                    config=generation_config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise CompletionTimeout(f"{request.operation} exceeded {timeout:.0f}s deadline on {model}") from None

        text = response.text or ""
        logger.debug(f"✓ {model} answered in {time.monotonic() - started:.1f}s ({len(text)} chars)")
        return text
