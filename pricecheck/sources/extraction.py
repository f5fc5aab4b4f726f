"""LLM extraction adapter: documentation pages to structured pricing"""

import asyncio
from typing import List, Optional

from pydantic import (
    BaseModel,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)
import structlog

from pricecheck.errors import NetworkError, ValidationError
from pricecheck.extraction_client import ExtractionClient, html_to_text
from pricecheck.models import Observation, ObservedModel, utc_now_iso
from pricecheck.normalize import canonical_provider_name

from .base import SourceAdapter, TrustTier

logger = structlog.get_logger(__name__)

DEFAULT_EXTRACTION_CONFIDENCE = 0.7

EXTRACTION_SYSTEM_PROMPT = """You are a pricing data extraction expert. Your task is to extract pricing information from documentation pages about LLM models.

Given a documentation page about LLM pricing, extract the following information:

1. Provider name (e.g., "xAI", "OpenAI", "Anthropic")
2. Model name(s) and their pricing details:
   - Model name
   - Input price per million tokens
   - Output price per million tokens
   - Context window (if available)
   - Free tier information (if available)

Important notes:
- Prices are ALWAYS in dollars per million tokens ($/M)
- If you see prices like "$0.20 per 1K tokens", convert to $200 per million
- If you see prices like "$0.20 per 1M tokens", keep as $0.20 per million
- Context window is in tokens (e.g., 128000, 200000)
- Look for "input", "output", "prompt", "completion" pricing
- Multiple models might be on one page

Return your response as valid JSON in this exact format:
{
  "provider": "Provider Name",
  "models": [
    {
      "name": "Model Name",
      "input_per_million": 0.20,
      "output_per_million": 0.50,
      "context_window": 128000,
      "free_tier": "Optional free tier info"
    }
  ],
  "confidence": 0.95
}

Confidence: 0.95 if the prices are stated clearly, 0.7 if uncertain.
If no pricing data is found, return an empty models array."""


class ExtractedModel(BaseModel):
    """Model entry in the extraction response; prices must be JSON numbers"""

    name: str = Field(min_length=1)
    input_per_million: float = Field(ge=0)
    output_per_million: float = Field(ge=0)
    context_window: Optional[int] = Field(default=None, ge=0)
    free_tier: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("model name is blank")
        return value

    @field_validator("input_per_million", "output_per_million", mode="before")
    @classmethod
    def _require_number(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("price must be a JSON number")
        return value


class ExtractionPayload(BaseModel):
    """Schema the completion response must satisfy"""

    provider: str = Field(min_length=1)
    models: List[ExtractedModel]
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("provider")
    @classmethod
    def _strip_provider(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("provider is blank")
        return value


class BatchItem(BaseModel):
    url: str
    provider: Optional[str] = None


def parse_extraction_payload(data: dict) -> ExtractionPayload:
    """
    Validate a raw extraction response

    Raises:
        ValidationError: If any part of the payload is invalid; nothing is
            partially accepted
    """
    try:
        return ExtractionPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid extraction result: {e.error_count()} error(s)", e.errors()
        ) from e


def build_user_prompt(text: str, provider_hint: Optional[str] = None) -> str:
    if provider_hint:
        return f"Documentation content (provider hint: {provider_hint}):\n\n{text}"
    return f"Documentation content:\n\n{text}"


class ExtractionAdapter(SourceAdapter):
    """
    Extracts pricing from documentation URLs through a structured-output
    completion

    A failing URL is logged and skipped; the remaining batch still runs.
    """

    name = "extraction"
    trust_tier = TrustTier.EXTRACTION

    def __init__(
        self,
        client: ExtractionClient,
        items: List[BatchItem],
        max_chars: int = 8000,
        delay_seconds: float = 2.0,
    ):
        self.client = client
        self.items = items
        self.max_chars = max_chars
        self.delay_seconds = delay_seconds

    async def extract(self, url: str, provider_hint: Optional[str] = None) -> Observation:
        """
        Extract pricing from a single URL

        Raises:
            NetworkError: If the page or the completion API is unreachable
            ValidationError: If the completion does not match the schema
        """
        logger.info("starting_extraction", url=url, provider_hint=provider_hint)

        html = await self.client.fetch_page(url)
        text = html_to_text(html, max_chars=self.max_chars)
        logger.debug("page_cleaned", url=url, chars=len(text))

        raw = await self.client.complete_json(
            EXTRACTION_SYSTEM_PROMPT, build_user_prompt(text, provider_hint)
        )
        payload = parse_extraction_payload(raw)

        confidence = (
            payload.confidence
            if payload.confidence is not None
            else DEFAULT_EXTRACTION_CONFIDENCE
        )

        observation = Observation(
            provider_name=canonical_provider_name(payload.provider),
            models=[
                ObservedModel(
                    name=m.name,
                    input_per_million=float(m.input_per_million),
                    output_per_million=float(m.output_per_million),
                    context_window=m.context_window,
                    free_tier=m.free_tier,
                )
                for m in payload.models
            ],
            observed_at=utc_now_iso(),
            origin_url=url,
            confidence=confidence,
            source_kind="scraped",
        )

        logger.info(
            "extraction_completed",
            url=url,
            provider=observation.provider_name,
            models=len(observation.models),
            confidence=confidence,
        )
        return observation

    async def fetch(self) -> List[Observation]:
        observations = []

        for position, item in enumerate(self.items):
            if position > 0 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)

            try:
                observations.append(await self.extract(item.url, item.provider))
            except (NetworkError, ValidationError) as e:
                logger.error("extraction_failed", url=item.url, error=str(e))

        logger.info(
            "extraction_batch_completed",
            total=len(self.items),
            succeeded=len(observations),
            failed=len(self.items) - len(observations),
        )
        return observations

    async def aclose(self) -> None:
        await self.client.aclose()
