"""Typed records for the canonical dataset and its projections"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

from pricecheck.normalize import Unit, provider_slug

PriceField = Literal["input_per_million", "output_per_million"]


def utc_now_iso() -> str:
    """Current wall-clock time as an ISO-8601 UTC timestamp"""
    return datetime.now(timezone.utc).isoformat()


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ModelRecord(BaseModel):
    """One model's pricing inside a provider"""

    name: str = Field(min_length=1)
    input_per_million: float = Field(ge=0)
    output_per_million: float = Field(ge=0)
    context_window: int = Field(default=0, ge=0)
    free_tier: Optional[str] = None
    last_updated: str = ""

    # Optional enrichment, omitted from the document when unknown
    speed: Optional[float] = None
    benchmark_score: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("benchmark_score", "sde_bench_score"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("free_tier", mode="before")
    @classmethod
    def _normalize_free_tier(cls, value):
        return _blank_to_none(value)

    @field_validator("context_window", mode="before")
    @classmethod
    def _missing_context_is_zero(cls, value):
        return 0 if value is None else value

    @model_serializer(mode="wrap")
    def _drop_missing_enrichment(self, handler):
        data = handler(self)
        for key in ("speed", "benchmark_score"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class ProviderRecord(BaseModel):
    """A provider and its ordered model list"""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    models: List[ModelRecord]

    @field_validator("models")
    @classmethod
    def _unique_model_names(cls, models: List[ModelRecord]) -> List[ModelRecord]:
        seen = set()
        for model in models:
            if model.name in seen:
                raise ValueError(f"duplicate model name: {model.name}")
            seen.add(model.name)
        return models

    def find_model(self, name: str) -> Optional[ModelRecord]:
        for model in self.models:
            if model.name == name:
                return model
        return None


class DatasetMetadata(BaseModel):
    last_updated: str = Field(default_factory=utc_now_iso)
    source: str = "manual"
    total_model_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("total_model_count", "total_models"),
    )
    # Review candidates only: live ``last_updated`` the candidate was built on
    based_on: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _drop_missing_base(self, handler):
        data = handler(self)
        if data.get("based_on") is None:
            data.pop("based_on", None)
        return data



class CanonicalDataset(BaseModel):
    """
    The authoritative pricing table

    Invariant: ``metadata.total_model_count`` equals the number of models
    across all providers. ``recount()`` restores it after any mutation.
    """

    providers: List[ProviderRecord] = Field(default_factory=list)
    metadata: DatasetMetadata = Field(default_factory=DatasetMetadata)

    @field_validator("providers")
    @classmethod
    def _unique_provider_ids(
        cls, providers: List[ProviderRecord]
    ) -> List[ProviderRecord]:
        ids = [p.id for p in providers]
        duplicates = {pid for pid in ids if ids.count(pid) > 1}
        if duplicates:
            raise ValueError(f"duplicate provider ids: {sorted(duplicates)}")
        return providers

    @model_validator(mode="after")
    def _sync_model_count(self) -> "CanonicalDataset":
        self.metadata.total_model_count = self.model_count()
        return self

    def model_count(self) -> int:
        return sum(len(p.models) for p in self.providers)

    def recount(self) -> None:
        self.metadata.total_model_count = self.model_count()

    def find_provider(self, provider_id: str) -> Optional[ProviderRecord]:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def to_document(self) -> Dict:
        """Serialize to the stored JSON document shape"""
        return self.model_dump(mode="json")


class ObservedModel(BaseModel):
    """Partial model record as reported by a source, already per-million"""

    name: str = Field(min_length=1)
    input_per_million: float = Field(ge=0)
    output_per_million: float = Field(ge=0)
    context_window: Optional[int] = Field(default=None, ge=0)
    free_tier: Optional[str] = None
    speed: Optional[float] = None
    benchmark_score: Optional[float] = None

    @field_validator("free_tier", mode="before")
    @classmethod
    def _normalize_free_tier(cls, value):
        return _blank_to_none(value)


class Observation(BaseModel):
    """
    Uniform adapter output

    Prices are always per-million tokens. ``unit`` records the unit
    the source declared before normalization.
    """

    provider_name: str = Field(min_length=1)
    models: List[ObservedModel]
    observed_at: str = Field(default_factory=utc_now_iso)
    origin_url: str
    confidence: float = Field(ge=0.0, le=1.0)
    unit: Unit = Unit.PER_MILLION
    source_kind: str = "scraped"
    anomalies: List[str] = Field(default_factory=list)

    @property
    def provider_id(self) -> str:
        return provider_slug(self.provider_name)

    def to_provider_record(self, known: Optional[ProviderRecord] = None) -> ProviderRecord:
        """
        Convert to a provider payload for the merge engine (last duplicate wins)

        Args:
            known: The provider as currently stored; fields the source did not
                report (context window, free tier, speed, benchmark) are taken
                from it
        """
        by_name: Dict[str, ModelRecord] = {}
        for model in self.models:
            previous = known.find_model(model.name) if known else None

            context_window = model.context_window
            free_tier = model.free_tier
            speed = model.speed
            benchmark_score = model.benchmark_score
            if previous is not None:
                if context_window is None:
                    context_window = previous.context_window
                if free_tier is None:
                    free_tier = previous.free_tier
                if speed is None:
                    speed = previous.speed
                if benchmark_score is None:
                    benchmark_score = previous.benchmark_score

            by_name[model.name] = ModelRecord(
                name=model.name,
                input_per_million=model.input_per_million,
                output_per_million=model.output_per_million,
                context_window=context_window or 0,
                free_tier=free_tier,
                last_updated=self.observed_at,
                speed=speed,
                benchmark_score=benchmark_score,
            )

        return ProviderRecord(
            id=self.provider_id,
            name=self.provider_name,
            models=list(by_name.values()),
        )


class PriceChange(BaseModel):
    """A significant price delta, used for review and notification only"""

    provider: str
    model: str
    field: PriceField
    old_value: float
    new_value: float
    change_percent: float
    confidence: float
    source: str


class FlatModel(ModelRecord):
    """Per-model view derived from the canonical dataset"""

    provider: str
    provider_id: str
    total_cost: float
    score: int
    free_tier_valid: bool = False
