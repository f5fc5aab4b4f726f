"""Aggregator API adapter: bulk pricing with a verified overlay for core providers"""

from typing import Dict, List, Optional
import warnings

from pydantic import BaseModel, ValidationError as PydanticValidationError
import structlog

from pricecheck.aggregator_client import AggregatorClient
from pricecheck.changes import ChangeDetector
from pricecheck.errors import NetworkError, UnitAmbiguityWarning, ValidationError
from pricecheck.models import Observation, ObservedModel, utc_now_iso
from pricecheck.normalize import Unit, canonical_provider_name, normalize_price

from .base import SourceAdapter, TrustTier
from .verified import VerifiedConstantsAdapter

logger = structlog.get_logger(__name__)

AGGREGATOR_CONFIDENCE = 0.85
FALLBACK_ORIGIN = "verified constants (API unavailable)"


class AggregatorRow(BaseModel):
    """One row as the aggregator reports it"""

    vendor: str
    name: str
    input: float
    output: float
    context: Optional[int] = None
    updated: Optional[str] = None


class AggregatorAdapter(SourceAdapter):
    """
    Adapter for the aggregator price list

    Strategy:
    1. Fetch every row from the aggregator and group by canonical vendor
    2. Normalize prices using the unit the aggregator is declared to use
    3. Core providers (present in the verified table) keep the verified
       numbers; the API rows only produce anomaly lines
    4. All other providers use the API values directly
    5. If the API is unreachable, serve the verified table instead
    """

    name = "aggregator"
    trust_tier = TrustTier.AGGREGATOR

    def __init__(
        self,
        client: AggregatorClient,
        verified: Optional[VerifiedConstantsAdapter] = None,
        declared_unit: Unit = Unit.PER_MILLION,
        detector: Optional[ChangeDetector] = None,
    ):
        self.client = client
        self.verified = verified or VerifiedConstantsAdapter()
        self.declared_unit = Unit.parse(declared_unit)
        self.detector = detector or ChangeDetector()

    def _parse_rows(self, raw_rows: List[dict]) -> List[AggregatorRow]:
        rows = []
        for raw in raw_rows:
            try:
                rows.append(AggregatorRow.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(
                    "aggregator_row_skipped", row=raw, error=str(e.errors()[:1])
                )
        return rows

    def _to_observed(self, row: AggregatorRow) -> Optional[ObservedModel]:
        input_price = normalize_price(row.input, self.declared_unit)
        output_price = normalize_price(row.output, self.declared_unit)

        if input_price is None or output_price is None:
            return None

        try:
            return ObservedModel(
                name=row.name,
                input_per_million=input_price,
                output_per_million=output_price,
                context_window=row.context,
            )
        except PydanticValidationError as e:
            logger.warning("aggregator_model_rejected", model=row.name, error=str(e))
            return None

    def _fallback(self) -> List[Observation]:
        logger.warning("aggregator_unavailable_using_verified_constants")
        return self.verified.observations(origin=FALLBACK_ORIGIN)

    async def fetch(self) -> List[Observation]:
        try:
            raw_rows = await self.client.list_prices()
        except (NetworkError, ValidationError) as e:
            logger.error("aggregator_fetch_failed", error=str(e))
            return self._fallback()

        rows = self._parse_rows(raw_rows)
        if not rows:
            return self._fallback()

        grouped: Dict[str, List[AggregatorRow]] = {}
        for row in rows:
            grouped.setdefault(canonical_provider_name(row.vendor), []).append(row)

        logger.info("aggregator_providers_found", count=len(grouped))

        core = set(self.verified.core_providers())
        timestamp = utc_now_iso()
        observations: List[Observation] = []
        anomaly_count = 0

        for provider_name in sorted(grouped):
            api_models = [
                m for m in (self._to_observed(r) for r in grouped[provider_name]) if m
            ]

            if provider_name in core:
                verified_models = self.verified.models_for(provider_name)
                findings = self.detector.compare_reference(
                    provider_name, verified_models, api_models
                )
                anomalies = []
                for kind, detail in findings:
                    if kind == "unit":
                        warnings.warn(detail, UnitAmbiguityWarning, stacklevel=2)
                    logger.warning("aggregator_anomaly", kind=kind, detail=detail)
                    anomalies.append(detail)
                anomaly_count += len(anomalies)

                observations.append(
                    Observation(
                        provider_name=provider_name,
                        models=verified_models,
                        observed_at=timestamp,
                        origin_url=self.client.url,
                        confidence=self.verified.confidence,
                        unit=self.declared_unit,
                        source_kind="scraped",
                        anomalies=anomalies,
                    )
                )
                logger.info(
                    "aggregator_provider_processed",
                    provider=provider_name,
                    models=len(verified_models),
                    basis="verified",
                )
            elif api_models:
                observations.append(
                    Observation(
                        provider_name=provider_name,
                        models=api_models,
                        observed_at=timestamp,
                        origin_url=self.client.url,
                        confidence=AGGREGATOR_CONFIDENCE,
                        unit=self.declared_unit,
                        source_kind="scraped",
                    )
                )
                logger.info(
                    "aggregator_provider_processed",
                    provider=provider_name,
                    models=len(api_models),
                    basis="api",
                )

        if anomaly_count:
            logger.warning(
                "core_provider_anomalies_need_review", count=anomaly_count
            )

        return observations

    async def aclose(self) -> None:
        await self.client.aclose()
