"""Hand-verified pricing constants, the pipeline's trust anchor"""

from typing import Any, Dict, List, Optional
import structlog

from pricecheck.errors import ValidationError
from pricecheck.models import Observation, ObservedModel, utc_now_iso
from pricecheck.utils import load_verified_table

from .base import SourceAdapter, TrustTier

logger = structlog.get_logger(__name__)

VERIFIED_CONFIDENCE = 0.98
VERIFIED_ORIGIN = "verified constants"


class VerifiedConstantsAdapter(SourceAdapter):
    """Serves the packaged verified pricing table"""

    name = "verified"
    trust_tier = TrustTier.VERIFIED

    def __init__(self, table: Optional[Dict[str, Any]] = None):
        """
        Initialize verified constants adapter

        Args:
            table: Table in the ``verified_pricing.yml`` shape (defaults to the
                packaged file)
        """
        self.table = table if table is not None else load_verified_table()
        self.confidence = float(self.table.get("confidence", VERIFIED_CONFIDENCE))
        self._models = self._parse_table(self.table)

    @staticmethod
    def _parse_table(table: Dict[str, Any]) -> Dict[str, List[ObservedModel]]:
        providers = table.get("providers") or {}
        if not isinstance(providers, dict):
            raise ValidationError("Verified table 'providers' must be a mapping")

        parsed: Dict[str, List[ObservedModel]] = {}
        for provider_name, models in providers.items():
            parsed[provider_name] = [ObservedModel(**model) for model in models or []]
        return parsed

    def core_providers(self) -> List[str]:
        """Provider names covered by the verified table"""
        return list(self._models.keys())

    def models_for(self, provider_name: str) -> List[ObservedModel]:
        return list(self._models.get(provider_name, []))

    def observations(self, origin: str = VERIFIED_ORIGIN) -> List[Observation]:
        """Build one observation per verified provider"""
        timestamp = utc_now_iso()
        return [
            Observation(
                provider_name=provider_name,
                models=models,
                observed_at=timestamp,
                origin_url=origin,
                confidence=self.confidence,
                source_kind="manual",
            )
            for provider_name, models in self._models.items()
        ]

    async def fetch(self) -> List[Observation]:
        observations = self.observations()
        logger.info(
            "verified_constants_loaded",
            providers=len(observations),
            models=sum(len(o.models) for o in observations),
        )
        return observations
