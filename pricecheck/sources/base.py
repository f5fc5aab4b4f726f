"""Base interface for pricing source adapters"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List
import structlog

from pricecheck.models import Observation

logger = structlog.get_logger(__name__)


class TrustTier(str, Enum):
    VERIFIED = "verified"
    AGGREGATOR = "aggregator"
    EXTRACTION = "extraction"
    SUBMISSION = "submission"


class SourceAdapter(ABC):
    """
    Abstract base class for pricing sources

    Each adapter knows:
    1. Where its pricing comes from
    2. How to parse that source's own raw shape
    3. How to normalize it into per-1M ``Observation`` records

    Raw per-source shapes never leave the adapter.
    """

    name: str
    trust_tier: TrustTier

    @abstractmethod
    async def fetch(self) -> List[Observation]:
        """
        Produce observations from this source

        Returns:
            Observations, one per provider seen by the source

        Raises:
            NetworkError: If the source could not be reached
            ValidationError: If the source returned unusable data
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the adapter"""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} tier={self.trust_tier.value}>"
