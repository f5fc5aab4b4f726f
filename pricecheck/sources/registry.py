"""Source adapter registry"""

from typing import Dict, Iterable, List, Optional
import httpx
import structlog

from pricecheck.aggregator_client import AggregatorClient
from pricecheck.changes import ChangeDetector
from pricecheck.config import Config
from pricecheck.extraction_client import ExtractionClient

from .aggregator import AggregatorAdapter
from .base import SourceAdapter, TrustTier
from .extraction import BatchItem, ExtractionAdapter
from .submission import Submission, SubmissionAdapter
from .verified import VerifiedConstantsAdapter

logger = structlog.get_logger(__name__)

# Tiers run by a plain scheduled update
DEFAULT_TIERS = (TrustTier.AGGREGATOR,)


class SourceRegistry:
    """Adapters for one run, keyed by trust tier"""

    def __init__(self):
        self._adapters: Dict[TrustTier, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter):
        """Register a source adapter (replaces any adapter of the same tier)"""
        self._adapters[adapter.trust_tier] = adapter
        logger.info("registered_source_adapter", name=adapter.name, tier=adapter.trust_tier.value)

    def get(self, tier: TrustTier) -> Optional[SourceAdapter]:
        return self._adapters.get(TrustTier(tier))

    def select(self, tiers: Iterable[TrustTier]) -> List[SourceAdapter]:
        """Adapters for the given tiers, in the order asked for; unknown tiers are skipped"""
        selected = []
        for tier in tiers:
            adapter = self.get(tier)
            if adapter is None:
                logger.debug("source_tier_not_registered", tier=TrustTier(tier).value)
                continue
            selected.append(adapter)
        return selected

    def list_adapters(self) -> List[str]:
        return [adapter.name for adapter in self._adapters.values()]


def build_detector(config: Config) -> ChangeDetector:
    return ChangeDetector(
        threshold_percent=config.price_change_threshold_percent,
        ratio_divergence_percent=config.ratio_divergence_percent,
    )


def build_aggregator_adapter(
    config: Config,
    verified: Optional[VerifiedConstantsAdapter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AggregatorAdapter:
    client = AggregatorClient(
        url=config.aggregator_url,
        timeout=config.aggregator_timeout_seconds,
        user_agent=config.user_agent,
        transport=transport,
    )
    return AggregatorAdapter(
        client,
        verified=verified,
        declared_unit=config.aggregator_unit,
        detector=build_detector(config),
    )


def build_extraction_adapter(
    config: Config,
    items: List[BatchItem],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExtractionAdapter:
    """
    Create the extraction adapter for a batch of URLs

    Raises:
        ValidationError: If the extraction API key or base URL is not configured
    """
    client = ExtractionClient(
        api_key=config.extraction_api_key,
        base_url=config.extraction_base_url,
        model=config.extraction_model,
        completion_timeout=config.extraction_timeout_seconds,
        page_timeout=config.page_timeout_seconds,
        user_agent=config.user_agent,
        transport=transport,
    )
    return ExtractionAdapter(
        client,
        items,
        max_chars=config.extraction_max_chars,
        delay_seconds=config.batch_delay_seconds,
    )


def build_adapters(
    config: Config,
    tiers: Iterable[TrustTier] = DEFAULT_TIERS,
    batch_items: Optional[List[BatchItem]] = None,
    submissions: Optional[List[Submission]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[SourceAdapter]:
    """
    Build the adapters for the requested trust tiers

    The aggregator adapter already carries the verified table as overlay and
    fallback, so the verified tier only needs to be asked for on its own
    (seeding). Extraction is only built when there are URLs to process and
    submissions only when some are queued.

    Args:
        config: Application config
        tiers: Trust tiers to run
        batch_items: URLs for the extraction tier
        submissions: Queued submissions for the submission tier
        transport: Optional httpx transport shared by the HTTP adapters

    Returns:
        Adapters in the order of ``tiers``
    """
    tiers = [TrustTier(t) for t in tiers]
    verified = VerifiedConstantsAdapter()
    registry = SourceRegistry()

    if TrustTier.VERIFIED in tiers:
        registry.register(verified)
    if TrustTier.AGGREGATOR in tiers:
        registry.register(build_aggregator_adapter(config, verified, transport))
    if TrustTier.EXTRACTION in tiers and batch_items:
        registry.register(build_extraction_adapter(config, batch_items, transport))
    if TrustTier.SUBMISSION in tiers and submissions:
        registry.register(SubmissionAdapter(submissions))

    return registry.select(tiers)
