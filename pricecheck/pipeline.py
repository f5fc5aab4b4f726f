"""Main pricing reconciliation pipeline"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
import asyncio
import structlog

from pricecheck.changes import ChangeDetector
from pricecheck.config import Config
from pricecheck.errors import StoreConflictError, ValidationError
from pricecheck.merge import MergeEngine, MergeResult, parse_provider_payload
from pricecheck.models import (
    CanonicalDataset,
    DatasetMetadata,
    Observation,
    PriceChange,
    ProviderRecord,
)
from pricecheck.notify import EmailNotifier, build_notifier
from pricecheck.publish import PublishDecision, PublishPolicy
from pricecheck.sources.base import SourceAdapter, TrustTier
from pricecheck.sources.extraction import ExtractionAdapter
from pricecheck.sources.registry import build_adapters, build_detector
from pricecheck.sources.submission import SubmissionQueue
from pricecheck.sources.verified import VerifiedConstantsAdapter
from pricecheck.store import DatasetStore, build_store

logger = structlog.get_logger(__name__)


@dataclass
class RunReport:
    """What one pipeline run saw and did"""

    observations: List[Observation] = field(default_factory=list)
    changes: List[PriceChange] = field(default_factory=list)
    new_models: List[Tuple[str, str]] = field(default_factory=list)
    decisions: List[PublishDecision] = field(default_factory=list)
    diff_lines: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    published: bool = False
    pending_review: bool = False
    total_models: int = 0

    @property
    def held(self) -> List[PublishDecision]:
        return [d for d in self.decisions if not d.published]


class PricingPipeline:
    """
    Orchestrates fetch, compare, decide, merge and persist

    The canonical dataset has a single writer. Sources that fail are left out
    of the run; there is no retry within a run.
    """

    def __init__(
        self,
        config: Config,
        store: DatasetStore,
        adapters: Optional[Sequence[SourceAdapter]] = None,
        notifier: Optional[EmailNotifier] = None,
        detector: Optional[ChangeDetector] = None,
        merge_engine: Optional[MergeEngine] = None,
    ):
        self.config = config
        self.store = store
        self.adapters = list(adapters or [])
        self.notifier = notifier
        self.detector = detector or build_detector(config)
        self.merge_engine = merge_engine or MergeEngine(
            prune_missing=config.prune_missing_models
        )
        self.failed_sources: List[str] = []

    def _policy(self, auto_publish: bool) -> PublishPolicy:
        return PublishPolicy(
            threshold=self.config.auto_publish_confidence, force=auto_publish
        )

    async def collect(self) -> List[Observation]:
        """
        Fetch from every adapter with bounded concurrency

        A failing adapter is logged and skipped; its name is kept in
        ``failed_sources``.

        Returns:
            Observations sorted by provider id, then origin
        """
        concurrency = max(1, self.config.max_parallel_sources)
        semaphore = asyncio.Semaphore(concurrency)
        self.failed_sources = []

        async def fetch_source(adapter: SourceAdapter) -> List[Observation]:
            async with semaphore:
                try:
                    observations = await adapter.fetch()
                except Exception as e:
                    logger.error(
                        "source_fetch_failed",
                        source=adapter.name,
                        tier=adapter.trust_tier.value,
                        error=str(e),
                    )
                    self.failed_sources.append(adapter.name)
                    return []

                logger.info(
                    "source_fetched", source=adapter.name, observations=len(observations)
                )
                return observations

        tasks = [asyncio.create_task(fetch_source(a)) for a in self.adapters]
        results = await asyncio.gather(*tasks) if tasks else []

        observations = [o for batch in results for o in batch]
        observations.sort(key=lambda o: (o.provider_id, o.origin_url))
        return observations

    def _current_pending(self, stamp: Optional[str]) -> Optional[CanonicalDataset]:
        """Load the review candidate if it was built on the live ``stamp``"""
        pending = self.store.load_pending()
        if pending is None:
            return None
        if pending.metadata.based_on != stamp:
            logger.warning(
                "stale_pending_dataset",
                based_on=pending.metadata.based_on,
                live=stamp,
            )
            return None
        return pending

    def _stage(
        self,
        review: CanonicalDataset,
        records: Sequence[Tuple[ProviderRecord, str]],
        stamp: Optional[str],
    ) -> None:
        for record, source in records:
            review = self.merge_engine.merge(review, record, source=source).dataset
        review.metadata.based_on = stamp
        self.store.stage_pending(review)

    def _reconcile(
        self,
        observations: List[Observation],
        policy: PublishPolicy,
        report: RunReport,
    ) -> None:
        """
        Decide each observation, merge it into the live or review candidate,
        then persist both

        An existing review candidate is carried forward: records published in
        this run are replayed onto it so approving it later never reverts them.
        """
        loaded = self.store.load()
        stamp = loaded.metadata.last_updated if loaded else None
        live = loaded or CanonicalDataset(metadata=DatasetMetadata(source="scraped"))
        pending = self._current_pending(stamp)

        published = []
        held = []
        for observation in observations:
            changes = self.detector.detect(loaded, [observation])
            report.changes.extend(changes)
            report.anomalies.extend(observation.anomalies)
            report.new_models.extend(self.detector.new_models(loaded, [observation]))

            decision = policy.evaluate(
                observation.provider_name, observation.confidence, changes
            )
            report.decisions.append(decision)

            known = live.find_provider(observation.provider_id)
            record = observation.to_provider_record(known)
            if decision.published:
                result = self.merge_engine.merge(live, record, source=observation.source_kind)
                live = result.dataset
                report.diff_lines.extend(result.diff_lines)
                published.append((record, observation.source_kind))
            else:
                held.append((record, observation.source_kind))

        live_stamp = stamp
        if published:
            self.store.commit(live, expected_last_updated=stamp)
            live_stamp = live.metadata.last_updated
            report.published = True

        if held:
            review = live if pending is None else pending
            self._stage(review, (published if pending is not None else []) + held, live_stamp)
            report.pending_review = True
            logger.warning(
                "observations_held_for_review",
                providers=[record.name for record, _ in held],
            )
        elif pending is not None and published:
            self._stage(pending, published, live_stamp)
            logger.info("pending_dataset_rebased", based_on=live_stamp)

        report.total_models = live.model_count()

    async def run(self, auto_publish: bool = False) -> RunReport:
        """
        Run every configured source once

        Args:
            auto_publish: Publish regardless of confidence

        Returns:
            RunReport for the run

        Raises:
            StoreWriteError: If the dataset could not be persisted
        """
        logger.info("starting_pricing_pipeline", sources=[a.name for a in self.adapters])

        observations = await self.collect()
        report = RunReport(observations=observations, failed_sources=list(self.failed_sources))

        if observations:
            self._reconcile(observations, self._policy(auto_publish), report)
        else:
            logger.warning("no_observations_collected")

        if self.notifier is not None:
            await self.notifier.send_report(report.changes)

        logger.info(
            "pricing_pipeline_completed",
            observations=len(observations),
            changes=len(report.changes),
            published=report.published,
            pending_review=report.pending_review,
            failed_sources=report.failed_sources,
        )
        return report

    async def extract(
        self,
        adapter: ExtractionAdapter,
        url: Optional[str] = None,
        provider_hint: Optional[str] = None,
        merge: bool = False,
        auto_publish: bool = False,
    ) -> RunReport:
        """
        Extract pricing from one URL or the adapter's whole batch

        A single URL propagates its errors; in batch mode failed URLs are
        logged and skipped. With ``merge`` the results go through the
        publish policy like a scheduled run.

        Raises:
            NetworkError: Single URL could not be fetched
            ValidationError: Single URL produced an invalid payload
        """
        if url:
            observations = [await adapter.extract(url, provider_hint)]
        else:
            observations = await adapter.fetch()

        report = RunReport(observations=observations)
        if not merge or not observations:
            return report

        self._reconcile(observations, self._policy(auto_publish), report)

        if self.notifier is not None:
            for observation, decision in zip(observations, report.decisions):
                await self.notifier.send_extraction_notice(
                    provider=observation.provider_name,
                    confidence=observation.confidence,
                    published=decision.published,
                    model_count=len(observation.models),
                    diff_lines=[
                        line
                        for line in report.diff_lines
                        if line.startswith(f"{observation.provider_name} - ")
                    ],
                )

        return report

    def merge_payload(self, provider_id: str, payload: Union[str, dict]) -> MergeResult:
        """
        Merge a provider payload given on the command line and publish it

        Raises:
            ValidationError: Malformed payload or id mismatch; nothing is written
            StoreWriteError: If the dataset could not be persisted
        """
        record = parse_provider_payload(payload)
        if record.id != provider_id:
            raise ValidationError(
                f"Provider id mismatch: argument is '{provider_id}', payload has '{record.id}'"
            )

        loaded = self.store.load()
        stamp = loaded.metadata.last_updated if loaded else None
        baseline = loaded or CanonicalDataset()
        pending = self._current_pending(stamp)

        result = self.merge_engine.merge(baseline, record, source="manual")
        self.store.commit(result.dataset, expected_last_updated=stamp)
        if pending is not None:
            self._stage(pending, [(record, "manual")], result.dataset.metadata.last_updated)
        return result

    def approve_pending(self) -> CanonicalDataset:
        """
        Publish the candidate held for review

        Raises:
            ValidationError: If there is nothing to approve
            StoreConflictError: If the live dataset changed after the candidate
                was staged; the candidate is kept
        """
        pending = self.store.load_pending()
        if pending is None:
            raise ValidationError("No pending dataset to approve")

        live = self.store.load()
        live_stamp = live.metadata.last_updated if live else None
        if pending.metadata.based_on != live_stamp:
            logger.error(
                "pending_dataset_outdated",
                based_on=pending.metadata.based_on,
                live=live_stamp,
            )
            raise StoreConflictError(
                "Live dataset changed after the pending dataset was staged "
                f"(staged on {pending.metadata.based_on}, live is {live_stamp}); "
                "rerun the update to rebuild it"
            )

        pending.metadata.based_on = None
        self.store.commit(pending, expected_last_updated=live_stamp)

        self.store.discard_pending()
        logger.info("pending_dataset_approved", models=pending.model_count())
        return pending


    def seed(
        self, verified: Optional[VerifiedConstantsAdapter] = None
    ) -> Optional[CanonicalDataset]:
        """
        Create the initial dataset from the verified constants

        Returns:
            The new dataset, or None if a dataset already exists
        """
        if self.store.load() is not None:
            logger.info("dataset_already_exists_skipping_seed")
            return None

        verified = verified or VerifiedConstantsAdapter()
        dataset = CanonicalDataset(metadata=DatasetMetadata(source="seed"))
        for observation in verified.observations():
            dataset = self.merge_engine.merge(
                dataset, observation.to_provider_record(), source="seed"
            ).dataset

        self.store.commit(dataset, expected_last_updated=None)
        logger.info("dataset_seeded", models=dataset.model_count())
        return dataset

    async def aclose(self) -> None:
        for adapter in self.adapters:
            await adapter.aclose()


async def run_once(config: Config, auto_publish: bool = False) -> RunReport:
    """Run the scheduled update once: aggregator plus queued submissions"""
    queue = SubmissionQueue(submissions_path(config))
    submissions = queue.pending()

    adapters = build_adapters(
        config,
        tiers=(TrustTier.AGGREGATOR, TrustTier.SUBMISSION),
        submissions=submissions,
    )
    pipeline = PricingPipeline(
        config, build_store(config), adapters, notifier=build_notifier(config)
    )

    try:
        report = await pipeline.run(auto_publish=auto_publish)
    finally:
        await pipeline.aclose()

    if submissions:
        queue.mark_processed()
    return report


def submissions_path(config: Config) -> Path:
    """Submission queue file, kept next to the dataset"""
    return Path(config.data_path).with_name("submissions.json")
