"""End-to-end tests for the pricing pipeline with fake sources."""

from typing import List, Optional

import pytest

from pricecheck.config import Config
from pricecheck.errors import NetworkError, StoreConflictError, ValidationError
from pricecheck.models import CanonicalDataset, Observation, ObservedModel
from pricecheck.pipeline import PricingPipeline
from pricecheck.sources.base import SourceAdapter, TrustTier
from pricecheck.store import JsonFileStore


class FakeAdapter(SourceAdapter):
    trust_tier = TrustTier.AGGREGATOR

    def __init__(self, name: str, observations=None, error: Optional[Exception] = None):
        self.name = name
        self.observations = observations or []
        self.error = error
        self.closed = False

    async def fetch(self) -> List[Observation]:
        if self.error is not None:
            raise self.error
        return list(self.observations)

    async def aclose(self) -> None:
        self.closed = True


class FakeExtractionAdapter:
    def __init__(self, observation: Observation):
        self.observation = observation

    async def extract(self, url: str, provider_hint: Optional[str] = None) -> Observation:
        return self.observation

    async def fetch(self) -> List[Observation]:
        return [self.observation]


class RecordingNotifier:
    def __init__(self):
        self.reports = []
        self.notices = []

    async def send_report(self, changes) -> bool:
        self.reports.append(list(changes))
        return True

    async def send_extraction_notice(self, **kwargs) -> bool:
        self.notices.append(kwargs)
        return True


def observation(
    provider: str,
    models,
    confidence: float = 0.98,
    origin: str = "https://prices.example.com",
) -> Observation:
    return Observation(
        provider_name=provider,
        models=[
            ObservedModel(name=name, input_per_million=inp, output_per_million=out)
            for name, inp, out in models
        ],
        origin_url=origin,
        confidence=confidence,
    )


def model_price(dataset: CanonicalDataset, provider_id: str, name: str) -> float:
    return dataset.find_provider(provider_id).find_model(name).input_per_million


@pytest.mark.asyncio
async def test_first_run_publishes_everything(config: Config, store: JsonFileStore) -> None:
    adapter = FakeAdapter("agg", [observation("OpenAI", [("GPT-4o", 5.0, 15.0)], confidence=0.85)])
    pipeline = PricingPipeline(config, store, [adapter])

    report = await pipeline.run()

    assert report.published
    assert not report.pending_review
    assert report.changes == []
    assert report.new_models == [("OpenAI", "GPT-4o")]
    dataset = store.load()
    assert dataset.metadata.total_model_count == 1
    assert dataset.metadata.source == "scraped"


@pytest.mark.asyncio
async def test_high_confidence_change_is_published(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter("agg", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)])])
    notifier = RecordingNotifier()
    pipeline = PricingPipeline(config, store, [adapter], notifier=notifier)

    report = await pipeline.run()

    assert len(report.changes) == 1
    assert report.published
    dataset = store.load()
    assert model_price(dataset, "openai", "GPT-4o") == 2.5
    # context window the source did not report is kept
    assert dataset.find_provider("openai").find_model("GPT-4o").context_window == 128000
    assert [m.name for m in dataset.find_provider("openai").models] == ["GPT-4o", "GPT-4 Turbo"]
    assert notifier.reports == [report.changes]


@pytest.mark.asyncio
async def test_low_confidence_change_is_held_for_review(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter(
        "extraction", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.7)]
    )
    pipeline = PricingPipeline(config, store, [adapter])

    report = await pipeline.run()

    assert not report.published
    assert report.pending_review
    assert [d.provider for d in report.held] == ["OpenAI"]
    assert model_price(store.load(), "openai", "GPT-4o") == 5.0
    assert model_price(store.load_pending(), "openai", "GPT-4o") == 2.5

    approved = pipeline.approve_pending()

    assert model_price(approved, "openai", "GPT-4o") == 2.5
    assert model_price(store.load(), "openai", "GPT-4o") == 2.5
    assert store.load_pending() is None


@pytest.mark.asyncio
async def test_auto_publish_overrides_confidence(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter(
        "extraction", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.5)]
    )
    pipeline = PricingPipeline(config, store, [adapter])

    report = await pipeline.run(auto_publish=True)

    assert report.published
    assert not report.pending_review
    assert model_price(store.load(), "openai", "GPT-4o") == 2.5


@pytest.mark.asyncio
async def test_mixed_run_publishes_and_holds(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter(
        "mixed",
        [
            observation("Google", [("Gemini Pro", 1.0, 1.5)], confidence=0.98),
            observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.6),
        ],
    )
    pipeline = PricingPipeline(config, store, [adapter])

    report = await pipeline.run()

    assert report.published and report.pending_review
    live = store.load()
    pending = store.load_pending()
    assert model_price(live, "google", "Gemini Pro") == 1.0
    assert model_price(live, "openai", "GPT-4o") == 5.0
    assert model_price(pending, "google", "Gemini Pro") == 1.0
    assert model_price(pending, "openai", "GPT-4o") == 2.5


@pytest.mark.asyncio
async def test_failing_source_is_isolated(config: Config, store: JsonFileStore) -> None:
    good = FakeAdapter("good", [observation("Mistral", [("Mistral 7B", 0.15, 0.3)])])
    broken = FakeAdapter("broken", error=NetworkError("timed out"))
    pipeline = PricingPipeline(config, store, [broken, good])

    report = await pipeline.run()
    await pipeline.aclose()

    assert report.failed_sources == ["broken"]
    assert store.load().metadata.total_model_count == 1
    assert good.closed and broken.closed


@pytest.mark.asyncio
async def test_collect_orders_observations(config: Config, store: JsonFileStore) -> None:
    first = FakeAdapter(
        "a",
        [
            observation("OpenAI", [("GPT-4o", 5.0, 15.0)], origin="https://z.example.com"),
            observation("Anthropic", [("Claude 3 Haiku", 0.25, 1.25)]),
        ],
    )
    second = FakeAdapter(
        "b", [observation("OpenAI", [("GPT-4o", 5.0, 15.0)], origin="https://a.example.com")]
    )
    pipeline = PricingPipeline(config, store, [first, second])

    observations = await pipeline.collect()

    assert [(o.provider_id, o.origin_url) for o in observations] == [
        ("anthropic", "https://prices.example.com"),
        ("openai", "https://a.example.com"),
        ("openai", "https://z.example.com"),
    ]


@pytest.mark.asyncio
async def test_no_observations_leaves_store_untouched(config: Config, store: JsonFileStore) -> None:
    pipeline = PricingPipeline(config, store, [FakeAdapter("empty")])

    report = await pipeline.run()

    assert not report.published
    assert store.load() is None


def test_merge_payload_commits(config: Config, store: JsonFileStore, baseline: CanonicalDataset) -> None:
    store.commit(baseline)
    pipeline = PricingPipeline(config, store)
    payload = {
        "id": "xai",
        "name": "xAI",
        "models": [{"name": "Grok 2", "input_per_million": 2, "output_per_million": 10}],
    }

    result = pipeline.merge_payload("xai", payload)

    assert result.new_provider
    assert store.load().metadata.total_model_count == 4
    assert store.load().metadata.source == "manual"


def test_merge_payload_rejects_id_mismatch(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    pipeline = PricingPipeline(config, store)
    payload = '{"id": "xai", "name": "xAI", "models": []}'

    with pytest.raises(ValidationError):
        pipeline.merge_payload("openai", payload)

    assert store.load() == baseline


def test_approve_without_pending_fails(config: Config, store: JsonFileStore) -> None:
    with pytest.raises(ValidationError):
        PricingPipeline(config, store).approve_pending()


def test_seed_builds_dataset_once(config: Config, store: JsonFileStore) -> None:
    pipeline = PricingPipeline(config, store)

    dataset = pipeline.seed()

    assert dataset.metadata.total_model_count == 12
    assert dataset.metadata.source == "seed"
    assert [p.id for p in dataset.providers] == ["openai", "anthropic", "google", "meta", "mistral"]
    assert pipeline.seed() is None


@pytest.mark.asyncio
async def test_extract_without_merge_only_reports(config: Config, store: JsonFileStore) -> None:
    extracted = observation("xAI", [("Grok 2", 2.0, 10.0)], confidence=0.95)
    pipeline = PricingPipeline(config, store)

    report = await pipeline.extract(FakeExtractionAdapter(extracted), url="https://docs.x.ai")

    assert report.observations == [extracted]
    assert store.load() is None


@pytest.mark.asyncio
async def test_extract_low_confidence_new_provider_is_published(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    extracted = observation("xAI", [("Grok 2", 2.0, 10.0)], confidence=0.7)
    notifier = RecordingNotifier()
    pipeline = PricingPipeline(config, store, notifier=notifier)

    report = await pipeline.extract(
        FakeExtractionAdapter(extracted), url="https://docs.x.ai", merge=True
    )

    assert report.published
    assert not report.pending_review
    assert report.changes == []
    assert report.new_models == [("xAI", "Grok 2")]
    assert store.load().find_provider("xai") is not None
    assert notifier.notices[0]["published"] is True


@pytest.mark.asyncio
async def test_low_confidence_new_model_is_published(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter(
        "submissions",
        [observation("OpenAI", [("GPT-4o", 5.0, 15.0), ("o1-mini", 3.0, 12.0)], confidence=0.7)],
    )
    pipeline = PricingPipeline(config, store, [adapter])

    report = await pipeline.run()

    assert report.changes == []
    assert report.published
    assert not report.pending_review
    assert model_price(store.load(), "openai", "o1-mini") == 3.0


@pytest.mark.asyncio
async def test_scheduled_update_keeps_stored_free_tier(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    adapter = FakeAdapter(
        "agg", [observation("Google", [("Gemini Pro", 0.5, 1.5)], confidence=0.85)]
    )
    pipeline = PricingPipeline(config, store, [adapter])

    await pipeline.run()

    gemini = store.load().find_provider("google").find_model("Gemini Pro")
    assert gemini.free_tier == "Free tier: 1M tokens/month"


@pytest.mark.asyncio
async def test_approve_keeps_prices_published_after_staging(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    held = FakeAdapter(
        "extraction", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.5)]
    )
    await PricingPipeline(config, store, [held]).run()

    published = FakeAdapter("agg", [observation("Google", [("Gemini Pro", 0.25, 1.5)])])
    report = await PricingPipeline(config, store, [published]).run()

    assert report.published and not report.pending_review
    assert store.load_pending().metadata.based_on == store.load().metadata.last_updated

    approved = PricingPipeline(config, store).approve_pending()

    assert model_price(approved, "google", "Gemini Pro") == 0.25
    assert model_price(approved, "openai", "GPT-4o") == 2.5
    live = store.load()
    assert model_price(live, "google", "Gemini Pro") == 0.25
    assert model_price(live, "openai", "GPT-4o") == 2.5
    assert live.metadata.based_on is None
    assert store.load_pending() is None


@pytest.mark.asyncio
async def test_held_observations_accumulate_across_runs(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    first = FakeAdapter("a", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.5)])
    await PricingPipeline(config, store, [first]).run()

    second = FakeAdapter(
        "b", [observation("Google", [("Gemini Pro", 0.25, 1.5)], confidence=0.5)]
    )
    report = await PricingPipeline(config, store, [second]).run()

    assert report.pending_review
    pending = store.load_pending()
    assert model_price(pending, "openai", "GPT-4o") == 2.5
    assert model_price(pending, "google", "Gemini Pro") == 0.25


@pytest.mark.asyncio
async def test_approve_refuses_candidate_built_on_old_dataset(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    store.commit(baseline)
    held = FakeAdapter(
        "extraction", [observation("OpenAI", [("GPT-4o", 2.5, 15.0)], confidence=0.5)]
    )
    await PricingPipeline(config, store, [held]).run()

    moved_on = store.load()
    moved_on.metadata.last_updated = "2026-03-01T00:00:00+00:00"
    store.commit(moved_on)

    with pytest.raises(StoreConflictError):
        PricingPipeline(config, store).approve_pending()

    assert model_price(store.load(), "openai", "GPT-4o") == 5.0
    assert store.load_pending() is not None


def test_merge_payload_rebases_pending(
    config: Config, store: JsonFileStore, baseline: CanonicalDataset
) -> None:
    pending = baseline.model_copy(deep=True)
    pending.find_provider("openai").find_model("GPT-4o").input_per_million = 2.5
    pending.metadata.based_on = baseline.metadata.last_updated
    store.commit(baseline)
    store.stage_pending(pending)
    pipeline = PricingPipeline(config, store)
    payload = {
        "id": "google",
        "name": "Google",
        "models": [{"name": "Gemini Pro", "input_per_million": 0.25, "output_per_million": 1.5}],
    }

    pipeline.merge_payload("google", payload)
    approved = pipeline.approve_pending()

    assert model_price(approved, "google", "Gemini Pro") == 0.25
    assert model_price(approved, "openai", "GPT-4o") == 2.5
