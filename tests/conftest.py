"""Shared fixtures for pricing pipeline tests."""

import pytest

from pricecheck.config import Config
from pricecheck.models import CanonicalDataset
from pricecheck.store import JsonFileStore

BASELINE_STAMP = "2026-01-01T00:00:00+00:00"


def make_baseline() -> CanonicalDataset:
    return CanonicalDataset.model_validate(
        {
            "providers": [
                {
                    "id": "openai",
                    "name": "OpenAI",
                    "models": [
                        {
                            "name": "GPT-4o",
                            "input_per_million": 5.0,
                            "output_per_million": 15.0,
                            "context_window": 128000,
                            "last_updated": BASELINE_STAMP,
                        },
                        {
                            "name": "GPT-4 Turbo",
                            "input_per_million": 10.0,
                            "output_per_million": 30.0,
                            "context_window": 128000,
                            "last_updated": BASELINE_STAMP,
                        },
                    ],
                },
                {
                    "id": "google",
                    "name": "Google",
                    "models": [
                        {
                            "name": "Gemini Pro",
                            "input_per_million": 0.5,
                            "output_per_million": 1.5,
                            "context_window": 32000,
                            "free_tier": "Free tier: 1M tokens/month",
                            "last_updated": BASELINE_STAMP,
                        }
                    ],
                },
            ],
            "metadata": {
                "last_updated": BASELINE_STAMP,
                "source": "manual",
                "total_model_count": 3,
            },
        }
    )


@pytest.fixture
def baseline() -> CanonicalDataset:
    return make_baseline()


@pytest.fixture
def store(tmp_path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "pricing.json")


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        _env_file=None,
        data_path=str(tmp_path / "pricing.json"),
        batch_delay_seconds=0,
        resend_api_key=None,
        alert_email=None,
    )
