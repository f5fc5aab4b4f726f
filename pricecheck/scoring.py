"""Comparison and scoring over the canonical dataset"""

from datetime import date, datetime, time, timedelta, timezone
import math
import re
from typing import Dict, List, Optional

from pydantic import BaseModel
import structlog

from pricecheck.models import CanonicalDataset, FlatModel

logger = structlog.get_logger(__name__)

TOP_N = 5

# "Free until Jan 20th", "until January 20, 2026", "until 2026-01-20"
_UNTIL_PATTERN = re.compile(
    r"until\s+(\d{4}-\d{2}-\d{2}|[A-Za-z]+\.?\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?)",
    re.IGNORECASE,
)
_MONTH_DAY_PATTERN = re.compile(
    r"([A-Za-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?", re.IGNORECASE
)


class ComparisonResult(BaseModel):
    best_overall: FlatModel
    best_free: Optional[FlatModel] = None
    best_value: FlatModel
    hidden_gem: FlatModel
    all_models: List[FlatModel]


def _parse_expiry(text: str, year: int) -> Optional[date]:
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        return date.fromisoformat(text)

    match = _MONTH_DAY_PATTERN.fullmatch(text.strip())
    if not match:
        return None

    month_name, day, explicit_year = match.groups()
    month = datetime.strptime(month_name[:3].title(), "%b").month
    return date(int(explicit_year) if explicit_year else year, month, int(day))


def valid_free_tier(free_tier: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """
    Return the free-tier text if the offer is still running, None if expired

    An "until <date>" clause is checked against ``now`` with the expiry day
    itself counted as valid. Text without a date, or with a date that cannot
    be parsed, is returned unchanged.
    """
    if not free_tier:
        return None

    match = _UNTIL_PATTERN.search(free_tier)
    if not match:
        return free_tier

    now = now or datetime.now(timezone.utc)

    try:
        expiry = _parse_expiry(match.group(1), now.year)
    except ValueError:
        expiry = None

    if expiry is None:
        logger.debug("free_tier_date_unparsed", free_tier=free_tier)
        return free_tier

    expires_at = datetime.combine(expiry + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    if now >= expires_at:
        return None

    return free_tier


def calculate_score(
    input_per_million: float,
    output_per_million: float,
    context_window: int,
    free_tier_valid: bool,
) -> int:
    """
    Value score (higher is better)

    Factors: low cost (inverse of total), context window, flat bonus for an
    active free tier.
    """
    total_cost = input_per_million + output_per_million

    score = 1000 / (total_cost + 1)
    score += context_window / 10000
    if free_tier_valid:
        score += 100

    # half-up, not banker's rounding
    return int(math.floor(score + 0.5))


def flatten(dataset: CanonicalDataset, now: Optional[datetime] = None) -> List[FlatModel]:
    """Flatten the nested dataset into scored per-model records"""
    now = now or datetime.now(timezone.utc)
    flattened = []

    for provider in dataset.providers:
        for model in provider.models:
            free_tier = valid_free_tier(model.free_tier, now)
            is_valid = free_tier is not None

            flattened.append(
                FlatModel(
                    **model.model_dump(exclude={"free_tier"}),
                    free_tier=free_tier,
                    free_tier_valid=is_valid,
                    provider=provider.name,
                    provider_id=provider.id,
                    total_cost=model.input_per_million + model.output_per_million,
                    score=calculate_score(
                        model.input_per_million,
                        model.output_per_million,
                        model.context_window,
                        is_valid,
                    ),
                )
            )

    return flattened


def _value_ratio(model: FlatModel) -> float:
    return model.score / (model.total_cost or 1)


def _same_model(a: FlatModel, b: FlatModel) -> bool:
    return a.provider_id == b.provider_id and a.name == b.name


def compare(models: List[FlatModel]) -> ComparisonResult:
    """
    Highlighted picks over a flattened model list

    Raises:
        ValueError: If there are no models to compare
    """
    if not models:
        raise ValueError("No models to compare")

    best_overall = max(models, key=lambda m: m.score)

    free_models = [m for m in models if m.free_tier_valid]
    best_free = min(free_models, key=lambda m: m.total_cost) if free_models else None

    best_value = max(models, key=_value_ratio)

    hidden_gems = sorted(
        (
            m
            for m in models
            if m.score > 500 and m.total_cost < 5 and not _same_model(m, best_overall)
        ),
        key=lambda m: m.score,
        reverse=True,
    )
    hidden_gem = hidden_gems[0] if hidden_gems else best_value

    return ComparisonResult(
        best_overall=best_overall,
        best_free=best_free,
        best_value=best_value,
        hidden_gem=hidden_gem,
        all_models=models,
    )


def top_by_price(models: List[FlatModel], limit: int = TOP_N) -> List[FlatModel]:
    """Cheapest paid models (zero-cost entries excluded)"""
    paid = [m for m in models if m.total_cost > 0]
    return sorted(paid, key=lambda m: m.total_cost)[:limit]


def top_by_speed(models: List[FlatModel], limit: int = TOP_N) -> List[FlatModel]:
    """Fastest models by tokens/sec; models without a speed are left out"""
    timed = [m for m in models if m.speed is not None]
    return sorted(timed, key=lambda m: m.speed, reverse=True)[:limit]


def top_by_benchmark(models: List[FlatModel], limit: int = TOP_N) -> List[FlatModel]:
    scored = [m for m in models if m.benchmark_score is not None]
    return sorted(scored, key=lambda m: m.benchmark_score, reverse=True)[:limit]


def top_charts(models: List[FlatModel], limit: int = TOP_N) -> Dict[str, List[FlatModel]]:
    return {
        "price": top_by_price(models, limit),
        "speed": top_by_speed(models, limit),
        "benchmark": top_by_benchmark(models, limit),
    }


def search_models(models: List[FlatModel], query: Optional[str]) -> List[FlatModel]:
    """Case-insensitive match on provider or model name; blank query returns all"""
    if not query or not query.strip():
        return list(models)

    needle = query.strip().lower()
    return [m for m in models if needle in m.provider.lower() or needle in m.name.lower()]
