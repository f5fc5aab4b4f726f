"""End-user pricing submissions"""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import (
    BaseModel,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)
import structlog

from pricecheck.errors import ValidationError
from pricecheck.models import Observation, ObservedModel, utc_now_iso
from pricecheck.normalize import canonical_provider_name, to_float
from pricecheck.store import atomic_write_json

from .base import SourceAdapter, TrustTier

logger = structlog.get_logger(__name__)

SUBMISSION_CONFIDENCE = 0.5


class Submission(BaseModel):
    """A price report sent in by a user"""

    provider_name: str = Field(min_length=1)
    website: str = Field(min_length=1)
    model_name: Optional[str] = None
    input_price: Optional[float] = None
    output_price: Optional[float] = None
    context_window: Optional[int] = Field(default=None, ge=0)
    user_email: Optional[str] = None
    submitted_at: str = Field(default_factory=utc_now_iso)

    @field_validator("input_price", "output_price", mode="before")
    @classmethod
    def _parse_price(cls, value):
        if value is None or value == "":
            return None
        price = to_float(value)
        if price is None or price < 0:
            raise ValueError(f"invalid price: {value!r}")
        return price

    @property
    def is_priced(self) -> bool:
        return bool(self.model_name) and (
            self.input_price is not None and self.output_price is not None
        )


def parse_submission(data: dict) -> Submission:
    """
    Validate a raw submission

    Raises:
        ValidationError: If provider name or website is missing or a price is
            not numeric
    """
    if not str(data.get("provider_name") or "").strip() or not str(
        data.get("website") or ""
    ).strip():
        raise ValidationError("Provider name and website are required", data)

    try:
        return Submission.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid submission: {e.error_count()} error(s)", e.errors()
        ) from e


class SubmissionAdapter(SourceAdapter):
    """
    Turns queued submissions into low-confidence observations

    Submissions without a model name and both prices carry no pricing and
    are skipped.
    """

    name = "submission"
    trust_tier = TrustTier.SUBMISSION

    def __init__(self, submissions: List[Submission]):
        self.submissions = submissions

    async def fetch(self) -> List[Observation]:
        grouped: dict = {}

        for submission in self.submissions:
            if not submission.is_priced:
                logger.info(
                    "submission_without_pricing_skipped",
                    provider=submission.provider_name,
                )
                continue

            provider_name = canonical_provider_name(submission.provider_name)
            grouped.setdefault((provider_name, submission.website), []).append(
                ObservedModel(
                    name=submission.model_name,
                    input_per_million=submission.input_price,
                    output_per_million=submission.output_price,
                    context_window=submission.context_window,
                )
            )

        observations = [
            Observation(
                provider_name=provider_name,
                models=models,
                observed_at=utc_now_iso(),
                origin_url=website,
                confidence=SUBMISSION_CONFIDENCE,
                source_kind="user_submission",
            )
            for (provider_name, website), models in grouped.items()
        ]

        logger.info("submissions_loaded", observations=len(observations))
        return observations


class SubmissionQueue:
    """JSON file holding submissions until the next pipeline run"""

    def __init__(self, path):
        self.path = Path(path)

    def _read(self) -> List[dict]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                entries = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("submission_queue_corrupt", path=str(self.path), error=str(e))
            raise ValidationError(
                f"Submission queue {self.path} is not valid JSON", str(e)
            ) from e
        if not isinstance(entries, list):
            raise ValidationError(
                f"Submission queue {self.path} must hold a JSON list", entries
            )
        return entries

    def _write(self, entries: List[dict]) -> None:
        atomic_write_json(self.path, entries)

    def add(self, submission: Submission) -> int:
        """Queue a submission and return its position in the queue"""
        entries = self._read()
        entries.append({**submission.model_dump(mode="json"), "status": "pending"})
        self._write(entries)
        logger.info(
            "submission_queued",
            provider=submission.provider_name,
            model=submission.model_name,
        )
        return len(entries)

    def pending(self) -> List[Submission]:
        try:
            return [
                Submission.model_validate(entry)
                for entry in self._read()
                if entry.get("status") == "pending"
            ]
        except PydanticValidationError as e:
            raise ValidationError(
                f"Submission queue {self.path} holds an invalid entry", e.errors()
            ) from e

    def mark_processed(self) -> int:
        entries = self._read()
        count = 0
        for entry in entries:
            if entry.get("status") == "pending":
                entry["status"] = "processed"
                count += 1
        if count:
            self._write(entries)
        return count
