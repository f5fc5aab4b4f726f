"""Merge engine: upsert provider payloads into the canonical dataset"""

from dataclasses import dataclass, field
import json
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
import structlog

from pricecheck.errors import ValidationError
from pricecheck.models import CanonicalDataset, ModelRecord, ProviderRecord, utc_now_iso

logger = structlog.get_logger(__name__)


@dataclass
class MergeResult:
    """Outcome of merging one provider into a dataset"""

    dataset: CanonicalDataset
    provider_id: str
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    diff_lines: List[str] = field(default_factory=list)
    new_provider: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed or self.new_provider)


def parse_provider_payload(payload: Union[str, bytes, dict, ProviderRecord]) -> ProviderRecord:
    """
    Validate an incoming provider payload

    Args:
        payload: JSON text, a decoded dict, or an already-built record

    Returns:
        Validated ProviderRecord

    Raises:
        ValidationError: On malformed JSON, missing id/name/models or bad prices
    """
    if isinstance(payload, ProviderRecord):
        return payload

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Provider payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ValidationError("Invalid provider data format")

    if not payload.get("id") or not payload.get("name") or not isinstance(
        payload.get("models"), list
    ):
        raise ValidationError("Invalid provider data format", payload)

    try:
        return ProviderRecord.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid provider data format: {e.error_count()} error(s)", e.errors()
        ) from e


def describe_model_changes(old: ModelRecord, new: ModelRecord) -> List[str]:
    """Human-readable diff lines for the fields a merge can change"""
    changes = []

    if old.input_per_million != new.input_per_million:
        changes.append(f"input: ${old.input_per_million} → ${new.input_per_million}")
    if old.output_per_million != new.output_per_million:
        changes.append(f"output: ${old.output_per_million} → ${new.output_per_million}")
    if old.context_window != new.context_window:
        changes.append(f"context: {old.context_window} → {new.context_window}")
    if old.free_tier != new.free_tier:
        changes.append(
            f"free_tier: {old.free_tier or 'none'} → {new.free_tier or 'none'}"
        )

    return changes


class MergeEngine:
    """
    Upserts providers into a copy of the baseline

    Models missing from an incoming provider are kept unless the engine was
    created with ``prune_missing=True``.
    """

    def __init__(self, prune_missing: bool = False):
        self.prune_missing = prune_missing

    def merge(
        self,
        baseline: CanonicalDataset,
        provider: Union[ProviderRecord, dict, str],
        now: Optional[str] = None,
        source: Optional[str] = None,
    ) -> MergeResult:
        """
        Merge one provider into the dataset

        Args:
            baseline: Current dataset (left untouched)
            provider: Incoming provider payload
            now: Timestamp for ``metadata.last_updated`` (defaults to wall clock)
            source: Value for ``metadata.source`` (keeps the current one if None)

        Returns:
            MergeResult holding the merged copy and what changed

        Raises:
            ValidationError: If the payload is malformed; nothing is merged
        """
        incoming = parse_provider_payload(provider)
        dataset = baseline.model_copy(deep=True)
        result = MergeResult(dataset=dataset, provider_id=incoming.id)

        existing = dataset.find_provider(incoming.id)

        if existing is None:
            dataset.providers.append(incoming.model_copy(deep=True))
            result.new_provider = True
            result.added = [m.name for m in incoming.models]
            logger.info("provider_added", provider=incoming.name, models=len(incoming.models))
        else:
            existing.name = incoming.name
            self._merge_models(existing, incoming, result)

        dataset.metadata.last_updated = now or utc_now_iso()
        if source:
            dataset.metadata.source = source
        dataset.recount()

        logger.info(
            "provider_merged",
            provider=incoming.id,
            added=len(result.added),
            updated=len(result.updated),
            removed=len(result.removed),
            total_models=dataset.metadata.total_model_count,
        )
        return result

    def _merge_models(
        self, existing: ProviderRecord, incoming: ProviderRecord, result: MergeResult
    ) -> None:
        for new_model in incoming.models:
            index = next(
                (i for i, m in enumerate(existing.models) if m.name == new_model.name),
                None,
            )

            if index is None:
                existing.models.append(new_model.model_copy(deep=True))
                result.added.append(new_model.name)
                logger.info("model_added", provider=incoming.name, model=new_model.name)
                continue

            changes = describe_model_changes(existing.models[index], new_model)
            if changes:
                result.updated.append(new_model.name)
                result.diff_lines.extend(
                    f"{incoming.name} - {new_model.name}: {line}" for line in changes
                )
                logger.info(
                    "model_updated",
                    provider=incoming.name,
                    model=new_model.name,
                    changes=changes,
                )

            existing.models[index] = new_model.model_copy(deep=True)

        if self.prune_missing:
            incoming_names = {m.name for m in incoming.models}
            removed = [m.name for m in existing.models if m.name not in incoming_names]
            if removed:
                existing.models = [m for m in existing.models if m.name in incoming_names]
                result.removed.extend(removed)
                logger.info("models_pruned", provider=incoming.name, models=removed)


def merge(
    baseline: CanonicalDataset,
    provider: Union[ProviderRecord, dict, str],
    prune_missing: bool = False,
    now: Optional[str] = None,
) -> MergeResult:
    """Convenience wrapper around ``MergeEngine.merge``"""
    return MergeEngine(prune_missing=prune_missing).merge(baseline, provider, now=now)
