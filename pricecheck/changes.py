"""Change detection between new observations and the canonical baseline"""

from typing import Dict, Iterable, List, Optional, Tuple
import structlog

from pricecheck.models import CanonicalDataset, Observation, ObservedModel, PriceChange

logger = structlog.get_logger(__name__)

PRICE_FIELDS = ("input_per_million", "output_per_million")


def _names_match(a: str, b: str) -> bool:
    a, b = a.lower().strip(), b.lower().strip()
    return a in b or b in a


class ChangeDetector:
    """Flags significant per-field price deltas against a baseline. Read-only."""

    def __init__(
        self,
        threshold_percent: float = 10.0,
        ratio_divergence_percent: float = 50.0,
    ):
        """
        Initialize detector

        Args:
            threshold_percent: A delta counts when it exceeds this share of the
                baseline value
            ratio_divergence_percent: Input/output ratio divergence that signals
                a probable unit mismatch between two sources
        """
        self.threshold = threshold_percent / 100.0
        self.ratio_divergence = ratio_divergence_percent / 100.0

    def is_significant(self, old_value: float, new_value: float) -> bool:
        """True when ``|new - old| > threshold * old``"""
        return abs(new_value - old_value) > self.threshold * old_value

    @staticmethod
    def change_percent(old_value: float, new_value: float) -> float:
        if old_value == 0:
            return 100.0 if new_value else 0.0
        return round((new_value - old_value) / old_value * 100, 1)

    def ratio_diverges(
        self,
        baseline_input: float,
        baseline_output: float,
        new_input: float,
        new_output: float,
    ) -> bool:
        """
        Check whether the input/output ratio moved more than the divergence limit
        """
        if not baseline_output or not new_output:
            return False

        baseline_ratio = baseline_input / baseline_output
        new_ratio = new_input / new_output

        if baseline_ratio == 0:
            return new_ratio != 0

        return abs(new_ratio - baseline_ratio) / baseline_ratio > self.ratio_divergence

    @staticmethod
    def _baseline_index(
        baseline: CanonicalDataset,
    ) -> Dict[Tuple[str, str], Dict[str, float]]:
        index = {}
        for provider in baseline.providers:
            for model in provider.models:
                index[(provider.id, model.name)] = {
                    "input_per_million": model.input_per_million,
                    "output_per_million": model.output_per_million,
                }
        return index

    def detect(
        self,
        baseline: Optional[CanonicalDataset],
        observations: Iterable[Observation],
    ) -> List[PriceChange]:
        """
        Compare observations against the baseline

        Args:
            baseline: Current canonical dataset (None when nothing is stored yet)
            observations: Normalized observations from the adapters

        Returns:
            Significant price changes, one per (provider, model, field)
        """
        changes: List[PriceChange] = []

        if baseline is None:
            logger.info("no_baseline_to_compare")
            return changes

        index = self._baseline_index(baseline)

        for observation in observations:
            for model in observation.models:
                old = index.get((observation.provider_id, model.name))

                if old is None:
                    logger.info(
                        "new_model_detected",
                        provider=observation.provider_name,
                        model=model.name,
                    )
                    continue

                for field in PRICE_FIELDS:
                    old_value = old[field]
                    new_value = getattr(model, field)

                    if not self.is_significant(old_value, new_value):
                        continue

                    changes.append(
                        PriceChange(
                            provider=observation.provider_name,
                            model=model.name,
                            field=field,
                            old_value=old_value,
                            new_value=new_value,
                            change_percent=self.change_percent(old_value, new_value),
                            confidence=observation.confidence,
                            source=observation.origin_url,
                        )
                    )

        if changes:
            logger.warning("significant_price_changes_detected", count=len(changes))

        return changes

    def new_models(
        self,
        baseline: Optional[CanonicalDataset],
        observations: Iterable[Observation],
    ) -> List[Tuple[str, str]]:
        """(provider name, model name) pairs absent from the baseline"""
        index = self._baseline_index(baseline) if baseline is not None else {}
        return [
            (observation.provider_name, model.name)
            for observation in observations
            for model in observation.models
            if (observation.provider_id, model.name) not in index
        ]

    def compare_reference(
        self,
        provider_name: str,
        reference: List[ObservedModel],
        candidates: List[ObservedModel],
    ) -> List[Tuple[str, str]]:
        """
        Compare a second source against trusted reference numbers

        Used when the aggregator reports a core provider: the reference values
        are kept and every disagreement becomes an anomaly line for review.

        Returns:
            (kind, detail) pairs where kind is "unit" or "price"
        """
        anomalies = []

        for ref in reference:
            match = next(
                (c for c in candidates if c.name.lower() == ref.name.lower()), None
            ) or next((c for c in candidates if _names_match(c.name, ref.name)), None)
            if match is None:
                continue

            summary = (
                f"verified ${ref.input_per_million}/${ref.output_per_million}, "
                f"source ${match.input_per_million:.2f}/${match.output_per_million:.2f} per M"
            )

            if self.ratio_diverges(
                ref.input_per_million,
                ref.output_per_million,
                match.input_per_million,
                match.output_per_million,
            ):
                anomalies.append(
                    (
                        "unit",
                        f"{provider_name} {ref.name}: input/output ratio diverges "
                        f"({summary}); possible unit mismatch",
                    )
                )
            elif self.is_significant(
                ref.input_per_million, match.input_per_million
            ) or self.is_significant(ref.output_per_million, match.output_per_million):
                anomalies.append(
                    (
                        "price",
                        f"{provider_name} {ref.name}: potential change ({summary})",
                    )
                )

        return anomalies
