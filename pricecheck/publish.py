"""Confidence-gated publish policy"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence
import structlog

from pricecheck.models import PriceChange

logger = structlog.get_logger(__name__)

AUTO_PUBLISH_THRESHOLD = 0.85


class PublishState(str, Enum):
    FETCHED = "fetched"
    COMPARED = "compared"
    AUTO_PUBLISHED = "auto_published"
    PENDING_REVIEW = "pending_review"


_TRANSITIONS = {
    PublishState.FETCHED: {PublishState.COMPARED},
    PublishState.COMPARED: {PublishState.AUTO_PUBLISHED, PublishState.PENDING_REVIEW},
    PublishState.AUTO_PUBLISHED: set(),
    PublishState.PENDING_REVIEW: set(),
}


@dataclass
class PublishDecision:
    """Tracks one observation through Fetched -> Compared -> outcome"""

    provider: str
    confidence: float
    state: PublishState = PublishState.FETCHED
    changes: List[PriceChange] = field(default_factory=list)
    reason: str = ""
    history: List[PublishState] = field(default_factory=lambda: [PublishState.FETCHED])

    def advance(self, state: PublishState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Invalid publish transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @property
    def published(self) -> bool:
        return self.state is PublishState.AUTO_PUBLISHED


class PublishPolicy:
    """
    Decides whether merged results go live or wait for review

    Auto-publish when confidence is at least the threshold, or when the
    change set is empty. New models are not changes, so they never hold an
    observation back on their own. ``force`` publishes regardless (manual
    ``--auto-publish``).
    """

    def __init__(self, threshold: float = AUTO_PUBLISH_THRESHOLD, force: bool = False):
        self.threshold = threshold
        self.force = force

    def decide(self, confidence: float, changes: Sequence[PriceChange]) -> PublishState:
        if self.force or confidence >= self.threshold:
            return PublishState.AUTO_PUBLISHED
        if not changes:
            return PublishState.AUTO_PUBLISHED
        return PublishState.PENDING_REVIEW

    def evaluate(
        self,
        provider: str,
        confidence: float,
        changes: Sequence[PriceChange],
    ) -> PublishDecision:
        """
        Run one observation through the state machine

        Args:
            provider: Provider display name
            confidence: Observation confidence
            changes: Significant price changes for this observation
        """
        decision = PublishDecision(provider=provider, confidence=confidence)
        decision.advance(PublishState.COMPARED)
        decision.changes = list(changes)

        outcome = self.decide(confidence, changes)
        if self.force:
            decision.reason = "auto-publish forced"
        elif confidence >= self.threshold:
            decision.reason = f"confidence {confidence:.2f} >= {self.threshold:.2f}"
        elif not changes:
            decision.reason = "no significant changes"
        else:
            decision.reason = (
                f"confidence {confidence:.2f} < {self.threshold:.2f} "
                f"with {len(changes)} change(s)"
            )

        decision.advance(outcome)

        logger.info(
            "publish_decision",
            provider=provider,
            state=outcome.value,
            confidence=confidence,
            changes=len(changes),
            reason=decision.reason,
        )
        return decision
