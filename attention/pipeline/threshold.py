"""
Threshold Decision

Applies the configured urgency cutoffs to a classification result.
"""

import logging
from typing import Optional, Tuple

from ..common.config import AttentionConfig
from ..common.schemas import (
    AttentionEvent,
    ClassificationResult,
    ThresholdAction,
    ThresholdDecision,
)

logger = logging.getLogger("attention.pipeline.threshold")

RULE_CLASSIFIER_FILTERED = "classifier_filtered"
RULE_DEFAULT_THRESHOLD = "default_threshold"


class ThresholdDecider:
    """
    Decides discard vs. escalate.

    Threshold lookup order:
    1. ``thresholds["<source>:<kind>"]``
    2. ``thresholds["<source>"]``
    3. ``default_threshold``

    A classifier-filtered result is discarded whatever its score.
    """

    def __init__(self, config: AttentionConfig):
        self._config = config

    def resolve_threshold(self, event: AttentionEvent) -> Tuple[float, str]:
        """Return (threshold, rule_id) for an event"""
        thresholds = self._config.thresholds
        for key in (f"{event.source}:{event.kind}", event.source):
            value: Optional[float] = thresholds.get(key)
            if value is not None:
                return float(value), f"threshold:{key}"
        return float(self._config.default_threshold), RULE_DEFAULT_THRESHOLD

    def decide(self, event: AttentionEvent, classification: ClassificationResult) -> ThresholdDecision:
        threshold, rule_id = self.resolve_threshold(event)
        score = classification.urgency_score

        if classification.filtered:
            decision = ThresholdDecision(
                action=ThresholdAction.DISCARD,
                threshold=threshold,
                score=score,
                rule_id=RULE_CLASSIFIER_FILTERED,
                notes=f"classifier_filtered (would have applied {rule_id})",
            )
        else:
            escalate = score >= threshold
            decision = ThresholdDecision(
                action=ThresholdAction.ESCALATE if escalate else ThresholdAction.DISCARD,
                threshold=threshold,
                score=score,
                rule_id=rule_id,
                notes="score_above_threshold" if escalate else "below_threshold",
            )

        logger.debug(
            "Threshold decision computed (source=%s, kind=%s, action=%s, score=%.1f, threshold=%.1f, rule=%s)",
            event.source, event.kind, decision.action.value, score, threshold, decision.rule_id,
        )
        return decision
