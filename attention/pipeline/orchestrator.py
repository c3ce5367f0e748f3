"""
Attention Pipeline

Sequences the stages for one raw event:

1. Ingest     - timestamp and enrich
2. Classify   - score urgency/relevance (unavailable -> discard-biased default)
3. Decide     - threshold policy; discard ends the run
4. Plan       - primary agent directive (escalations only)
5. Dispatch   - one request per recommended channel

Every stage is fail-soft on its own, so ``process`` always returns a
complete AttentionPipelineResult.
"""

import logging
from typing import List, Optional

from ..common.config import AttentionConfig
from ..common.schemas import (
    AttentionEvent,
    AttentionPipelineResult,
    ClassificationResult,
    DispatchPayload,
    DispatchRequest,
    EventDescriptor,
    PipelineOutcome,
    PrimaryAgentDirective,
    RawAttentionEvent,
    Relevance,
    ThresholdAction,
)
from .classifier import ClassificationAgent
from .dispatch import DispatchManager
from .ingestion import AttentionIngestionService
from .primary_agent import PrimaryAgentCoordinator
from .threshold import ThresholdDecider

logger = logging.getLogger("attention.pipeline.orchestrator")

UNAVAILABLE_REASON = "classification_unavailable"
DEFAULT_AUDIENCE = "default"


def unavailable_classification() -> ClassificationResult:
    """Stand-in used when the classifier cannot answer; always discarded"""
    return ClassificationResult(
        urgency_score=0,
        relevance=Relevance.NONE,
        filtered=True,
        reasons=[UNAVAILABLE_REASON],
        context={},
        tags=[],
        version="unavailable",
    )


class AttentionPipeline:
    """Runs raw events through ingestion, classification, decision and dispatch."""

    def __init__(
        self,
        config: AttentionConfig,
        classifier: ClassificationAgent,
        ingestion: Optional[AttentionIngestionService] = None,
        threshold: Optional[ThresholdDecider] = None,
        primary_agent: Optional[PrimaryAgentCoordinator] = None,
        dispatch: Optional[DispatchManager] = None,
    ):
        if classifier is None:
            raise ValueError("A classification agent must be provided")
        self._config = config
        self._classifier = classifier
        self._ingestion = ingestion or AttentionIngestionService()
        self._threshold = threshold or ThresholdDecider(config)
        self._primary_agent = primary_agent or PrimaryAgentCoordinator(config)
        self._dispatch = dispatch or DispatchManager()

    @property
    def config(self) -> AttentionConfig:
        return self._config

    @property
    def classifier(self) -> ClassificationAgent:
        return self._classifier

    @property
    def dispatch_manager(self) -> DispatchManager:
        return self._dispatch

    async def process(self, raw: RawAttentionEvent) -> AttentionPipelineResult:
        event = await self._ingestion.ingest(raw)

        classification = await self._classifier.classify(event)
        if classification is None:
            classification = unavailable_classification()

        decision = self._threshold.decide(event, classification)
        if decision.action == ThresholdAction.DISCARD:
            logger.info(
                "Attention event discarded (source=%s, kind=%s, rule=%s, score=%.1f)",
                event.source, event.kind, decision.rule_id, decision.score,
            )
            return AttentionPipelineResult(
                outcome=PipelineOutcome.DISCARDED,
                classification=classification,
                decision=decision,
            )

        directive = await self._primary_agent.run(event, classification)
        requests = self.build_dispatch_requests(event, directive)
        if not requests:
            logger.info("Attention event escalated with no channels (source=%s, kind=%s)", event.source, event.kind)
            return AttentionPipelineResult(
                outcome=PipelineOutcome.ESCALATED,
                classification=classification,
                decision=decision,
                primary_directive=directive,
            )

        dispatch_results = await self._dispatch.dispatch(requests)
        delivered = sum(1 for r in dispatch_results if r.delivered)
        logger.info(
            "Attention event dispatched (source=%s, kind=%s, level=%s, delivered=%d/%d)",
            event.source, event.kind, directive.escalation_level.value, delivered, len(dispatch_results),
        )
        return AttentionPipelineResult(
            outcome=PipelineOutcome.DISPATCHED,
            classification=classification,
            decision=decision,
            primary_directive=directive,
            dispatch_results=dispatch_results,
        )

    def build_dispatch_requests(
        self,
        event: AttentionEvent,
        directive: PrimaryAgentDirective,
    ) -> List[DispatchRequest]:
        """One request per recommended channel, in the directive's order"""
        audience = DEFAULT_AUDIENCE
        if event.metadata and isinstance(event.metadata.get("audience"), str):
            audience = event.metadata["audience"]

        descriptor = EventDescriptor(source=event.source, kind=event.kind, received_at=event.received_at)
        return [
            DispatchRequest(
                channel=channel,
                audience=audience,
                payload=DispatchPayload(
                    summary=directive.summary,
                    escalation_level=directive.escalation_level,
                    context=dict(directive.context_injections),
                    event=descriptor,
                    follow_up_actions=list(directive.follow_up_actions),
                ),
            )
            for channel in directive.recommended_channels
        ]
