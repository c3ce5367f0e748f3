"""
Primary Agent Coordinator

Turns an escalated event into a directive: whether to notify, how loudly,
where, and with which suggested follow-ups. Planning is delegated to an
optional collaborator; without one (or when it fails) a deterministic rule
applies.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..common.config import AttentionConfig
from ..common.schemas import (
    AttentionEvent,
    ClassificationResult,
    EscalationLevel,
    PrimaryAgentDirective,
    Relevance,
)

logger = logging.getLogger("attention.pipeline.primary_agent")

DEFAULT_CHANNEL = "slack"

ContextFetcher = Callable[[AttentionEvent], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]
# Called as planner(event=..., classification=..., config=..., context=...)
Planner = Callable[..., Union[PrimaryAgentDirective, Dict[str, Any], Awaitable[Any]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PrimaryAgentCoordinator:
    """Produces a PrimaryAgentDirective for an escalated event."""

    def __init__(
        self,
        config: AttentionConfig,
        fetch_context: Optional[ContextFetcher] = None,
        plan_response: Optional[Planner] = None,
    ):
        """
        Args:
            config: Pipeline config, passed through to the planner
            fetch_context: Optional source of supplementary data for the event
            plan_response: Optional planner replacing the deterministic rule
        """
        self._config = config
        self._fetch_context = fetch_context
        self._plan_response = plan_response

    async def run(self, event: AttentionEvent, classification: ClassificationResult) -> PrimaryAgentDirective:
        context = await self._gather_context(event)

        if self._plan_response is not None:
            try:
                directive = await _maybe_await(self._plan_response(
                    event=event,
                    classification=classification,
                    config=self._config,
                    context=context,
                ))
                if isinstance(directive, dict):
                    directive = PrimaryAgentDirective.model_validate(directive)
                if isinstance(directive, PrimaryAgentDirective):
                    return directive
                logger.warning("Planner returned %s, using fallback directive", type(directive).__name__)
            except Exception as e:
                logger.error(
                    "Planner failed (source=%s, kind=%s), using fallback directive: %s",
                    event.source, event.kind, e,
                )

        logger.debug("Primary agent fallback path (source=%s, kind=%s)", event.source, event.kind)
        return self.fallback_directive(event, classification, context)

    async def _gather_context(self, event: AttentionEvent) -> Dict[str, Any]:
        if self._fetch_context is None:
            return {}
        try:
            context = await _maybe_await(self._fetch_context(event))
        except Exception as e:
            logger.warning("Context fetch failed (source=%s, kind=%s): %s", event.source, event.kind, e)
            return {}
        return context if isinstance(context, dict) else {}

    def fallback_directive(
        self,
        event: AttentionEvent,
        classification: ClassificationResult,
        context: Dict[str, Any],
    ) -> PrimaryAgentDirective:
        """Deterministic directive used when no planner answers"""
        score = classification.urgency_score
        if score >= 9:
            level = EscalationLevel.URGENT
        elif score >= 7:
            level = EscalationLevel.NOTIFY
        else:
            level = EscalationLevel.MONITOR

        channels = self._config.channel_preferences.get(event.source)
        if channels is None:
            channels = [DEFAULT_CHANNEL]

        return PrimaryAgentDirective(
            should_notify=classification.relevance == Relevance.HIGH,
            escalation_level=level,
            summary=summarize(event, classification),
            recommended_channels=list(channels),
            context_injections=dict(context),
            follow_up_actions=[],
        )


def summarize(event: AttentionEvent, classification: ClassificationResult) -> str:
    """One-line synopsis, e.g. 'whoop recovery: urgency 9.0/10 (high relevance)'"""
    summary = (
        f"{event.source} {event.kind}: urgency {classification.urgency_score:.1f}/10 "
        f"({classification.relevance.value} relevance)"
    )
    if classification.reasons:
        summary += f" - {classification.reasons[0]}"
    return summary
