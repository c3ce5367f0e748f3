"""
Attention Event Schemas

Data shapes passed between pipeline stages.
"""

from .events import (
    RawAttentionEvent,
    AttentionEvent,
    ClassificationResult,
    ThresholdDecision,
    FollowUpAction,
    PrimaryAgentDirective,
    EventDescriptor,
    DispatchPayload,
    DispatchRequest,
    DispatchResult,
    AttentionPipelineResult,
    Relevance,
    ThresholdAction,
    EscalationLevel,
    PipelineOutcome,
    URGENCY_MIN,
    URGENCY_MAX,
)

__all__ = [
    "RawAttentionEvent",
    "AttentionEvent",
    "ClassificationResult",
    "ThresholdDecision",
    "FollowUpAction",
    "PrimaryAgentDirective",
    "EventDescriptor",
    "DispatchPayload",
    "DispatchRequest",
    "DispatchResult",
    "AttentionPipelineResult",
    "Relevance",
    "ThresholdAction",
    "EscalationLevel",
    "PipelineOutcome",
    "URGENCY_MIN",
    "URGENCY_MAX",
]
