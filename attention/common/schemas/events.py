"""
Attention Event Schemas

Shapes shared by every pipeline stage, from the raw webhook event through to
the per-channel dispatch results. Payloads stay opaque: the pipeline never
declares a schema per source.
"""

from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

URGENCY_MIN = 0.0
URGENCY_MAX = 10.0


# ============================================================================
# Enums
# ============================================================================

class Relevance(str, Enum):
    """How relevant the classifier judged an event to the user"""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_RELEVANCE_VALUES = {r.value for r in Relevance}


class ThresholdAction(str, Enum):
    DISCARD = "discard"
    ESCALATE = "escalate"


class EscalationLevel(str, Enum):
    MONITOR = "monitor"
    NOTIFY = "notify"
    URGENT = "urgent"


class PipelineOutcome(str, Enum):
    DISCARDED = "discarded"
    ESCALATED = "escalated"
    DISPATCHED = "dispatched"


# ============================================================================
# Events
# ============================================================================

class RawAttentionEvent(BaseModel):
    """Event as handed over by the webhook boundary"""
    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1, description="Origin system, e.g. 'whoop'")
    kind: str = Field(..., min_length=1, description="Event type, e.g. 'recovery'")
    payload: Any = None
    received_at: Optional[str] = None  # ISO-8601
    dedupe_key: Optional[str] = None  # enforced upstream
    correlation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AttentionEvent(RawAttentionEvent):
    """Raw event after ingestion: timestamped and enriched"""
    received_at: str
    normalized: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Stage results
# ============================================================================

class ClassificationResult(BaseModel):
    """Urgency/relevance judgement for one event"""
    urgency_score: float
    relevance: Relevance = Relevance.LOW
    filtered: bool = False
    reasons: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    version: str = ""

    @field_validator("urgency_score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return min(URGENCY_MAX, max(URGENCY_MIN, value))

    @field_validator("relevance", mode="before")
    @classmethod
    def _coerce_relevance(cls, value: Any) -> Any:
        if isinstance(value, Relevance):
            return value
        if isinstance(value, str) and value.strip().lower() in _RELEVANCE_VALUES:
            return value.strip().lower()
        return Relevance.LOW


class ThresholdDecision(BaseModel):
    action: ThresholdAction
    threshold: float
    score: float
    rule_id: str
    notes: Optional[str] = None


class FollowUpAction(BaseModel):
    """Suggested action; tool/args name an external collaborator"""
    label: str
    tool: Optional[str] = None
    args: Optional[Dict[str, Any]] = None


class PrimaryAgentDirective(BaseModel):
    should_notify: bool
    escalation_level: EscalationLevel
    summary: str
    recommended_channels: List[str] = Field(default_factory=list)
    context_injections: Dict[str, Any] = Field(default_factory=dict)
    follow_up_actions: List[FollowUpAction] = Field(default_factory=list)


# ============================================================================
# Dispatch
# ============================================================================

class EventDescriptor(BaseModel):
    source: str
    kind: str
    received_at: str


class DispatchPayload(BaseModel):
    """What a transport renders for the recipient"""
    summary: Optional[str] = None
    escalation_level: Optional[EscalationLevel] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    event: Optional[EventDescriptor] = None
    follow_up_actions: List[FollowUpAction] = Field(default_factory=list)


class DispatchRequest(BaseModel):
    channel: str
    audience: str = "default"
    payload: DispatchPayload = Field(default_factory=DispatchPayload)
    metadata: Optional[Dict[str, Any]] = None


class DispatchResult(BaseModel):
    channel: str
    delivered: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    retry_at: Optional[str] = None


class AttentionPipelineResult(BaseModel):
    """Terminal output of one pipeline run"""
    outcome: PipelineOutcome
    classification: ClassificationResult
    decision: ThresholdDecision
    primary_directive: Optional[PrimaryAgentDirective] = None
    dispatch_results: Optional[List[DispatchResult]] = None

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize without the stages that did not run"""
        return self.model_dump(mode="json", exclude_none=True)
