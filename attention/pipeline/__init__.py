"""
Attention Pipeline

Decides which inbound events deserve the user's attention and delivers the
ones that do.

Key Components:
- AttentionIngestionService: Receipt timestamp + enrichment
- ClassificationAgent: Urgency/relevance scoring via a pluggable backend
- ThresholdDecider: Per-source cutoffs, discard vs. escalate
- PrimaryAgentCoordinator: Directive planning for escalations
- DispatchManager: Channel-name -> transport routing
- AttentionPipeline: Runs the stages in order

Pipeline Rules:
1. Ingestion never fails because an enricher failed
2. Classification never raises; unavailable means discard
3. Filtered results are discarded whatever their score
4. Every dispatch request yields exactly one result, in order
"""

from .backends import (
    ChatBackend,
    ClassificationBackend,
    ResponsesBackend,
    create_backend,
    resolve_provider,
)
from .classifier import ClassificationAgent
from .dispatch import DispatchManager, DispatchTransport
from .ingestion import AttentionIngestionService
from .orchestrator import AttentionPipeline, unavailable_classification
from .primary_agent import PrimaryAgentCoordinator
from .threshold import ThresholdDecider

__all__ = [
    "AttentionIngestionService",
    "ClassificationBackend",
    "ResponsesBackend",
    "ChatBackend",
    "create_backend",
    "resolve_provider",
    "ClassificationAgent",
    "ThresholdDecider",
    "PrimaryAgentCoordinator",
    "DispatchManager",
    "DispatchTransport",
    "AttentionPipeline",
    "unavailable_classification",
]
