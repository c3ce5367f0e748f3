"""
Attention Gateway

Event triage for the integrations gateway: inbound provider events are
enriched, scored by a classification backend, filtered against per-source
thresholds, and escalated to notification channels.

Philosophy:
- Every stage fails soft; a webhook never gets an exception back
- Classifier unavailability degrades to discard, never to escalation
- One dispatch request, one dispatch result, always

Usage:
    from attention.common import AttentionConfigService
    from attention.common.schemas import RawAttentionEvent
    from attention.pipeline import AttentionPipeline, ClassificationAgent, create_backend
"""

__version__ = "0.1.0"
