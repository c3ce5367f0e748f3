"""
Classification Agent

Scores an ingested event's urgency and relevance through the configured
backend. Classification failure is never fatal: every failure path yields
None and the orchestrator substitutes a discard-biased default.
"""

import logging
from typing import Optional

import httpx

from ..common.config import AttentionConfig
from ..common.schemas import AttentionEvent, ClassificationResult
from .backends import ClassificationBackend, create_backend

logger = logging.getLogger("attention.pipeline.classifier")


class ClassificationAgent:
    """
    Wraps one ClassificationBackend chosen at construction.

    Usage:
        agent = ClassificationAgent.from_config(config)
        result = await agent.classify(event)  # None when unavailable
    """

    def __init__(self, backend: ClassificationBackend):
        self._backend = backend

    @classmethod
    def from_config(
        cls,
        config: AttentionConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ClassificationAgent":
        return cls(create_backend(config.guardrails, http_client=http_client))

    @property
    def backend(self) -> ClassificationBackend:
        return self._backend

    @property
    def is_available(self) -> bool:
        return self._backend.is_configured

    async def classify(self, event: AttentionEvent) -> Optional[ClassificationResult]:
        logger.debug("Classifying attention event (source=%s, kind=%s)", event.source, event.kind)
        try:
            result = await self._backend.classify(event)
        except Exception as e:
            # Third-party backends may not honour the no-raise contract
            logger.error("Classification backend %s raised: %s", self._backend.version, e)
            return None

        if result is None:
            logger.info("Classification unavailable (source=%s, kind=%s)", event.source, event.kind)
        return result
