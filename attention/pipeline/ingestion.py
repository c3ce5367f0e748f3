"""
Ingestion Service

Turns a raw webhook event into an AttentionEvent: stamps the receipt time
and merges in whatever the registered enrichers derive from the event.
"""

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..common.schemas import AttentionEvent, RawAttentionEvent

logger = logging.getLogger("attention.pipeline.ingestion")

EnricherResult = Union[Dict[str, Any], Awaitable[Dict[str, Any]]]
Enricher = Callable[[RawAttentionEvent], EnricherResult]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AttentionIngestionService:
    """
    Normalizes raw events for classification.

    Enrichers run one after another, each receiving the original raw event.
    Their output is shallow-merged into ``normalized``, so a later enricher
    overwrites keys set by an earlier one.
    """

    def __init__(self, enrichers: Optional[List[Enricher]] = None):
        self._enrichers: List[Enricher] = list(enrichers or [])

    async def ingest(self, event: RawAttentionEvent) -> AttentionEvent:
        received_at = event.received_at or now_iso()
        normalized = await self._run_enrichers(event)

        enriched = AttentionEvent(
            **event.model_dump(exclude={"received_at", "normalized"}),
            received_at=received_at,
            normalized=normalized,
        )
        logger.debug(
            "Attention event ingested (source=%s, kind=%s, dedupe_key=%s)",
            event.source, event.kind, event.dedupe_key,
        )
        return enriched

    async def _run_enrichers(self, event: RawAttentionEvent) -> Dict[str, Any]:
        normalized: Dict[str, Any] = {"payload": event.payload}

        for enricher in self._enrichers:
            name = getattr(enricher, "__name__", repr(enricher))
            try:
                result = enricher(event)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(
                    "Attention enricher %s failed (source=%s, kind=%s): %s",
                    name, event.source, event.kind, e,
                )
                continue

            if result is None:
                continue
            if not isinstance(result, dict):
                logger.warning("Attention enricher %s returned %s, expected a dict", name, type(result).__name__)
                continue
            normalized.update(result)

        return normalized
