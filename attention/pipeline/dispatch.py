"""
Dispatch Manager

Routes notification requests to named transports. One request always yields
one result, in request order, whether the transport is missing, raises, or
delivers.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..common.schemas import DispatchRequest, DispatchResult

logger = logging.getLogger("attention.pipeline.dispatch")

DispatchTransport = Callable[[DispatchRequest], Awaitable[DispatchResult]]

ERROR_NOT_REGISTERED = "transport_not_registered"
ERROR_TIMEOUT = "transport_timeout"
ERROR_INVALID_RESULT = "invalid_transport_result"


class DispatchManager:
    """
    Registry of channel name -> transport.

    Transports are registered while wiring the pipeline; registering a
    channel twice replaces the earlier transport.
    """

    def __init__(
        self,
        transports: Optional[Dict[str, DispatchTransport]] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            transports: Initial channel -> transport mapping
            timeout: Per-transport call limit in seconds (None: no limit)
        """
        self._transports: Dict[str, DispatchTransport] = dict(transports or {})
        self._timeout = timeout

    @property
    def channels(self) -> List[str]:
        return list(self._transports)

    def register_transport(self, channel: str, transport: DispatchTransport) -> None:
        if channel in self._transports:
            logger.info("Replacing dispatch transport for channel %s", channel)
        self._transports[channel] = transport

    async def dispatch(self, requests: List[DispatchRequest]) -> List[DispatchResult]:
        """Deliver requests sequentially. Never raises."""
        results: List[DispatchResult] = []
        for request in requests:
            results.append(await self._dispatch_one(request))
        return results

    async def _dispatch_one(self, request: DispatchRequest) -> DispatchResult:
        transport = self._transports.get(request.channel)
        if transport is None:
            logger.warning("No dispatch transport registered for channel %s", request.channel)
            return DispatchResult(channel=request.channel, delivered=False, error=ERROR_NOT_REGISTERED)

        try:
            if self._timeout is not None:
                result = await asyncio.wait_for(transport(request), timeout=self._timeout)
            else:
                result = await transport(request)
        except asyncio.TimeoutError:
            logger.error("Dispatch transport timed out (channel=%s, timeout=%.1fs)", request.channel, self._timeout)
            return DispatchResult(channel=request.channel, delivered=False, error=ERROR_TIMEOUT)
        except Exception as e:
            logger.error("Dispatch transport failed (channel=%s): %s", request.channel, e)
            return DispatchResult(channel=request.channel, delivered=False, error=str(e) or type(e).__name__)

        return self._coerce_result(request, result)

    def _coerce_result(self, request: DispatchRequest, result: Any) -> DispatchResult:
        if isinstance(result, DispatchResult):
            return result
        if isinstance(result, dict):
            try:
                return DispatchResult.model_validate(result)
            except ValidationError as e:
                logger.error("Dispatch transport returned an invalid result (channel=%s): %s", request.channel, e)
        else:
            logger.error(
                "Dispatch transport returned %s, expected a DispatchResult (channel=%s)",
                type(result).__name__, request.channel,
            )
        return DispatchResult(channel=request.channel, delivered=False, error=ERROR_INVALID_RESULT)
