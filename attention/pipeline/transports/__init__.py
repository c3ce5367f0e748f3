"""
Dispatch Transports

Each transport delivers DispatchRequests for one channel name and is
registered with the DispatchManager while wiring the pipeline.

Available Transports:
- SlackTransport: chat.postMessage to the configured channel
"""

from .slack import SlackTransport, SlackAPIError

__all__ = [
    "SlackTransport",
    "SlackAPIError",
]
