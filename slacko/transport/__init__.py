"""Transport layer for the Slack client.

This package contains all network IO:
- http: request engine with retry and response classification
- ws: WebSocket connection management
- ws_client: WebSocket message iteration
"""

from .http import RequestEngine, flatten_params, parse_retry_after
from .ws import connect_websocket
from .ws_client import SlackWsClient, SlackWsMessage, SlackWsMessageType

__all__ = [
    "RequestEngine",
    "SlackWsClient",
    "SlackWsMessage",
    "SlackWsMessageType",
    "connect_websocket",
    "flatten_params",
    "parse_retry_after",
]
