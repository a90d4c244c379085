"""Infrastructure layer for the BBO feed client.

This package provides the WebSocket transport, the feed message codec,
and the client that drives the connect/subscribe/dispatch lifecycle
against the AscendEX public stream.
"""

from infra.bbo_client import BboFeedClient, ClientState, FeedClientConfig
from infra.ws_transport import MessageType, Transport, WebSocketTransport

__all__: list[str] = [
    "BboFeedClient",
    "ClientState",
    "FeedClientConfig",
    "MessageType",
    "Transport",
    "WebSocketTransport",
]
