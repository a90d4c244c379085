"""Core domain layer for the BBO feed client.

This package provides the order-book value types, the error-kind
hierarchy, and the closable dispatcher that hands snapshots to the
consumer. All value models are Pydantic-based with frozen configuration
for immutability.
"""

from core.dispatcher import Dispatcher, DispatcherConfig, DispatcherStats
from core.errors import (
    ConnectionClosedError,
    DecodeError,
    FeedError,
    FeedErrorKind,
    ParseError,
    ServerConnectError,
    SubscriptionError,
    TransportError,
)
from core.events import BestOrderBook, Order

__all__: list[str] = [
    "BestOrderBook",
    "ConnectionClosedError",
    "DecodeError",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherStats",
    "FeedError",
    "FeedErrorKind",
    "Order",
    "ParseError",
    "ServerConnectError",
    "SubscriptionError",
    "TransportError",
]
