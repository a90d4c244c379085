"""Error kinds raised by the BBO feed client.

Every failure surfaced by the transport, codec, or client is a
:class:`FeedError` subclass tagged with a :class:`FeedErrorKind`.
Library exceptions (``websockets``, ``OSError``, pydantic
``ValidationError``) are translated at the module boundary and chained
with ``raise ... from exc``, so callers never need to string-match.

Propagation summary:
    - ``ServerConnectError`` / ``SubscriptionError`` — raised to the
      caller of ``connect()`` / ``subscribe()``.
    - ``ConnectionClosedError`` — expected after ``disconnect()``; ends
      the dispatch loop quietly.
    - ``TransportError`` — unexpected socket failure; ends the dispatch
      loop after disconnecting the client.
    - ``ParseError`` — bad price/amount tokens; drops one update only.
    - ``DecodeError`` — malformed top-level message; ends the current
      dispatch loop.
"""

from enum import Enum


class FeedErrorKind(str, Enum):
    """Classification of feed failures."""

    SERVER_CONNECT = "SERVER_CONNECT"
    CLOSED = "CLOSED"
    TRANSPORT = "TRANSPORT"
    SUBSCRIPTION = "SUBSCRIPTION"
    PARSE = "PARSE"
    DECODE = "DECODE"


class FeedError(Exception):
    """Base class for all feed client errors.

    Args:
        message: Human-readable description.
    """

    kind: FeedErrorKind = FeedErrorKind.TRANSPORT

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class ServerConnectError(FeedError):
    """Initial connect or handshake read failed."""

    kind = FeedErrorKind.SERVER_CONNECT


class ConnectionClosedError(FeedError):
    """Operation attempted on a closed or never-opened transport."""

    kind = FeedErrorKind.CLOSED


class TransportError(FeedError):
    """Unexpected transport failure (abnormal close, socket error)."""

    kind = FeedErrorKind.TRANSPORT


class SubscriptionError(FeedError):
    """Subscription was rejected or its acknowledgment was unusable.

    Attributes:
        code: Acknowledgment status code. ``-1`` when no code could be
            read (malformed acknowledgment or transport failure).
        reason: Server-supplied reason, or a local description.
    """

    kind = FeedErrorKind.SUBSCRIPTION

    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"subscription error: {code}, {reason}")
        self.code: int = code
        self.reason: str = reason


class ParseError(FeedError):
    """Price/amount tokens could not be turned into an order."""

    kind = FeedErrorKind.PARSE


class DecodeError(FeedError):
    """Raw message is not a well-formed feed message."""

    kind = FeedErrorKind.DECODE
