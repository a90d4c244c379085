"""Message codec for the AscendEX public BBO stream.

Converts raw feed messages into a tagged envelope, builds order-book
snapshots from the wire's decimal-string tokens, and encodes the
handful of outbound requests the client sends.

Inbound envelope:
    Every raw message is decoded into exactly one of
    :class:`SubscriptionAck`, :class:`Ping`, :class:`BboUpdate`, or
    :class:`Unrecognized`, selected by the top-level ``"m"`` field and
    tagged with a :class:`MessageKind`. Callers route on ``kind``.
    Unknown ``"m"`` values become :class:`Unrecognized` rather than an
    error, so new server message types never break the client.

Error split:
    - :class:`~core.errors.DecodeError` — the message itself is
      malformed (not JSON, not an object, or a field of the wrong
      type). The dispatch loop treats this as fatal.
    - :class:`~core.errors.ParseError` — the envelope is fine but a
      price/amount token pair is not. The loop drops that one update.

Wire examples::

    {"m": "ping", "hp": 3}
    {"m": "sub", "ch": "bbo:BTC/USDT", "code": 0}
    {"m": "bbo", "symbol": "BTC/USDT",
     "data": {"ts": 1573068442532,
              "bid": ["9309.11", "0.0197172"],
              "ask": ["9309.12", "0.8851266"]}}
"""

import json
import math
from enum import Enum
from typing import Any, Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import DecodeError, ParseError
from core.events import BestOrderBook, Order

# ---------------------------------------------------------------------------
# Wire constants
# ---------------------------------------------------------------------------

_CHANNEL_PREFIX: str = "bbo:"
"""Channel name prefix for best-bid/offer subscriptions."""

_SYMBOL_SEPARATOR: str = "_"
"""Separator used in caller-facing symbols (``"BTC_USDT"``)."""

_CHANNEL_SEPARATOR: str = "/"
"""Separator used in feed channel paths (``"bbo:BTC/USDT"``)."""

KeepAliveOp = Literal["ping", "pong"]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class MessageKind(str, Enum):
    """Tag of a decoded inbound message."""

    SUB_ACK = "sub"
    PING = "ping"
    BBO = "bbo"
    UNRECOGNIZED = "unrecognized"


class SubscriptionAck(BaseModel):
    """Server response to a subscribe request.

    Attributes:
        m: Message type as sent by the server (normally ``"sub"``).
        ch: Channel the acknowledgment refers to.
        code: Status code; ``0`` means success.
        reason: Optional failure description.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal[MessageKind.SUB_ACK] = MessageKind.SUB_ACK
    m: str = ""
    ch: str = ""
    code: int = 0
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the subscription was accepted."""
        return self.code == 0


class Ping(BaseModel):
    """Server heartbeat. Must be answered with a pong."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[MessageKind.PING] = MessageKind.PING
    hp: Any = Field(
        default=None,
        description="Server heartbeat counter, carried but not interpreted",
    )


class BboData(BaseModel):
    """Payload of a BBO update. Tokens are kept as raw strings."""

    model_config = ConfigDict(frozen=True)

    ts: int = 0
    bid: list[str] = Field(default_factory=list)
    ask: list[str] = Field(default_factory=list)


class BboUpdate(BaseModel):
    """Best-bid/offer update for one symbol."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[MessageKind.BBO] = MessageKind.BBO
    symbol: str = ""
    data: BboData = Field(default_factory=BboData)


class Unrecognized(BaseModel):
    """Any message whose ``"m"`` the client does not handle."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[MessageKind.UNRECOGNIZED] = MessageKind.UNRECOGNIZED
    m: str | None = None


IncomingMessage = Union[SubscriptionAck, Ping, BboUpdate, Unrecognized]
"""Tagged variant produced by :func:`decode_message`."""


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _load_object(raw: bytes | str) -> dict:
    try:
        obj = json.loads(raw)
    except (ValueError, TypeError) as exc:
        raise DecodeError(f"message is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise DecodeError(f"message is not a JSON object: {type(obj).__name__}")
    return obj


def decode_message(raw: bytes | str) -> IncomingMessage:
    """Decode one raw feed message into the tagged envelope.

    Args:
        raw: Message payload as received from the transport.

    Returns:
        The decoded message. Unknown ``"m"`` values yield
        :class:`Unrecognized`.

    Raises:
        DecodeError: Payload is not a JSON object or a known message
            type carries fields of the wrong shape.

    Example:
        >>> decode_message(b'{"m": "ping", "hp": 3}').kind
        <MessageKind.PING: 'ping'>
        >>> decode_message(b'{"m": "depth"}').kind
        <MessageKind.UNRECOGNIZED: 'unrecognized'>
    """
    obj: dict = _load_object(raw)
    m = obj.get("m")
    fields: dict = {k: v for k, v in obj.items() if k != "kind"}

    try:
        if m == MessageKind.PING.value:
            return Ping.model_validate({"hp": fields.get("hp")})
        if m == MessageKind.BBO.value:
            return BboUpdate.model_validate(
                {"symbol": fields.get("symbol", ""), "data": fields.get("data") or {}}
            )
        if m == MessageKind.SUB_ACK.value:
            return SubscriptionAck.model_validate(fields)
    except ValidationError as exc:
        raise DecodeError(f"malformed {m!r} message: {exc}") from exc

    return Unrecognized(m=m if isinstance(m, str) else None)


def decode_subscription_ack(raw: bytes | str) -> SubscriptionAck:
    """Decode a subscribe acknowledgment.

    Lenient on purpose: any JSON object is accepted, a missing
    ``"code"`` reads as ``0``, and ``"m"`` is not checked.

    Raises:
        DecodeError: Not a JSON object, or ``code``/``reason`` have the
            wrong type.

    Example:
        >>> decode_subscription_ack(b'{"code": 10000, "reason": "bad"}').ok
        False
    """
    obj: dict = _load_object(raw)
    fields: dict = {k: v for k, v in obj.items() if k != "kind"}
    try:
        return SubscriptionAck.model_validate(fields)
    except ValidationError as exc:
        raise DecodeError(f"malformed subscription acknowledgment: {exc}") from exc


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def channel_name(symbol: str) -> str:
    """Convert a ``TOKEN_ASSET`` symbol to its BBO channel name.

    Only the first separator is rewritten.

    Example:
        >>> channel_name("USDT_BTC")
        'bbo:USDT/BTC'
    """
    return _CHANNEL_PREFIX + symbol.replace(_SYMBOL_SEPARATOR, _CHANNEL_SEPARATOR, 1)


def encode_subscribe(channel: str) -> bytes:
    """Encode ``{"op": "sub", "ch": channel}``."""
    return json.dumps({"op": "sub", "ch": channel}).encode("utf-8")


def encode_op(op: KeepAliveOp) -> bytes:
    """Encode a keep-alive request, ``{"op": "ping"}`` or ``{"op": "pong"}``."""
    return json.dumps({"op": op}).encode("utf-8")


# ---------------------------------------------------------------------------
# Order-book construction
# ---------------------------------------------------------------------------


def build_order(tokens: Sequence[str]) -> Order:
    """Build an :class:`Order` from a ``[price, amount]`` token pair.

    Args:
        tokens: Exactly two decimal strings.

    Returns:
        The order with ``price`` from token 0 and ``amount`` from token 1.

    Raises:
        ParseError: Wrong number of tokens, or a token is not a finite
            decimal number.

    Example:
        >>> build_order(["9309.11", "0.0197172"])
        Order(price=9309.11, amount=0.0197172)
    """
    if len(tokens) != 2:
        raise ParseError(f"invalid input value: expected 2 tokens, got {len(tokens)}")

    values: list[float] = []
    for token in tokens:
        try:
            value: float = float(token)
        except (TypeError, ValueError) as exc:
            raise ParseError(f"invalid input value: {token!r}") from exc
        if not math.isfinite(value):
            raise ParseError(f"invalid input value: {token!r}")
        values.append(value)

    return Order(price=values[0], amount=values[1])


def build_best_order_book(
    bid_tokens: Sequence[str],
    ask_tokens: Sequence[str],
) -> BestOrderBook:
    """Build a :class:`BestOrderBook`, bid first. First failure propagates.

    Raises:
        ParseError: Either side is malformed.
    """
    bid: Order = build_order(bid_tokens)
    ask: Order = build_order(ask_tokens)
    return BestOrderBook(bid=bid, ask=ask)
