"""Unit tests for infra.bbo_codec module.

Tests channel-name derivation, outbound encoders, decoding of each
inbound message kind into the tagged envelope, decode failures, and
order / order-book construction from wire tokens.
"""

import json

import pytest

from core.errors import DecodeError, ParseError
from core.events import BestOrderBook, Order
from infra.bbo_codec import (
    BboUpdate,
    MessageKind,
    Ping,
    SubscriptionAck,
    Unrecognized,
    build_best_order_book,
    build_order,
    channel_name,
    decode_message,
    decode_subscription_ack,
    encode_op,
    encode_subscribe,
)

BBO_MESSAGE: bytes = b"""{
    "m": "bbo",
    "symbol": "BTC/USDT",
    "data": {
        "ts": 1573068442532,
        "bid": ["9309.11", "0.0197172"],
        "ask": ["9309.12", "0.8851266"]
    }
}"""


# ---------------------------------------------------------------------------
# Channel name & encoders
# ---------------------------------------------------------------------------


class TestChannelName:
    """Tests for channel_name()."""

    @pytest.mark.parametrize(
        ("symbol", "expected"),
        [
            ("USDT_BTC", "bbo:USDT/BTC"),
            ("BTC_USDT", "bbo:BTC/USDT"),
            ("ASDLONG_USDT", "bbo:ASDLONG/USDT"),
            ("symbol", "bbo:symbol"),
        ],
    )
    def test_separator_rewritten(self, symbol: str, expected: str) -> None:
        """The first '_' becomes '/' and the 'bbo:' prefix is added."""
        assert channel_name(symbol) == expected

    def test_only_first_separator_replaced(self) -> None:
        """Later separators are left alone."""
        assert channel_name("A_B_C") == "bbo:A/B_C"


class TestEncoders:
    """Tests for outbound request encoders."""

    def test_encode_subscribe(self) -> None:
        """Subscribe request carries op and channel."""
        payload: dict = json.loads(encode_subscribe("bbo:BTC/USDT"))
        assert payload == {"op": "sub", "ch": "bbo:BTC/USDT"}

    @pytest.mark.parametrize("op", ["ping", "pong"])
    def test_encode_op(self, op: str) -> None:
        """Keep-alive requests carry only the op."""
        assert json.loads(encode_op(op)) == {"op": op}  # type: ignore[arg-type]

    def test_encoders_return_bytes(self) -> None:
        """Encoders produce UTF-8 bytes ready for the transport."""
        assert isinstance(encode_subscribe("bbo:X/Y"), bytes)
        assert isinstance(encode_op("ping"), bytes)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeMessage:
    """Tests for decode_message()."""

    def test_ping(self) -> None:
        """'m': 'ping' decodes to Ping."""
        msg = decode_message(b'{ "m": "ping", "hp": 3 }')
        assert isinstance(msg, Ping)
        assert msg.kind == MessageKind.PING
        assert msg.hp == 3

    @pytest.mark.parametrize(
        "raw",
        [
            b'{"m": "ping", "hp": "3"}',
            b'{"m": "ping", "hp": {"seq": 3}}',
            b'{"m": "ping", "hp": 1.5}',
            b'{"m": "ping"}',
        ],
    )
    def test_ping_payload_not_interpreted(self, raw: bytes) -> None:
        """Any heartbeat payload still decodes to Ping."""
        assert isinstance(decode_message(raw), Ping)

    def test_bbo(self) -> None:
        """'m': 'bbo' decodes to BboUpdate with raw tokens."""
        msg = decode_message(BBO_MESSAGE)
        assert isinstance(msg, BboUpdate)
        assert msg.kind == MessageKind.BBO
        assert msg.symbol == "BTC/USDT"
        assert msg.data.ts == 1573068442532
        assert msg.data.bid == ["9309.11", "0.0197172"]
        assert msg.data.ask == ["9309.12", "0.8851266"]

    def test_bbo_without_data_decodes_empty(self) -> None:
        """Missing data yields empty token lists (rejected later by build)."""
        msg = decode_message(b'{"m": "bbo", "symbol": "BTC/USDT"}')
        assert isinstance(msg, BboUpdate)
        assert msg.data.bid == []

    def test_sub_ack(self) -> None:
        """'m': 'sub' decodes to SubscriptionAck."""
        msg = decode_message(b'{"m": "sub", "ch": "bbo:BTC/USDT", "code": 0}')
        assert isinstance(msg, SubscriptionAck)
        assert msg.kind == MessageKind.SUB_ACK
        assert msg.ok

    def test_unknown_kind(self) -> None:
        """Unknown 'm' decodes to Unrecognized."""
        msg = decode_message(b'{"m": "connected", "type": "unauth"}')
        assert isinstance(msg, Unrecognized)
        assert msg.kind == MessageKind.UNRECOGNIZED
        assert msg.m == "connected"

    def test_missing_kind(self) -> None:
        """An object without 'm' is Unrecognized, not an error."""
        msg = decode_message(b'{"op": "sub"}')
        assert isinstance(msg, Unrecognized)
        assert msg.m is None

    def test_accepts_str(self) -> None:
        """Text payloads decode the same as bytes."""
        assert decode_message('{"m": "ping"}').kind == MessageKind.PING

    @pytest.mark.parametrize(
        "raw",
        [b"", b"not json", b"[1, 2]", b'"ping"', b"null"],
    )
    def test_malformed_raises_decode_error(self, raw: bytes) -> None:
        """Non-JSON and non-object payloads raise DecodeError."""
        with pytest.raises(DecodeError):
            decode_message(raw)

    def test_wrong_field_type_raises_decode_error(self) -> None:
        """A known kind with badly typed fields raises DecodeError."""
        with pytest.raises(DecodeError):
            decode_message(b'{"m": "bbo", "data": {"bid": 5}}')


class TestDecodeSubscriptionAck:
    """Tests for decode_subscription_ack()."""

    def test_code_zero_ok(self) -> None:
        """code 0 is success."""
        ack: SubscriptionAck = decode_subscription_ack(b'{"code": 0}')
        assert ack.ok
        assert ack.reason is None

    def test_missing_code_defaults_to_zero(self) -> None:
        """An ack without 'code' reads as success."""
        ack: SubscriptionAck = decode_subscription_ack(
            b'{ "op": "sub", "ch":"bbo:symbol" }'
        )
        assert ack.code == 0
        assert ack.ch == "bbo:symbol"

    def test_non_zero_code(self) -> None:
        """Non-zero code is a failure and keeps the reason."""
        ack: SubscriptionAck = decode_subscription_ack(
            b'{"m": "sub", "code": 10000, "reason": "invalid channel"}'
        )
        assert not ack.ok
        assert ack.code == 10000
        assert ack.reason == "invalid channel"

    @pytest.mark.parametrize("raw", [b"", b"{", b'{"code": "abc"}', b"[]"])
    def test_malformed(self, raw: bytes) -> None:
        """Malformed acknowledgments raise DecodeError."""
        with pytest.raises(DecodeError):
            decode_subscription_ack(raw)


# ---------------------------------------------------------------------------
# Order construction
# ---------------------------------------------------------------------------


class TestBuildOrder:
    """Tests for build_order()."""

    @pytest.mark.parametrize(
        ("tokens", "expected"),
        [
            (["9309.11", "0.0197172"], Order(price=9309.11, amount=0.0197172)),
            (["9309", "197172"], Order(price=9309.0, amount=197172.0)),
        ],
    )
    def test_valid(self, tokens: list[str], expected: Order) -> None:
        """Token 0 is price, token 1 is amount."""
        assert build_order(tokens) == expected

    @pytest.mark.parametrize(
        "tokens",
        [
            ["sd", "dd"],
            ["sd"],
            [],
            ["1.0", "2.0", "3.0"],
            ["1.0", ""],
            ["nan", "1.0"],
            ["1.0", "inf"],
        ],
    )
    def test_invalid_raises_parse_error(self, tokens: list[str]) -> None:
        """Wrong arity or non-numeric tokens raise ParseError."""
        with pytest.raises(ParseError):
            build_order(tokens)


class TestBuildBestOrderBook:
    """Tests for build_best_order_book()."""

    def test_valid(self) -> None:
        """Both sides are built."""
        book: BestOrderBook = build_best_order_book(
            ["9309.11", "0.0197172"],
            ["9309.12", "0.8851266"],
        )
        assert book == BestOrderBook(
            bid=Order(price=9309.11, amount=0.0197172),
            ask=Order(price=9309.12, amount=0.8851266),
        )

    def test_bad_bid_raises(self) -> None:
        """A malformed bid fails the whole book."""
        with pytest.raises(ParseError):
            build_best_order_book(["x", "1"], ["1", "1"])

    def test_bad_ask_raises(self) -> None:
        """A malformed ask fails the whole book."""
        with pytest.raises(ParseError):
            build_best_order_book(["1", "1"], ["1"])
