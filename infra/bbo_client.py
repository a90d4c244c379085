"""Streaming best-bid/offer client for the AscendEX public WebSocket feed.

This module drives the whole session for one trading pair: connect,
consume the server's handshake confirmation, subscribe to the pair's
``bbo:`` channel, then run a blocking read/decode/route loop that
answers server pings and pushes each :class:`~core.events.BestOrderBook`
into a :class:`~core.dispatcher.Dispatcher` for the consumer.

Architecture note:
    Threads, not asyncio, as in the transport. The dispatch
    loop owns the read side of the transport and runs on one dedicated
    thread (:meth:`BboFeedClient.start`, or the caller's own thread via
    :meth:`BboFeedClient.read_messages`). ``send_keepalive()``,
    ``disconnect()``, and ``stats()`` may be called from any other
    thread.

State transitions::

    IDLE --connect()--> CONNECTED --subscribe()--> SUBSCRIBED
         --read_messages()--> DISPATCHING
    any state --disconnect()--> CLOSED (terminal)

Shutdown sequence (``disconnect()``):
    1. Set the one-shot shutdown event.
    2. Close the attached dispatcher, so no snapshot is delivered after
       shutdown and blocked consumers wake.
    3. Wait ``grace_period`` seconds.
    4. Close the transport, which unblocks a pending read with
       ``ConnectionClosedError``; the loop then exits quietly.

The loop is never force-interrupted: it observes shutdown only when its
blocking read returns or fails.

No reconnection:
    A failed session ends in CLOSED. Callers wanting a new session
    construct a new client.
"""

import logging
import threading
import time
from enum import Enum

from pydantic import BaseModel, Field

from core.dispatcher import Dispatcher
from core.errors import (
    ConnectionClosedError,
    DecodeError,
    FeedError,
    ParseError,
    ServerConnectError,
    SubscriptionError,
)
from core.events import BestOrderBook
from infra.bbo_codec import (
    BboUpdate,
    IncomingMessage,
    KeepAliveOp,
    MessageKind,
    SubscriptionAck,
    build_best_order_book,
    channel_name,
    decode_message,
    decode_subscription_ack,
    encode_op,
    encode_subscribe,
)
from infra.ws_transport import MessageType, Transport, WebSocketTransport

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate-limited logging thresholds
# ---------------------------------------------------------------------------

_LOG_FIRST_N: int = 10
"""Log full stack trace for the first N parse errors."""

_LOG_EVERY_N: int = 1000
"""After the first N parse errors, log every Nth occurrence."""

DEFAULT_FEED_URL: str = "wss://ascendex.com/0/api/pro/v1/stream"
"""AscendEX public stream endpoint."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ClientState(str, Enum):
    """Session state machine for :class:`BboFeedClient`.

    States:
        IDLE: Created, ``connect()`` not yet successful.
        CONNECTED: Socket open and handshake confirmation consumed.
        SUBSCRIBED: Subscription acknowledged with code 0.
        DISPATCHING: Read loop running.
        CLOSED: ``disconnect()`` called — terminal state.
    """

    IDLE = "IDLE"
    CONNECTED = "CONNECTED"
    SUBSCRIBED = "SUBSCRIBED"
    DISPATCHING = "DISPATCHING"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class FeedClientConfig(BaseModel):
    """Configuration for :class:`BboFeedClient`.

    Attributes:
        url: Feed endpoint, fixed for the life of the client.
        grace_period: Seconds ``disconnect()`` waits between firing the
            shutdown signal and closing the transport.
        open_timeout: Seconds allowed for the WebSocket opening handshake.
        close_timeout: Seconds allowed for the WebSocket closing handshake.

    Example:
        >>> FeedClientConfig().grace_period
        1.0
    """

    url: str = Field(
        default=DEFAULT_FEED_URL,
        min_length=1,
        description="Feed endpoint (scheme + host + path)",
    )
    grace_period: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay between shutdown signal and transport close",
    )
    open_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="WebSocket opening handshake timeout in seconds",
    )
    close_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="WebSocket closing handshake timeout in seconds",
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class BboFeedClient:
    """Best-bid/offer feed client for one trading pair.

    Args:
        config: Client configuration.
        transport: Transport to drive. Defaults to a fresh
            :class:`WebSocketTransport` built from ``config`` timeouts.
            Exclusively owned by the client from here on.

    Example::

        client = BboFeedClient(config=FeedClientConfig())
        client.connect()
        client.subscribe("BTC_USDT")

        books: Dispatcher[BestOrderBook] = Dispatcher()
        client.start(books)
        ...
        for book in books.poll(max_events=100, timeout=1.0):
            print(book.bid.price, book.ask.price)
        ...
        client.disconnect()
    """

    def __init__(
        self,
        config: FeedClientConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config: FeedClientConfig = config or FeedClientConfig()
        if transport is None:
            transport = WebSocketTransport(
                open_timeout=self._config.open_timeout,
                close_timeout=self._config.close_timeout,
            )
        self._transport: Transport = transport

        self._symbol: str | None = None
        self._dispatcher: Dispatcher[BestOrderBook] | None = None

        # State machine
        self._state: ClientState = ClientState.IDLE
        self._state_lock: threading.Lock = threading.Lock()
        self._shutdown_event: threading.Event = threading.Event()

        # Counters (guarded by _counter_lock)
        self._messages_received: int = 0
        self._books_delivered: int = 0
        self._pings_answered: int = 0
        self._parse_errors: int = 0
        self._keepalive_errors: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ClientState:
        """Current session state."""
        with self._state_lock:
            return self._state

    @property
    def shutdown_requested(self) -> bool:
        """Whether ``disconnect()`` has fired the shutdown signal."""
        return self._shutdown_event.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the transport and consume the handshake confirmation.

        Exactly one message is read after the socket opens; its content
        is not inspected.

        Raises:
            RuntimeError: If the client is not IDLE.
            ServerConnectError: If the socket cannot be opened or the
                handshake read fails. State stays IDLE.
        """
        self._require_state(ClientState.IDLE, "connect")

        try:
            self._transport.connect(self._config.url)
        except ServerConnectError:
            raise
        except FeedError as exc:
            raise ServerConnectError(f"error connecting to server: {exc}") from exc

        try:
            self._transport.read_message()
        except FeedError as exc:
            self._close_transport()
            raise ServerConnectError(
                f"failed to read handshake confirmation: {exc}"
            ) from exc

        with self._state_lock:
            self._state = ClientState.CONNECTED
        logger.info("Connected to %s", self._config.url)

    def subscribe(self, symbol: str) -> None:
        """Subscribe to BBO updates for ``symbol`` and await the acknowledgment.

        Args:
            symbol: Pair in ``TOKEN_ASSET`` form, e.g. ``"BTC_USDT"``.

        Raises:
            RuntimeError: If the client is not CONNECTED.
            SubscriptionError: The write or read failed, the
                acknowledgment was malformed, or its code was non-zero.
                The client is disconnected before this is raised.
        """
        self._require_state(ClientState.CONNECTED, "subscribe")
        channel: str = channel_name(symbol)

        try:
            self._transport.write_message(MessageType.TEXT, encode_subscribe(channel))
            raw: bytes = self._transport.read_message()
            ack: SubscriptionAck = decode_subscription_ack(raw)
        except FeedError as exc:
            self.disconnect()
            raise SubscriptionError(code=-1, reason=exc.message) from exc

        if not ack.ok:
            self.disconnect()
            raise SubscriptionError(code=ack.code, reason=ack.reason or "")

        self._symbol = symbol
        with self._state_lock:
            self._state = ClientState.SUBSCRIBED
        logger.info("Subscribed to %s", channel)

    def disconnect(self) -> None:
        """Shut the session down. Safe to call from any thread; later calls no-op.

        Fires the shutdown signal, closes the attached dispatcher, waits
        ``grace_period`` seconds, then closes the transport regardless
        of its state. A ``ConnectionClosedError`` from the transport is
        expected here and ignored.
        """
        with self._state_lock:
            if self._state == ClientState.CLOSED:
                return
            self._state = ClientState.CLOSED

        logger.info("Disconnecting (grace_period=%.2fs)", self._config.grace_period)
        self._shutdown_event.set()

        dispatcher: Dispatcher[BestOrderBook] | None = self._dispatcher
        if dispatcher is not None:
            dispatcher.close()

        if self._config.grace_period > 0:
            time.sleep(self._config.grace_period)

        self._close_transport()

        with self._counter_lock:
            msgs: int = self._messages_received
            books: int = self._books_delivered
            errs: int = self._parse_errors

        logger.info(
            "Disconnected (messages=%d, books=%d, parse_errors=%d)",
            msgs,
            books,
            errs,
        )

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def start(self, dispatcher: Dispatcher[BestOrderBook]) -> threading.Thread:
        """Run :meth:`read_messages` on a daemon thread.

        Args:
            dispatcher: Queue the consumer reads snapshots from.

        Returns:
            The started thread (``name="bbo-dispatch"``).
        """
        self._require_state(ClientState.SUBSCRIBED, "start dispatching")
        thread: threading.Thread = threading.Thread(
            target=self.read_messages,
            args=(dispatcher,),
            daemon=True,
            name="bbo-dispatch",
        )
        thread.start()
        return thread

    def read_messages(self, dispatcher: Dispatcher[BestOrderBook]) -> None:
        """Read, decode, and route messages until the session ends.

        Blocks the calling thread. Returns when:

        - the transport reports the connection closed (normal after
          ``disconnect()``),
        - the server closes the connection or the transport fails (the
          client is disconnected first), or
        - a message cannot be decoded.

        Termination is only logged; the consumer observes it through
        ``dispatcher.closed``.

        Args:
            dispatcher: Queue each decoded snapshot is pushed into.
                Closed by ``disconnect()``.

        Raises:
            RuntimeError: If the client is neither SUBSCRIBED nor CLOSED.
                A closed client closes ``dispatcher`` and returns.
        """
        with self._state_lock:
            if self._state == ClientState.CLOSED:
                dispatcher.close()
                return
            if self._state != ClientState.SUBSCRIBED:
                raise RuntimeError(
                    f"Cannot read messages: client is in {self._state.value} state"
                )
            self._dispatcher = dispatcher
            self._state = ClientState.DISPATCHING
        logger.info("Dispatch loop started (symbol=%s)", self._symbol)

        while True:
            try:
                raw: bytes = self._transport.read_message()
            except ConnectionClosedError as exc:
                logger.info("Dispatch loop stopped: %s", exc)
                return
            except FeedError as exc:
                if self._shutdown_event.is_set():
                    logger.info("Dispatch loop stopped during shutdown: %s", exc)
                    return
                logger.error("Error reading message from server: %s", exc)
                self.disconnect()
                return

            with self._counter_lock:
                self._messages_received += 1

            try:
                message: IncomingMessage = decode_message(raw)
            except DecodeError:
                logger.exception("Error decoding message, dispatch loop stopped")
                return

            if message.kind == MessageKind.PING:
                if self._send_op("pong"):
                    with self._counter_lock:
                        self._pings_answered += 1
            elif isinstance(message, BboUpdate):
                self._on_bbo(message, dispatcher)

    def _on_bbo(self, message: BboUpdate, dispatcher: Dispatcher[BestOrderBook]) -> None:
        try:
            book: BestOrderBook = build_best_order_book(
                message.data.bid,
                message.data.ask,
            )
        except ParseError:
            with self._counter_lock:
                self._parse_errors += 1
            self._log_parse_error(symbol=message.symbol)
            return

        if dispatcher.push(book):
            with self._counter_lock:
                self._books_delivered += 1

    # ------------------------------------------------------------------
    # Keep-alive
    # ------------------------------------------------------------------

    def send_keepalive(self) -> None:
        """Send a client-initiated ``{"op": "ping"}``. Never raises.

        The client does not schedule this itself; call it periodically
        from the caller's own timer.
        """
        self._send_op("ping")

    def _send_op(self, op: KeepAliveOp) -> bool:
        try:
            self._transport.write_message(MessageType.TEXT, encode_op(op))
        except FeedError as exc:
            with self._counter_lock:
                self._keepalive_errors += 1
            logger.warning("Error sending keep-alive %s: %s", op, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, str | int | bool | None]:
        """Return client statistics.

        Returns:
            Dictionary with session state, subscribed symbol, and counters.
        """
        with self._state_lock:
            current_state: str = self._state.value
        with self._counter_lock:
            return {
                "state": current_state,
                "symbol": self._symbol,
                "shutdown_requested": self._shutdown_event.is_set(),
                "messages_received": self._messages_received,
                "books_delivered": self._books_delivered,
                "pings_answered": self._pings_answered,
                "parse_errors": self._parse_errors,
                "keepalive_errors": self._keepalive_errors,
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _close_transport(self) -> None:
        try:
            self._transport.close()
        except ConnectionClosedError:
            logger.debug("Transport already closed", exc_info=True)
        except FeedError:
            logger.warning("Error closing transport", exc_info=True)

    def _require_state(self, expected: ClientState, action: str) -> None:
        with self._state_lock:
            if self._state != expected:
                raise RuntimeError(
                    f"Cannot {action}: client is in {self._state.value} state"
                )

    def _log_parse_error(self, symbol: str) -> None:
        """Log a dropped update, rate-limited.

        First ``_LOG_FIRST_N`` errors: full stack trace. Afterwards every
        ``_LOG_EVERY_N``-th occurrence at ERROR level.
        """
        with self._counter_lock:
            count: int = self._parse_errors
        if count <= _LOG_FIRST_N:
            logger.exception(
                "Failed to build order book for %s, update dropped (%d/%d)",
                symbol,
                count,
                _LOG_FIRST_N,
            )
        elif count % _LOG_EVERY_N == 0:
            logger.error(
                "Order book parse errors ongoing: %d total (symbol=%s)",
                count,
                symbol,
            )
