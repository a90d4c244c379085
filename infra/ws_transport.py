"""Duplex message transport for the BBO feed over WebSocket+TLS.

This module defines the :class:`Transport` contract the feed client is
written against, and :class:`WebSocketTransport`, its implementation on
top of the synchronous ``websockets`` client
(``websockets.sync.client``).

Architecture note:
    The transport is synchronous and thread-based, matching the client:
    one dedicated dispatch thread blocks in :meth:`read_message`, while
    caller threads may write (keep-alive pings) or close concurrently.
    Closing the socket from another thread is how a blocked read is
    unblocked; it then raises :class:`ConnectionClosedError`.

Lifecycle:
    ``DISCONNECTED → CONNECTING → CONNECTED → CLOSED``, strictly
    monotonic except that a failed dial returns to DISCONNECTED. A
    transport is never reopened; the client creates exactly one per
    session. Any operation before ``connect()`` or after ``close()``
    raises :class:`ConnectionClosedError`.

Write serialisation:
    Pong replies (dispatch thread) and keep-alive pings (caller thread)
    share the socket. :meth:`write_message` holds ``_write_lock`` so
    two frames are never interleaved.

Error translation:
    - Dial failure (DNS, TCP, TLS, HTTP upgrade) → ``ServerConnectError``
    - Closed locally or never opened → ``ConnectionClosedError``
    - Closed by the peer (cleanly or not) or socket failure →
      ``TransportError``

No retry happens here; every failure is surfaced unchanged in kind.
"""

import logging
import threading
from enum import Enum, IntEnum
from typing import Protocol

from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)
from websockets.sync.client import ClientConnection, connect

from core.errors import ConnectionClosedError, ServerConnectError, TransportError

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MessageType(IntEnum):
    """WebSocket data frame opcodes accepted by :meth:`Transport.write_message`."""

    TEXT = 1
    BINARY = 2


class TransportState(str, Enum):
    """Connection lifecycle of a :class:`WebSocketTransport`.

    States:
        DISCONNECTED: Created, ``connect()`` not yet successful.
        CONNECTING: Dial in progress.
        CONNECTED: Socket open.
        CLOSED: ``close()`` called — terminal state.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class Transport(Protocol):
    """Abstract duplex byte-message channel used by the feed client."""

    def connect(self, url: str) -> None:
        """Open the channel. Raises ``ServerConnectError`` on failure."""
        ...

    def read_message(self) -> bytes:
        """Block until one whole message arrives and return its payload."""
        ...

    def write_message(self, message_type: MessageType, data: bytes) -> None:
        """Send one message as a single frame."""
        ...

    def close(self) -> None:
        """Close the channel. Raises ``ConnectionClosedError`` if not open."""
        ...


# ---------------------------------------------------------------------------
# WebSocket implementation
# ---------------------------------------------------------------------------


class WebSocketTransport:
    """:class:`Transport` over ``websockets.sync.client.connect``.

    Args:
        open_timeout: Seconds allowed for TCP+TLS+upgrade handshake.
        close_timeout: Seconds to wait for the closing handshake.

    Example::

        transport = WebSocketTransport()
        transport.connect("wss://ascendex.com/0/api/pro/v1/stream")
        first: bytes = transport.read_message()
        transport.write_message(MessageType.TEXT, b'{"op": "ping"}')
        transport.close()
    """

    def __init__(self, open_timeout: float = 10.0, close_timeout: float = 5.0) -> None:
        self._open_timeout: float = open_timeout
        self._close_timeout: float = close_timeout

        self._conn: ClientConnection | None = None
        self._state: TransportState = TransportState.DISCONNECTED
        self._state_lock: threading.Lock = threading.Lock()
        self._write_lock: threading.Lock = threading.Lock()

    @property
    def state(self) -> TransportState:
        """Current lifecycle state."""
        with self._state_lock:
            return self._state

    def connect(self, url: str) -> None:
        """Dial ``url`` and complete the WebSocket upgrade.

        Args:
            url: Feed endpoint (``ws://`` or ``wss://``).

        Raises:
            ConnectionClosedError: If the transport was already used.
            ServerConnectError: If the endpoint cannot be reached or
                rejects the upgrade.
        """
        with self._state_lock:
            if self._state != TransportState.DISCONNECTED:
                raise ConnectionClosedError(
                    f"Cannot connect: transport is {self._state.value}"
                )
            self._state = TransportState.CONNECTING

        try:
            conn: ClientConnection = connect(
                url,
                open_timeout=self._open_timeout,
                close_timeout=self._close_timeout,
            )
        except (OSError, WebSocketException) as exc:
            with self._state_lock:
                self._state = TransportState.DISCONNECTED
            raise ServerConnectError(f"error connecting to server: {exc}") from exc

        with self._state_lock:
            self._conn = conn
            self._state = TransportState.CONNECTED
        logger.info("WebSocket connected to %s", url)

    def read_message(self) -> bytes:
        """Block until the next message arrives.

        Text frames are returned UTF-8 encoded so callers always see
        ``bytes``.

        Raises:
            ConnectionClosedError: Not connected or closed locally.
            TransportError: Closed by the peer, or socket failure.
        """
        conn: ClientConnection = self._require_open()
        try:
            message: str | bytes = conn.recv()
        except ConnectionClosedOK as exc:
            if self.state == TransportState.CLOSED:
                raise ConnectionClosedError(f"connection closed: {exc}") from exc
            raise TransportError(f"connection closed by server: {exc}") from exc
        except ConnectionClosed as exc:
            if self.state == TransportState.CLOSED:
                raise ConnectionClosedError(f"connection closed: {exc}") from exc
            raise TransportError(f"connection lost: {exc}") from exc
        except (OSError, WebSocketException) as exc:
            if self.state == TransportState.CLOSED:
                raise ConnectionClosedError(f"connection closed: {exc}") from exc
            raise TransportError(f"read failed: {exc}") from exc

        if isinstance(message, str):
            return message.encode("utf-8")
        return message

    def write_message(self, message_type: MessageType, data: bytes) -> None:
        """Send ``data`` as one text or binary frame.

        Args:
            message_type: :attr:`MessageType.TEXT` sends ``data`` decoded
                as UTF-8 text; :attr:`MessageType.BINARY` sends it as-is.
            data: Payload.

        Raises:
            ConnectionClosedError: Not connected or closed locally.
            TransportError: Closed by the peer, or send failed.
        """
        conn: ClientConnection = self._require_open()
        payload: str | bytes = (
            data.decode("utf-8") if message_type == MessageType.TEXT else data
        )
        with self._write_lock:
            try:
                conn.send(payload)
            except ConnectionClosed as exc:
                if self.state == TransportState.CLOSED:
                    raise ConnectionClosedError(f"connection closed: {exc}") from exc
                raise TransportError(f"connection lost: {exc}") from exc
            except (OSError, WebSocketException) as exc:
                raise TransportError(f"write failed: {exc}") from exc

    def close(self) -> None:
        """Close the socket. Terminal.

        Raises:
            ConnectionClosedError: If never connected or already closed.
        """
        with self._state_lock:
            if self._state != TransportState.CONNECTED or self._conn is None:
                raise ConnectionClosedError("client is not connected")
            conn: ClientConnection = self._conn
            self._state = TransportState.CLOSED

        try:
            conn.close()
        except (OSError, WebSocketException):
            logger.debug("Exception during WebSocket close", exc_info=True)
        logger.info("WebSocket closed")

    def _require_open(self) -> ClientConnection:
        with self._state_lock:
            if self._state != TransportState.CONNECTED or self._conn is None:
                raise ConnectionClosedError("client is not connected")
            return self._conn
