"""Bounded, closable delivery queue between the dispatch loop and the consumer.

This module provides the ``Dispatcher`` — a bounded event queue backed
by ``collections.deque(maxlen)`` and guarded by a single
``threading.Condition``. The feed client's dispatch thread pushes each
decoded :class:`~core.events.BestOrderBook` without ever blocking, and
the consumer thread polls snapshots in batches, optionally waiting for
the next one.

Delivery model:
    One queue, one producer (the dispatch loop), any number of readers.
    ``push()`` is non-blocking, so a slow or absent consumer cannot
    stall the read loop. Snapshots reach the consumer in arrival order.

Backpressure policy:
    Drop-oldest. When the queue is full, ``deque.append()`` evicts the
    oldest item. A stale top-of-book is worthless once a newer one has
    arrived. Drops are counted via a pre-append length check.

Shutdown semantics:
    ``close()`` is one-shot. It discards every queued snapshot the
    consumer has not taken yet, wakes any reader blocked in
    ``poll(timeout=...)``, and makes every later ``push()`` a counted
    no-op ("abandoned"). Nothing is delivered after close, and nothing
    blocks on close. The consumer detects shutdown via :attr:`closed`.

Counter contract:
    All counters are mutated under ``_cond``, so every ``stats()``
    snapshot satisfies
    ``total_pushed - total_dropped - total_polled - total_discarded
    == queue_len``.

Example:
    >>> from core.dispatcher import Dispatcher, DispatcherConfig
    >>> dispatcher = Dispatcher(config=DispatcherConfig(maxlen=1000))
    >>> dispatcher.push("book_1")
    True
    >>> dispatcher.push("book_2")
    True
    >>> dispatcher.poll(max_events=10)
    ['book_1', 'book_2']
    >>> dispatcher.close()
    >>> dispatcher.push("book_3")
    False
    >>> dispatcher.stats().total_abandoned
    1
"""

import collections
import logging
import threading
import time
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Generic event type
# ---------------------------------------------------------------------------

T = TypeVar("T")
"""Type variable for events stored in the dispatcher.

Allows type-safe usage:
    ``Dispatcher[BestOrderBook]`` ensures push/poll types are consistent.
"""

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class DispatcherConfig(BaseModel):
    """Configuration for :class:`Dispatcher`.

    Attributes:
        maxlen: Maximum number of snapshots the queue can hold. When the
            queue is full, ``push()`` evicts the oldest snapshot
            (drop-oldest policy). Must be greater than zero.

    Example:
        >>> DispatcherConfig(maxlen=50_000).maxlen
        50000
    """

    maxlen: int = Field(
        default=100_000,
        gt=0,
        description=(
            "Maximum queue length. Oldest snapshots are dropped when exceeded."
        ),
    )


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class DispatcherStats(BaseModel):
    """Immutable snapshot of dispatcher statistics.

    Returned by :meth:`Dispatcher.stats`.

    Attributes:
        total_pushed: Snapshots accepted into the queue, including those
            that caused an older snapshot to be dropped.
        total_polled: Snapshots handed to the consumer via ``poll()``.
        total_dropped: Snapshots evicted by overflow.
        total_discarded: Snapshots still queued when ``close()`` ran.
        total_abandoned: Pushes attempted after ``close()``.
        queue_len: Current number of queued snapshots.
        maxlen: Configured maximum queue length.
        closed: Whether ``close()`` has been called.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_pushed: int = Field(ge=0, description="Snapshots accepted.")
    total_polled: int = Field(ge=0, description="Snapshots consumed via poll().")
    total_dropped: int = Field(ge=0, description="Snapshots evicted on overflow.")
    total_discarded: int = Field(
        ge=0,
        description="Snapshots discarded by close() before being consumed.",
    )
    total_abandoned: int = Field(ge=0, description="Pushes rejected after close().")
    queue_len: int = Field(ge=0, description="Current snapshots in queue.")
    maxlen: int = Field(gt=0, description="Configured maximum queue length.")
    closed: bool = Field(description="Whether the dispatcher is closed.")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher(Generic[T]):
    """Bounded, closable event queue decoupling the feed from its consumer.

    Thread safety:
        Every method may be called from any thread. ``push()`` never
        waits; ``poll()`` waits only when given a ``timeout``.

    Args:
        config: Dispatcher configuration. Defaults to
            ``DispatcherConfig()`` with ``maxlen=100_000``.

    Example:
        >>> dispatcher: Dispatcher[BestOrderBook] = Dispatcher(
        ...     config=DispatcherConfig(maxlen=1_000),
        ... )
        >>> while not dispatcher.closed:
        ...     for book in dispatcher.poll(max_events=100, timeout=0.5):
        ...         process(book)
    """

    def __init__(self, config: DispatcherConfig | None = None) -> None:
        self._config: DispatcherConfig = config or DispatcherConfig()
        self._maxlen: int = self._config.maxlen
        self._queue: collections.deque[T] = collections.deque(
            maxlen=self._maxlen,
        )
        self._cond: threading.Condition = threading.Condition()
        self._closed: bool = False

        self._total_pushed: int = 0
        self._total_polled: int = 0
        self._total_dropped: int = 0
        self._total_discarded: int = 0
        self._total_abandoned: int = 0

        logger.info("Dispatcher created with maxlen=%d", self._maxlen)

    # ------------------------------------------------------------------
    # Producer Path (dispatch thread)
    # ------------------------------------------------------------------

    def push(self, event: T) -> bool:
        """Append a snapshot, or abandon it if the dispatcher is closed.

        Never blocks on the consumer. When the queue is full the oldest
        snapshot is evicted and counted in ``total_dropped``.

        Args:
            event: Snapshot to deliver.

        Returns:
            ``True`` if queued, ``False`` if abandoned because the
            dispatcher is closed.
        """
        with self._cond:
            if self._closed:
                self._total_abandoned += 1
                return False
            if len(self._queue) == self._maxlen:
                self._total_dropped += 1
                if self._total_dropped == 1:
                    logger.warning(
                        "Dispatcher queue full (maxlen=%d), dropping oldest",
                        self._maxlen,
                    )
            self._queue.append(event)
            self._total_pushed += 1
            self._cond.notify()
            return True

    # ------------------------------------------------------------------
    # Consumer Path
    # ------------------------------------------------------------------

    def poll(self, max_events: int = 100, timeout: float | None = None) -> list[T]:
        """Consume up to ``max_events`` snapshots.

        With ``timeout=None`` (default) returns immediately with whatever
        is queued. With a timeout, waits up to ``timeout`` seconds for at
        least one snapshot, returning early (empty) if the dispatcher is
        closed meanwhile.

        Args:
            max_events: Maximum number of snapshots to return. Must be
                greater than zero.
            timeout: Seconds to wait when the queue is empty.

        Returns:
            Snapshots in FIFO order. Empty when nothing arrived in time
            or the dispatcher is closed.

        Raises:
            ValueError: If ``max_events`` is not greater than zero.
        """
        if max_events <= 0:
            raise ValueError(f"max_events must be > 0, got {max_events}")

        with self._cond:
            if timeout is not None and timeout > 0:
                deadline: float = time.monotonic() + timeout
                while not self._queue and not self._closed:
                    remaining: float = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(timeout=remaining)

            events: list[T] = []
            for _ in range(max_events):
                if not self._queue:
                    break
                events.append(self._queue.popleft())
            self._total_polled += len(events)
            return events

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        with self._cond:
            return self._closed

    def close(self) -> None:
        """Close the dispatcher. Idempotent.

        Discards any snapshots the consumer has not taken, rejects all
        further pushes, and wakes every waiting reader.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            discarded: int = len(self._queue)
            self._total_discarded += discarded
            self._queue.clear()
            self._cond.notify_all()

        if discarded > 0:
            logger.info("Dispatcher closed, discarded %d pending snapshots", discarded)
        else:
            logger.info("Dispatcher closed")

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> DispatcherStats:
        """Return a consistent snapshot of dispatcher statistics."""
        with self._cond:
            return DispatcherStats(
                total_pushed=self._total_pushed,
                total_polled=self._total_polled,
                total_dropped=self._total_dropped,
                total_discarded=self._total_discarded,
                total_abandoned=self._total_abandoned,
                queue_len=len(self._queue),
                maxlen=self._maxlen,
                closed=self._closed,
            )
