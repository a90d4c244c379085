"""Example: Stream best-bid/offer snapshots from AscendEX.

This script demonstrates the full pipeline:

    WebSocketTransport → BboFeedClient → Dispatcher → consumer poll

with a periodic client-initiated keep-alive ping and a statistics
summary at shutdown.

Prerequisites:
    1. Optionally create a ``.env`` with ``BBO_FEED_URL`` and
       ``BBO_SYMBOL`` (defaults: AscendEX public stream, ``BTC_USDT``).
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_bbo_stream
    python -m examples.example_bbo_stream --symbol ETH_USDT
    python -m examples.example_bbo_stream --keepalive-interval 10 --log-every 50

Press Ctrl+C to stop.
"""

import argparse
import logging
import os
import threading

from dotenv import load_dotenv

from core.dispatcher import Dispatcher, DispatcherConfig
from core.errors import FeedError
from core.events import BestOrderBook
from infra.bbo_client import DEFAULT_FEED_URL, BboFeedClient, FeedClientConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def _keepalive_loop(
    client: BboFeedClient,
    interval: float,
    stop: threading.Event,
) -> None:
    """Send a client ping every ``interval`` seconds until ``stop`` is set."""
    while not stop.wait(timeout=interval):
        client.send_keepalive()


def main() -> None:
    """Run the BBO stream example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Stream best-bid/offer snapshots for one trading pair",
    )
    parser.add_argument(
        "--symbol",
        type=str,
        default=os.environ.get("BBO_SYMBOL", "BTC_USDT"),
        help="Trading pair in TOKEN_ASSET form (default: BTC_USDT)",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("BBO_FEED_URL", DEFAULT_FEED_URL),
        help="Feed endpoint URL",
    )
    parser.add_argument(
        "--keepalive-interval",
        type=float,
        default=15.0,
        help="Seconds between client keep-alive pings (default: 15)",
    )
    parser.add_argument(
        "--queue-maxlen",
        type=int,
        default=10_000,
        help="Dispatcher queue max length (default: 10000)",
    )
    parser.add_argument(
        "--log-every",
        type=int,
        default=1,
        help="Log every Nth snapshot (default: 1 = all)",
    )
    args: argparse.Namespace = parser.parse_args()

    client: BboFeedClient = BboFeedClient(config=FeedClientConfig(url=args.url))
    dispatcher: Dispatcher[BestOrderBook] = Dispatcher(
        config=DispatcherConfig(maxlen=args.queue_maxlen),
    )

    logger.info("Connecting to %s...", args.url)
    try:
        client.connect()
        client.subscribe(args.symbol)
    except FeedError as exc:
        logger.error("Failed to start feed: %s", exc)
        return

    loop_thread: threading.Thread = client.start(dispatcher)
    stop_keepalive: threading.Event = threading.Event()
    threading.Thread(
        target=_keepalive_loop,
        args=(client, args.keepalive_interval, stop_keepalive),
        daemon=True,
        name="bbo-keepalive",
    ).start()
    logger.info("Subscribed to %s, waiting for snapshots...", args.symbol)

    total: int = 0
    try:
        while loop_thread.is_alive() and not dispatcher.closed:
            for book in dispatcher.poll(max_events=100, timeout=0.5):
                total += 1
                if total % args.log_every == 0:
                    logger.info(
                        "[%s] bid=%.8f x %.8f  ask=%.8f x %.8f  spread=%.8f (#%d)",
                        args.symbol,
                        book.bid.price,
                        book.bid.amount,
                        book.ask.price,
                        book.ask.amount,
                        book.spread(),
                        total,
                    )
        logger.warning("Feed ended (dispatcher closed=%s)", dispatcher.closed)
    except KeyboardInterrupt:
        logger.info("Shutting down (received KeyboardInterrupt)...")
    finally:
        stop_keepalive.set()
        client.disconnect()

        client_stats: dict = client.stats()
        dispatcher_stats = dispatcher.stats()
        logger.info("=" * 50)
        logger.info("Final Statistics")
        logger.info("-" * 50)
        logger.info("Snapshots consumed: %d", total)
        logger.info("Messages received: %d", client_stats["messages_received"])
        logger.info("Pings answered: %d", client_stats["pings_answered"])
        logger.info("Parse errors: %d", client_stats["parse_errors"])
        logger.info(
            "Dispatcher: pushed=%d, polled=%d, dropped=%d, discarded=%d",
            dispatcher_stats.total_pushed,
            dispatcher_stats.total_polled,
            dispatcher_stats.total_dropped,
            dispatcher_stats.total_discarded,
        )
        logger.info("=" * 50)


if __name__ == "__main__":
    main()
