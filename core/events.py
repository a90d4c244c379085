"""Order-book value types delivered to feed consumers.

This module defines the immutable snapshot types that the codec builds
and the consumer receives from the dispatcher. All models are
Pydantic-based with ``frozen=True`` so a snapshot can be handed across
threads without copying.

Float precision contract:
    Prices and amounts are parsed from the exchange's decimal strings
    into IEEE 754 ``float``. Downstream code comparing prices should use
    a tolerance (e.g., ``abs(a - b) < 1e-9``), not exact equality.

Example:
    >>> from core.events import BestOrderBook, Order
    >>> book = BestOrderBook(
    ...     bid=Order(price=9309.11, amount=0.0197172),
    ...     ask=Order(price=9309.12, amount=0.8851266),
    ... )
    >>> round(book.spread(), 2)
    0.01
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Event Models
# ---------------------------------------------------------------------------


class Order(BaseModel):
    """One side of the top of book: a price and the quantity resting there.

    Build instances from wire tokens with
    :func:`infra.bbo_codec.build_order`; direct construction is meant for
    tests and callers that already hold numeric values.

    Attributes:
        price: Price level. Must be finite.
        amount: Quantity available at ``price``. Must be finite.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    price: float = Field(description="Price level")
    amount: float = Field(description="Quantity available at the price level")

    @field_validator("price", "amount")
    @classmethod
    def _require_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"value must be finite, got {v!r}")
        return v


class BestOrderBook(BaseModel):
    """Best-bid/best-ask snapshot from one BBO update.

    Produced fresh for each update; carries no link to earlier
    snapshots.

    Attributes:
        bid: Best bid (highest buy price and its quantity).
        ask: Best ask (lowest sell price and its quantity).

    Example:
        >>> book = BestOrderBook(
        ...     bid=Order(price=100.0, amount=1.0),
        ...     ask=Order(price=100.5, amount=2.0),
        ... )
        >>> book.mid_price()
        100.25
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    bid: Order = Field(description="Best bid")
    ask: Order = Field(description="Best ask")

    def spread(self) -> float:
        """Return ``ask.price - bid.price``."""
        return self.ask.price - self.bid.price

    def mid_price(self) -> float:
        """Return the midpoint between best bid and best ask."""
        return (self.ask.price + self.bid.price) / 2.0
