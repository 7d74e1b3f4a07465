"""Streaming subscription kinds, stream events and position summaries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from perpdex.types import OrderBook, Trade


class StreamKind(Enum):
    """A websocket feed; the value is the exchange's subscription type."""

    TRADES = "trades"
    BBO = "bbo"
    L2_BOOK = "l2Book"
    ORDERS = "orderUpdates"
    FILLS = "userFills"

    @property
    def subscription_type(self) -> str:
        return self.value

    @property
    def requires_user(self) -> bool:
        """True for account feeds keyed by user address rather than coin."""
        return self in (StreamKind.ORDERS, StreamKind.FILLS)


@dataclass(frozen=True)
class Bbo:
    coin: str
    bid_px: float
    ask_px: float
    timestamp: int


@dataclass(frozen=True)
class OrderEvent:
    coin: str
    side: str
    limit_px: str
    sz: str
    oid: int
    status: str
    timestamp: int
    order_timestamp: int


@dataclass(frozen=True)
class FillEvent:
    coin: str
    side: str
    px: str
    sz: str
    oid: int
    tid: int
    time: int
    fee: str
    hash: str
    user: str


@dataclass(frozen=True)
class Position:
    coin: str
    size: float
    entry_px: float | None
    unrealized_pnl: float


StreamEvent = Union[Trade, Bbo, OrderBook, OrderEvent, FillEvent]