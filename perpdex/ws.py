"""Websocket streaming: subscription messages, event decoding and a reconnecting feed."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Protocol

import websockets

from perpdex.errors import DexError, ParseError
from perpdex.events import Bbo, FillEvent, OrderEvent, StreamEvent, StreamKind
from perpdex.types import OrderBook, OrderBookLevel, Side, Trade, price, qty

MAINNET_WS_URL = "wss://api.hyperliquid.xyz/ws"
TESTNET_WS_URL = "wss://api.hyperliquid-testnet.xyz/ws"

MAX_RETRIES = 10
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30000

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


# --------------------------------------------------------------------------
# Subscription and reconnection policy
# --------------------------------------------------------------------------


def subscription_message(
    kind: StreamKind, coin: str | None = None, address_hex: str | None = None
) -> dict[str, Any]:
    """Build the ``subscribe`` request for ``kind``; raise DexError if a key is missing."""
    if kind.requires_user:
        if address_hex is None:
            label = "orders" if kind is StreamKind.ORDERS else "fills"
            raise DexError(f"address required for {label}")
        subscription = {"type": kind.subscription_type, "user": address_hex}
    else:
        if coin is None:
            label = {StreamKind.BBO: "BBO", StreamKind.TRADES: "trades"}.get(kind, "l2Book")
            raise DexError(f"coin required for {label}")
        subscription = {"type": kind.subscription_type, "coin": coin}
    return {"method": "subscribe", "subscription": subscription}


def backoff_delay(retry_count: int) -> int:
    """Milliseconds to wait before reconnecting: capped exponential backoff plus jitter."""
    delay = min(BASE_DELAY_MS * 2 ** max(retry_count - 1, 0), MAX_DELAY_MS)
    jitter = (retry_count * 137) % (delay // 4 + 1)
    return delay + jitter


# --------------------------------------------------------------------------
# Shape checking of incoming records
# --------------------------------------------------------------------------


class _Mismatch(Exception):
    """The data does not have the shape of the expected record."""


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise _Mismatch
    return value


def _uint(maximum: int) -> Callable[[Any], int]:
    def check(value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
            raise _Mismatch
        return value

    return check


def _sequence(item: Callable[[Any], Any]) -> Callable[[Any], list[Any]]:
    def check(value: Any) -> list[Any]:
        if not isinstance(value, list):
            raise _Mismatch
        return [item(v) for v in value]

    return check


def _record(spec: dict[str, Callable[[Any], Any]]) -> Callable[[Any], dict[str, Any]]:
    def check(value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise _Mismatch
        try:
            return {key: conv(value[key]) for key, conv in spec.items()}
        except KeyError:
            raise _Mismatch from None

    return check


_u32 = _uint(_U32_MAX)
_u64 = _uint(_U64_MAX)

_BBO = _record({"coin": _string, "time": _u64, "bestBid": _string, "bestAsk": _string})
_TRADES = _sequence(
    _record(
        {
            "coin": _string,
            "side": _string,
            "px": _string,
            "sz": _string,
            "time": _u64,
            "hash": _string,
            "tid": _u64,
        }
    )
)
_LEVELS = _sequence(_record({"px": _string, "sz": _string, "n": _u32}))


def _book_levels(value: Any) -> list[list[dict[str, Any]]]:
    sides = _sequence(_LEVELS)(value)
    if len(sides) != 2:
        raise _Mismatch
    return sides


_L2 = _record({"coin": _string, "time": _u64, "levels": _book_levels})
_ORDERS = _sequence(
    _record(
        {
            "order": _record(
                {
                    "coin": _string,
                    "side": _string,
                    "limitPx": _string,
                    "sz": _string,
                    "oid": _u64,
                    "timestamp": _u64,
                }
            ),
            "status": _string,
            "statusTimestamp": _u64,
        }
    )
)
_FILLS = _record(
    {
        "user": _string,
        "fills": _sequence(
            _record(
                {
                    "coin": _string,
                    "px": _string,
                    "sz": _string,
                    "side": _string,
                    "time": _u64,
                    "hash": _string,
                    "oid": _u64,
                    "tid": _u64,
                    "fee": _string,
                }
            )
        ),
    }
)


def _decoded(val: Any, shape: Callable[[Any], Any]) -> Any:
    """The ``data`` member of ``val`` in the given shape, or None if absent or mismatched."""
    if not isinstance(val, dict) or "data" not in val:
        return None
    try:
        return shape(val["data"])
    except _Mismatch:
        return None


def _parse_f64(text: str, message: str) -> float:
    if text != text.strip() or "_" in text:
        raise ParseError(message)
    try:
        return float(text)
    except ValueError:
        raise ParseError(message) from None


# --------------------------------------------------------------------------
# Event parsers
# --------------------------------------------------------------------------


def parse_bbo(val: Any) -> Bbo | None:
    """Decode a best-bid/offer message."""
    bbo = _decoded(val, _BBO)
    if bbo is None:
        return None
    return Bbo(
        coin=bbo["coin"],
        bid_px=_parse_f64(bbo["bestBid"], "Invalid bid price"),
        ask_px=_parse_f64(bbo["bestAsk"], "Invalid ask price"),
        timestamp=bbo["time"],
    )


def parse_trades(val: Any) -> Trade | None:
    """Decode the first trade of a trades message."""
    trades = _decoded(val, _TRADES)
    if not trades:
        return None
    first = trades[0]
    return Trade(
        id=first["hash"],
        ts=first["time"],
        side=Side.BUY if first["side"] == "B" else Side.SELL,
        price=price(_parse_f64(first["px"], "Invalid trade price")),
        qty=qty(_parse_f64(first["sz"], "Invalid trade size")),
        coin=first["coin"],
        tid=first["tid"],
    )


def _levels(raw: list[dict[str, Any]], label: str) -> list[OrderBookLevel]:
    return [
        OrderBookLevel(
            price=price(_parse_f64(level["px"], f"Invalid L2 {label} price")),
            qty=qty(_parse_f64(level["sz"], f"Invalid L2 {label} quantity")),
            n=level["n"],
        )
        for level in raw
    ]


def parse_l2_book(val: Any) -> OrderBook | None:
    """Decode a level-2 order book message."""
    book = _decoded(val, _L2)
    if book is None:
        return None
    raw_bids, raw_asks = book["levels"]
    bids = _levels(raw_bids, "bid")
    asks = _levels(raw_asks, "ask")
    return OrderBook(coin=book["coin"], ts=book["time"], bids=bids, asks=asks)


def parse_orders(val: Any) -> OrderEvent | None:
    """Decode the first update of an order-updates message."""
    updates = _decoded(val, _ORDERS)
    if not updates:
        return None
    update = updates[0]
    order = update["order"]
    return OrderEvent(
        coin=order["coin"],
        side=order["side"],
        limit_px=order["limitPx"],
        sz=order["sz"],
        oid=order["oid"],
        status=update["status"],
        timestamp=update["statusTimestamp"],
        order_timestamp=order["timestamp"],
    )


def parse_fills(val: Any) -> FillEvent | None:
    """Decode the first fill of a user-fills message."""
    data = _decoded(val, _FILLS)
    if data is None or not data["fills"]:
        return None
    fill = data["fills"][0]
    return FillEvent(
        coin=fill["coin"],
        side=fill["side"],
        px=fill["px"],
        sz=fill["sz"],
        oid=fill["oid"],
        tid=fill["tid"],
        time=fill["time"],
        fee=fill["fee"],
        hash=fill["hash"],
        user=data["user"],
    )


_PARSERS: dict[StreamKind, Callable[[Any], Any]] = {
    StreamKind.BBO: parse_bbo,
    StreamKind.TRADES: parse_trades,
    StreamKind.L2_BOOK: parse_l2_book,
    StreamKind.ORDERS: parse_orders,
    StreamKind.FILLS: parse_fills,
}


def parse_message(text: str | bytes, kind: StreamKind) -> StreamEvent | None:
    """Decode one raw websocket message for a feed of ``kind``.

    Subscription acknowledgements and messages of another shape yield None.
    """
    try:
        val = json.loads(text)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ParseError(f"JSON parse error: {exc}") from exc
    if isinstance(val, dict) and val.get("method") == "subscriptionResponse":
        return None
    return _PARSERS[kind](val)


# --------------------------------------------------------------------------
# Transport
# --------------------------------------------------------------------------


class WsConnection(Protocol):
    """An open websocket that exchanges text messages."""

    async def send_message(self, text: str) -> None: ...

    async def read_message(self) -> str | bytes: ...

    async def close(self) -> None: ...


class WsTransport(Protocol):
    """Anything that can open a websocket connection to a URL."""

    async def connect(self, url: str) -> WsConnection: ...


class _WebsocketsConnection:
    def __init__(self, ws: Any) -> None:
        self._ws = ws

    async def send_message(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except websockets.exceptions.WebSocketException as exc:
            raise DexError(f"websocket send failed: {exc}") from exc

    async def read_message(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except websockets.exceptions.WebSocketException as exc:
            raise DexError(f"websocket read failed: {exc}") from exc

    async def close(self) -> None:
        await self._ws.close()


class WebsocketsTransport:
    """Websocket transport backed by the ``websockets`` library."""

    def __init__(self, **connect_options: Any) -> None:
        self._options = connect_options

    async def connect(self, url: str) -> WsConnection:
        """Open a connection to ``url``, raising DexError on failure."""
        try:
            ws = await websockets.connect(url, **self._options)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise DexError(f"websocket connect failed: {exc}") from exc
        return _WebsocketsConnection(ws)


# --------------------------------------------------------------------------
# Reconnecting subscriber
# --------------------------------------------------------------------------


class HlWs:
    """Subscribes to the exchange's websocket feeds and forwards decoded events."""

    def __init__(self, transport: WsTransport, testnet: bool = False) -> None:
        self.url = TESTNET_WS_URL if testnet else MAINNET_WS_URL
        self._transport = transport
        self._tasks: set[asyncio.Task[None]] = set()

    async def subscribe(
        self,
        kind: StreamKind,
        coin: str | None,
        out: asyncio.Queue,
        address_hex: str | None = None,
    ) -> asyncio.Task[None]:
        """Start a background feed that puts decoded events on ``out``.

        Returns the task running the feed; cancel it to stop. It reconnects with
        backoff and gives up after ``MAX_RETRIES`` consecutive failures.
        """
        message = json.dumps(
            subscription_message(kind, coin, address_hex), separators=(",", ":"), sort_keys=True
        )
        task = asyncio.get_running_loop().create_task(self._run(message, out, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, message: str, out: asyncio.Queue, kind: StreamKind) -> None:
        retry_count = 0
        while True:
            try:
                await self._connect_and_subscribe(message, out, kind)
                retry_count = 0
            except DexError:
                retry_count += 1
                if retry_count >= MAX_RETRIES:
                    return
            await asyncio.sleep(backoff_delay(retry_count) / 1000)

    async def _connect_and_subscribe(
        self, message: str, out: asyncio.Queue, kind: StreamKind
    ) -> None:
        conn = await self._transport.connect(self.url)
        try:
            await conn.send_message(message)
            while True:
                raw = await conn.read_message()
                try:
                    event = parse_message(raw, kind)
                except DexError:
                    continue
                if event is not None:
                    out.put_nowait(event)
        finally:
            await conn.close()