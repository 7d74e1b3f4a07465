"""High-level exchange client combining REST queries, order signing and streams."""

from __future__ import annotations

import asyncio
import dataclasses
import os
import re
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from perpdex.errors import DexError, ParseError, UnsupportedError
from perpdex.events import Position, StreamKind
from perpdex.rest import HlRest, HttpxTransport
from perpdex.signer import HlSigner
from perpdex.types import (
    AllMids,
    CandleSnapshot,
    Delegation,
    DelegatorRewards,
    DelegatorSummary,
    FundingHistory,
    MetaAndAssetCtxs,
    OpenOrder,
    OrderBook,
    OrderId,
    OrderReq,
    OrderResponse,
    OrderStatus,
    ReferralState,
    SpotMeta,
    SpotMetaAndAssetCtxs,
    SubAccount,
    Trade,
    UniverseMeta,
    UserFees,
    UserFill,
    UserFunding,
    UserState,
    generate_cloid,
    to_dict,
)
from perpdex.ws import HlWs, WebsocketsTransport

_NONCE_LAG_MS = 300_000
_U64_MAX = 2**64 - 1
_U64_TEXT = re.compile(r"\+?[0-9]+")
_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


class _NonceSource:
    """Monotonic nonce counter that catches up with wall-clock milliseconds."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = 0

    def next(self) -> int:
        with self._lock:
            nonce = self._current
            self._current += 1
            now_ms = time.time_ns() // 1_000_000
            if nonce + _NONCE_LAG_MS < now_ms:
                self._current = max(self._current, now_ms)
            return nonce


_NONCES = _NonceSource()


def next_nonce() -> int:
    """Return the next order nonce, jumping to the current time if far behind."""
    return _NONCES.next()


def _ascii_lower(text: str) -> str:
    return text.translate(_ASCII_LOWER)


def _parse_order_id(text: str) -> int:
    if not _U64_TEXT.fullmatch(text):
        raise ParseError(f"Invalid order ID format: {text!r} is not an unsigned integer")
    value = int(text)
    if value > _U64_MAX:
        raise ParseError("Invalid order ID format: number too large to fit in target type")
    return value


def _resting_oid(resp: Any) -> int:
    node = resp
    for key in ("data", "statuses", 0, "resting", "oid"):
        if isinstance(key, int):
            node = node[key] if isinstance(node, list) and len(node) > key else None
        else:
            node = node.get(key) if isinstance(node, dict) else None
    if isinstance(node, bool) or not isinstance(node, int) or not 0 <= node <= _U64_MAX:
        raise ParseError("Failed to parse order ID from response")
    return node


def _f64_or_zero(text: str) -> float:
    if text != text.strip() or "_" in text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


@dataclass(frozen=True)
class HyperliquidBuilder:
    """Configures and opens a :class:`Hyperliquid` client."""

    is_testnet: bool = False
    wallet_hex: str | None = field(default=None, repr=False)

    def testnet(self) -> HyperliquidBuilder:
        """Target the test network."""
        return dataclasses.replace(self, is_testnet=True)

    def private_key(self, private_key: str) -> HyperliquidBuilder:
        """Use the given hex-encoded wallet key for signing."""
        return dataclasses.replace(self, wallet_hex=private_key)

    def private_key_env(self, env_var: str) -> HyperliquidBuilder:
        """Read the hex-encoded wallet key from an environment variable."""
        try:
            value = os.environ[env_var]
        except KeyError:
            raise DexError(f"env var missing: {env_var}") from None
        return self.private_key(value)

    async def connect(self) -> Hyperliquid:
        """Build the client, validating the wallet key if one was given."""
        signer = HlSigner.from_hex_key(self.wallet_hex) if self.wallet_hex is not None else None
        transport = HttpxTransport()
        client = Hyperliquid(
            HlRest(transport, self.is_testnet),
            HlWs(WebsocketsTransport(), self.is_testnet),
            signer,
        )
        client._owned_transport = transport
        return client


class Hyperliquid:
    """Perpetual exchange client: market data, account queries, orders and streams."""

    def __init__(self, rest: HlRest, ws: HlWs, signer: HlSigner | None = None) -> None:
        self.rest = rest
        self.ws = ws
        self.signer = signer
        self._owned_transport: HttpxTransport | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @staticmethod
    def builder() -> HyperliquidBuilder:
        return HyperliquidBuilder()

    def _require_signer(self) -> HlSigner:
        if self.signer is None:
            raise UnsupportedError("signer required")
        return self.signer

    def _user(self) -> str:
        return self._require_signer().address_hex()

    async def _asset_index(self, coin: str) -> int:
        meta = await self.rest.meta(None)
        wanted = _ascii_lower(coin)
        for item in meta.universe:
            if _ascii_lower(item.name) == wanted:
                return item.index
        raise DexError(f"Asset not found: {coin}")

    # ----- market data -----

    async def trades(self, coin: str, limit: int) -> list[Trade]:
        return await self.rest.trades(coin, limit)

    async def orderbook(self, coin: str, depth: int) -> OrderBook:
        """Order book for ``coin`` with at most ``depth`` levels per side."""
        book = await self.rest.l2_book(coin)
        book.bids = book.bids[:depth]
        book.asks = book.asks[:depth]
        return book

    async def all_mids(self) -> AllMids:
        return await self.rest.all_mids(None)

    async def meta(self) -> UniverseMeta:
        return await self.rest.meta(None)

    async def meta_and_asset_ctxs(self) -> MetaAndAssetCtxs:
        return await self.rest.meta_and_asset_ctxs()

    async def funding_history(
        self, coin: str, start_time: int, end_time: int | None = None
    ) -> list[FundingHistory]:
        return await self.rest.funding_history(coin, start_time, end_time)

    # ----- account -----

    async def place_order(self, req: OrderReq) -> OrderResponse:
        """Sign and submit a limit order; a client order id is generated if absent."""
        signer = self._require_signer()
        if req.cloid is None:
            req = dataclasses.replace(req, cloid=generate_cloid())
        cloid = req.cloid
        nonce = next_nonce()
        asset_index = await self._asset_index(req.coin)
        signature = await signer.sign_order(req, nonce, asset_index, cloid)
        payload = {
            "type": "order",
            "orders": [to_dict(req)],
            "grouping": "na",
            "signature": signature,
        }
        resp = await self.rest.place_order(payload)
        oid = _resting_oid(resp)
        return OrderResponse(order_id=OrderId(str(oid)), client_order_id=cloid)

    async def cancel(self, id: OrderId | str) -> None:
        """Cancel the order with the given exchange id."""
        oid = _parse_order_id(str(id))
        await self.rest.place_order({"type": "cancel", "cancels": [{"oid": oid}]})

    async def positions(self) -> list[Position]:
        state = await self.rest.clearinghouse_state(self._user(), None)
        return [
            Position(
                coin=pos.coin,
                size=_f64_or_zero(pos.szi),
                entry_px=pos.entry_px,
                unrealized_pnl=_f64_or_zero(pos.unrealized_pnl),
            )
            for pos in state.asset_positions
        ]

    async def user_state(self) -> UserState:
        return await self.rest.clearinghouse_state(self._user(), None)

    async def open_orders(self) -> list[OpenOrder]:
        return await self.rest.open_orders(self._user(), None)

    async def user_fills(self) -> list[UserFill]:
        return await self.rest.user_fills(self._user())

    async def user_fills_by_time(
        self, start_time: int, end_time: int | None = None
    ) -> list[UserFill]:
        return await self.rest.user_fills_by_time(self._user(), start_time, end_time)

    # ----- streaming -----

    async def subscribe(
        self, kind: StreamKind, coin: str | None, out: asyncio.Queue
    ) -> asyncio.Task[None]:
        """Start a feed putting events on ``out``; the task is cancelled by :meth:`aclose`."""
        address = self.signer.address_hex() if self.signer is not None else None
        task = await self.ws.subscribe(kind, coin, out, address)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ----- further queries -----

    async def candle_snapshot(
        self, coin: str, interval: str, start_time: int, end_time: int
    ) -> CandleSnapshot:
        return await self.rest.candle_snapshot(coin, interval, start_time, end_time)

    async def user_fees(self) -> UserFees:
        return await self.rest.user_fees(self._user())

    async def user_funding(self, start_time: int, end_time: int | None = None) -> UserFunding:
        return await self.rest.user_funding(self._user(), start_time, end_time)

    async def order_status(self, oid: int) -> OrderStatus:
        return await self.rest.order_status(self._user(), oid)

    async def spot_meta(self) -> SpotMeta:
        return await self.rest.spot_meta()

    async def spot_meta_and_asset_ctxs(self) -> SpotMetaAndAssetCtxs:
        return await self.rest.spot_meta_and_asset_ctxs()

    async def delegator_summary(self) -> DelegatorSummary:
        return await self.rest.delegator_summary(self._user())

    async def delegations(self) -> list[Delegation]:
        return await self.rest.delegations(self._user())

    async def delegator_rewards(self) -> DelegatorRewards:
        return await self.rest.delegator_rewards(self._user())

    async def referral(self) -> ReferralState:
        return await self.rest.referral(self._user())

    async def sub_accounts(self) -> list[SubAccount]:
        return await self.rest.sub_accounts(self._user())

    # ----- lifecycle -----

    async def aclose(self) -> None:
        """Stop all feeds started here and close the HTTP client this client owns."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owned_transport is not None:
            await self._owned_transport.aclose()
            self._owned_transport = None

    async def __aenter__(self) -> Hyperliquid:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()