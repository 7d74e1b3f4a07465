"""Asynchronous REST client for the exchange's info and exchange endpoints."""

from __future__ import annotations

from typing import Any, Protocol, TypeVar

import httpx

from perpdex.errors import DexError, ParseError
from perpdex.parsing import info_body, parse_l2_book, parse_meta, parse_meta_and_asset_ctxs, parse_trades
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
    from_dict,
)

MAINNET_URL = "https://api.hyperliquid.xyz"
TESTNET_URL = "https://api.hyperliquid-testnet.xyz"

T = TypeVar("T")


class JsonTransport(Protocol):
    """Anything that can POST a JSON body and return the decoded JSON reply."""

    async def post_json(self, url: str, body: Any) -> Any: ...


class HttpxTransport:
    """JSON-over-HTTP transport backed by an ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient | None = None, *, timeout: float = 10.0) -> None:
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def post_json(self, url: str, body: Any) -> Any:
        """POST ``body`` as JSON to ``url`` and return the decoded response."""
        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise DexError(f"HTTP request failed: {exc}") from exc
        if response.is_error:
            raise DexError(f"HTTP {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON response: {exc}") from exc

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _list_of(cls: type[T], data: Any) -> list[T]:
    if not isinstance(data, list):
        raise ParseError(f"{cls.__name__} list: expected a sequence")
    return [from_dict(cls, item) for item in data]


class HlRest:
    """Typed wrappers around the exchange's REST endpoints."""

    def __init__(self, transport: JsonTransport, testnet: bool = False) -> None:
        self.base = TESTNET_URL if testnet else MAINNET_URL
        self._transport = transport

    @property
    def info_url(self) -> str:
        return f"{self.base}/info"

    @property
    def exchange_url(self) -> str:
        return f"{self.base}/exchange"

    async def _info(self, kind: str, **kwargs: Any) -> Any:
        return await self._transport.post_json(self.info_url, info_body(kind, **kwargs))

    # ----- market data -----

    async def trades(self, coin: str, limit: int) -> list[Trade]:
        """Recent trades for ``coin``, at most ``limit`` of them."""
        raws = await self._info("recentTrades", coin=coin)
        return parse_trades(raws, coin, limit)

    async def l2_book(self, coin: str) -> OrderBook:
        """Level-2 order book snapshot for ``coin``."""
        raw = await self._info("l2Book", coin=coin)
        return parse_l2_book(raw, coin)

    async def place_order(self, payload: dict[str, Any]) -> Any:
        """Send a signed action to the exchange endpoint and return the raw reply."""
        return await self._transport.post_json(self.exchange_url, payload)

    # ----- user account and trading data -----

    async def clearinghouse_state(self, user: str, dex: str | None = None) -> UserState:
        """The user's perpetual trading state."""
        return from_dict(UserState, await self._info("clearinghouseState", user=user, dex=dex))

    async def spot_clearinghouse_state(self, user: str) -> Any:
        """The user's spot trading state, undecoded."""
        return await self._info("spotClearinghouseState", user=user)

    async def open_orders(self, user: str, dex: str | None = None) -> list[OpenOrder]:
        """The user's open orders."""
        return _list_of(OpenOrder, await self._info("openOrders", user=user, dex=dex))

    async def frontend_open_orders(self, user: str, dex: str | None = None) -> list[OpenOrder]:
        """The user's open orders as shown by the frontend."""
        return _list_of(OpenOrder, await self._info("frontendOpenOrders", user=user, dex=dex))

    async def user_fills(self, user: str) -> list[UserFill]:
        """The user's fill history."""
        return _list_of(UserFill, await self._info("userFills", user=user))

    async def user_fills_by_time(
        self, user: str, start_time: int, end_time: int | None = None
    ) -> list[UserFill]:
        """The user's fills within a time range."""
        data = await self._info(
            "userFillsByTime", user=user, start_time=start_time, end_time=end_time
        )
        return _list_of(UserFill, data)

    async def user_funding(
        self, user: str, start_time: int, end_time: int | None = None
    ) -> UserFunding:
        """The user's funding payment history."""
        data = await self._info("userFunding", user=user, start_time=start_time, end_time=end_time)
        return from_dict(UserFunding, data)

    async def user_fees(self, user: str) -> UserFees:
        """The user's fee summary."""
        return from_dict(UserFees, await self._info("userFees", user=user))

    async def order_status(self, user: str, oid: int) -> OrderStatus:
        """Status of one order."""
        return from_dict(OrderStatus, await self._info("orderStatus", user=user, oid=oid))

    # ----- market metadata -----

    async def all_mids(self, dex: str | None = None) -> AllMids:
        """Mid prices of every coin."""
        data = await self._info("allMids", dex=dex)
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise ParseError("allMids: expected a map of strings")
        return AllMids(mids=dict(data))

    async def meta(self, dex: str | None = None) -> UniverseMeta:
        """Perpetual market metadata."""
        return parse_meta(await self._info("meta", dex=dex))

    async def meta_and_asset_ctxs(self) -> MetaAndAssetCtxs:
        """Perpetual market metadata together with per-asset contexts."""
        return parse_meta_and_asset_ctxs(await self._info("metaAndAssetCtxs"))

    async def spot_meta(self) -> SpotMeta:
        """Spot market metadata."""
        return from_dict(SpotMeta, await self._info("spotMeta"))

    async def spot_meta_and_asset_ctxs(self) -> SpotMetaAndAssetCtxs:
        """Spot market metadata together with per-asset contexts."""
        return from_dict(SpotMetaAndAssetCtxs, await self._info("spotMetaAndAssetCtxs"))

    async def perp_dexs(self) -> Any:
        """Available perpetual DEX information, undecoded."""
        return await self._info("perpDexs")

    async def funding_history(
        self, coin: str, start_time: int, end_time: int | None = None
    ) -> list[FundingHistory]:
        """Funding rate history for ``coin``."""
        data = await self._info(
            "fundingHistory", coin=coin, start_time=start_time, end_time=end_time
        )
        return _list_of(FundingHistory, data)

    async def candle_snapshot(
        self, coin: str, interval: str, start_time: int, end_time: int
    ) -> CandleSnapshot:
        """Candlestick data for ``coin`` at ``interval``."""
        req = {"coin": coin, "interval": interval, "startTime": start_time, "endTime": end_time}
        return from_dict(CandleSnapshot, await self._info("candleSnapshot", req=req))

    # ----- staking and delegation -----

    async def delegator_summary(self, user: str) -> DelegatorSummary:
        """The user's staking summary."""
        return from_dict(DelegatorSummary, await self._info("delegatorSummary", user=user))

    async def delegations(self, user: str) -> list[Delegation]:
        """The user's delegations."""
        return _list_of(Delegation, await self._info("delegations", user=user))

    async def delegator_rewards(self, user: str) -> DelegatorRewards:
        """The user's staking rewards."""
        return from_dict(DelegatorRewards, await self._info("delegatorRewards", user=user))

    # ----- account management -----

    async def referral(self, user: str) -> ReferralState:
        """The user's referral state."""
        return from_dict(ReferralState, await self._info("referral", user=user))

    async def sub_accounts(self, user: str) -> list[SubAccount]:
        """The user's sub-accounts."""
        return _list_of(SubAccount, await self._info("subAccounts", user=user))

    async def user_to_multi_sig_signers(self, user: str) -> Any:
        """Multi-sig signers of the user, undecoded."""
        return await self._info("userToMultiSigSigners", user=user)