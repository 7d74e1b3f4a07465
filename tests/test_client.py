import asyncio
import copy
import json
import time

import pytest

from perpdex.client import Hyperliquid, HyperliquidBuilder, next_nonce
from perpdex.errors import DexError, ParseError, UnsupportedError
from perpdex.events import Position, StreamKind
from perpdex.rest import HlRest
from perpdex.signer import HlSigner
from perpdex.types import OrderId, OrderReq, Side, Tif, Trade, price, qty
from perpdex.ws import HlWs

WALLET_HEX = "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef"


class FakeTransport:
    def __init__(self, info=None, exchange=None):
        self.info = info or {}
        self.exchange = exchange
        self.calls = []

    async def post_json(self, url, body):
        self.calls.append((url, copy.deepcopy(body)))
        if url.endswith("/exchange"):
            return copy.deepcopy(self.exchange)
        return copy.deepcopy(self.info[body["type"]])


class FakeConnection:
    def __init__(self, messages):
        self.sent = []
        self._messages = list(messages)
        self.closed = False

    async def send_message(self, text):
        self.sent.append(text)

    async def read_message(self):
        if self._messages:
            return self._messages.pop(0)
        await asyncio.Event().wait()

    async def close(self):
        self.closed = True


class FakeWsTransport:
    def __init__(self, messages=()):
        self.messages = list(messages)
        self.connections = []

    async def connect(self, url):
        conn = FakeConnection(self.messages)
        self.connections.append(conn)
        return conn


META = {
    "universe": [
        {"name": "BTC", "szDecimals": 5, "maxLeverage": 50},
        {"name": "ETH", "szDecimals": 4, "maxLeverage": 25},
    ]
}

USER_STATE = {
    "asset_positions": [
        {
            "coin": "BTC",
            "hold": "0",
            "szi": "0.1",
            "leverage": 10.0,
            "entry_px": 50000.0,
            "position_value": "5000.0",
            "unrealized_pnl": "100.0",
            "return_on_equity": "0.02",
        },
        {
            "coin": "ETH",
            "hold": "0",
            "szi": "bad",
            "leverage": None,
            "entry_px": None,
            "position_value": "0",
            "unrealized_pnl": "x",
            "return_on_equity": None,
        },
    ],
    "cross_margin_summary": {
        "account_value": "10000.0",
        "total_margin_used": "500.0",
        "total_ntl_pos": "5000.0",
        "total_raw_usd": "10000.0",
    },
    "cross_maintenance_margin_used": "250.0",
    "withdrawals_used": [{"used": "0.0", "limit": "1000.0"}],
    "time": 1234567890000,
}


def make_client(info=None, exchange=None, signed=True, messages=()):
    transport = FakeTransport(info, exchange)
    ws_transport = FakeWsTransport(messages)
    signer = HlSigner.from_hex_key(WALLET_HEX) if signed else None
    client = Hyperliquid(HlRest(transport, False), HlWs(ws_transport, False), signer)
    return client, transport, ws_transport


def btc_order(cloid=None):
    return OrderReq(
        coin="BTC",
        is_buy=True,
        px=price(50000.0),
        qty=qty(0.001),
        tif=Tif.GTC,
        reduce_only=False,
        cloid=cloid,
    )


def test_builder_defaults():
    builder = HyperliquidBuilder()
    assert builder.is_testnet is False
    assert builder.wallet_hex is None


def test_builder_pattern():
    builder = Hyperliquid.builder()
    assert builder.testnet().is_testnet is True
    assert HyperliquidBuilder().private_key(WALLET_HEX).wallet_hex == WALLET_HEX


def test_private_key_env(monkeypatch):
    monkeypatch.setenv("HL_PK", WALLET_HEX)
    assert HyperliquidBuilder().private_key_env("HL_PK").wallet_hex == WALLET_HEX


def test_private_key_env_missing(monkeypatch):
    monkeypatch.delenv("HL_PK", raising=False)
    with pytest.raises(DexError, match="env var missing"):
        HyperliquidBuilder().private_key_env("HL_PK")


def test_next_nonce_increases_and_tracks_clock():
    before_ms = time.time_ns() // 1_000_000
    first = next_nonce()
    second = next_nonce()
    assert second > first
    assert second >= before_ms - 300_000


@pytest.mark.asyncio
async def test_connect_testnet_with_key():
    client = await HyperliquidBuilder().private_key(WALLET_HEX).testnet().connect()
    try:
        assert "testnet" in client.rest.base
        assert "testnet" in client.ws.url
        assert len(client.signer.address_hex()) == 40
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_connect_mainnet_without_key():
    client = await Hyperliquid.builder().connect()
    try:
        assert client.rest.base == "https://api.hyperliquid.xyz"
        assert client.signer is None
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_connect_invalid_key():
    with pytest.raises(DexError):
        await HyperliquidBuilder().private_key("invalid_key").connect()


@pytest.mark.asyncio
async def test_trades_respect_limit():
    raws = [
        {"side": "B" if i % 2 == 0 else "A", "px": "50000.5", "sz": "0.001",
         "time": 1234567890 + i, "hash": f"h{i}", "tid": i}
        for i in range(5)
    ]
    client, transport, _ = make_client(info={"recentTrades": raws})
    trades = await client.trades("BTC", 3)
    assert [t.id for t in trades] == ["h0", "h1", "h2"]
    assert trades[1].side is Side.SELL
    assert transport.calls[0][1] == {"type": "recentTrades", "coin": "BTC"}


@pytest.mark.asyncio
async def test_orderbook_depth_limiting():
    bids = [{"px": str(50000.0 - i), "sz": "1.0", "n": 1} for i in range(5)]
    asks = [{"px": str(50001.0 + i), "sz": "1.0", "n": 1} for i in range(5)]
    client, _, _ = make_client(info={"l2Book": {"levels": [bids, asks], "time": 1234567890}})
    book = await client.orderbook("BTC", 3)
    assert len(book.bids) == 3
    assert len(book.asks) == 3
    assert book.bids[0].price == 50000.0
    assert book.asks[2].price == 50003.0


@pytest.mark.asyncio
async def test_place_order_builds_payload_and_parses_oid():
    response = {"data": {"statuses": [{"resting": {"oid": 12345}}]}}
    client, transport, _ = make_client(info={"meta": META}, exchange=response)
    result = await client.place_order(btc_order())
    assert result.order_id == OrderId("12345")
    assert "_" in result.client_order_id
    url, payload = transport.calls[-1]
    assert url == "https://api.hyperliquid.xyz/exchange"
    assert payload["type"] == "order"
    assert payload["grouping"] == "na"
    assert payload["orders"][0]["coin"] == "BTC"
    assert payload["orders"][0]["tif"] == "Gtc"
    assert payload["orders"][0]["cloid"] == result.client_order_id
    assert payload["signature"].startswith("0x")
    assert len(payload["signature"]) == 132


@pytest.mark.asyncio
async def test_place_order_keeps_given_cloid_and_matches_case_insensitively():
    response = {"data": {"statuses": [{"resting": {"oid": 7}}]}}
    client, _, _ = make_client(info={"meta": META}, exchange=response)
    req = OrderReq("eth", False, price(3000.0), qty(1.0), Tif.IOC, True, "my_cloid")
    result = await client.place_order(req)
    assert result.client_order_id == "my_cloid"
    assert result.order_id.value == "7"


@pytest.mark.asyncio
async def test_place_order_unknown_asset():
    client, _, _ = make_client(info={"meta": META}, exchange={})
    req = OrderReq("DOGE", True, price(0.1), qty(10.0), Tif.GTC, False)
    with pytest.raises(DexError, match="Asset not found: DOGE"):
        await client.place_order(req)


@pytest.mark.asyncio
async def test_place_order_unparsable_response():
    client, _, _ = make_client(info={"meta": META}, exchange={"data": {"statuses": []}})
    with pytest.raises(ParseError, match="Failed to parse order ID"):
        await client.place_order(btc_order())


@pytest.mark.asyncio
async def test_place_order_requires_signer():
    client, transport, _ = make_client(signed=False)
    with pytest.raises(UnsupportedError, match="signer required"):
        await client.place_order(btc_order())
    assert transport.calls == []


@pytest.mark.asyncio
async def test_cancel_payload():
    client, transport, _ = make_client(exchange={"status": "ok"})
    await client.cancel(OrderId("12345"))
    url, payload = transport.calls[0]
    assert url.endswith("/exchange")
    assert payload == {"type": "cancel", "cancels": [{"oid": 12345}]}


@pytest.mark.asyncio
async def test_cancel_invalid_id():
    client, transport, _ = make_client(exchange={})
    with pytest.raises(ParseError, match="Invalid order ID format"):
        await client.cancel(OrderId("abc"))
    assert transport.calls == []


@pytest.mark.asyncio
async def test_positions():
    client, transport, _ = make_client(info={"clearinghouseState": USER_STATE})
    positions = await client.positions()
    assert positions == [
        Position(coin="BTC", size=0.1, entry_px=50000.0, unrealized_pnl=100.0),
        Position(coin="ETH", size=0.0, entry_px=None, unrealized_pnl=0.0),
    ]
    assert transport.calls[0][1] == {
        "type": "clearinghouseState",
        "user": client.signer.address_hex(),
    }


@pytest.mark.asyncio
async def test_positions_requires_signer():
    client, _, _ = make_client(signed=False)
    with pytest.raises(UnsupportedError, match="signer required"):
        await client.positions()


@pytest.mark.asyncio
async def test_user_state():
    client, _, _ = make_client(info={"clearinghouseState": USER_STATE})
    state = await client.user_state()
    assert state.cross_margin_summary.account_value == "10000.0"
    assert len(state.asset_positions) == 2


@pytest.mark.asyncio
async def test_user_fills_by_time_body():
    client, transport, _ = make_client(info={"userFillsByTime": []})
    fills = await client.user_fills_by_time(1234567890000, 1234567900000)
    assert fills == []
    assert transport.calls[0][1] == {
        "type": "userFillsByTime",
        "user": client.signer.address_hex(),
        "startTime": 1234567890000,
        "endTime": 1234567900000,
    }


@pytest.mark.asyncio
async def test_user_fees_and_sub_accounts():
    client, _, _ = make_client(
        info={
            "userFees": {"total_fees": "1.5"},
            "subAccounts": [{"sub_account_user": "0xabc", "name": "alt"}],
        }
    )
    assert (await client.user_fees()).total_fees == "1.5"
    subs = await client.sub_accounts()
    assert [s.name for s in subs] == ["alt"]


@pytest.mark.asyncio
async def test_candle_snapshot_body():
    candle = {"time": 1, "open": "1", "high": "2", "low": "0.5", "close": "1.5", "volume": "10"}
    client, transport, _ = make_client(info={"candleSnapshot": [candle]})
    snapshot = await client.candle_snapshot("BTC", "1h", 1234567890000, 1234567900000)
    assert len(snapshot) == 1
    assert transport.calls[0][1]["req"] == {
        "coin": "BTC",
        "interval": "1h",
        "startTime": 1234567890000,
        "endTime": 1234567900000,
    }


@pytest.mark.asyncio
async def test_all_mids_and_meta():
    client, _, _ = make_client(info={"allMids": {"BTC": "50000.5"}, "meta": META})
    assert (await client.all_mids()).mids == {"BTC": "50000.5"}
    meta = await client.meta()
    assert [(u.name, u.index) for u in meta.universe] == [("BTC", 0), ("ETH", 1)]


@pytest.mark.asyncio
async def test_subscribe_orders_without_signer():
    client, _, _ = make_client(signed=False)
    with pytest.raises(DexError, match="address required for orders"):
        await client.subscribe(StreamKind.ORDERS, None, asyncio.Queue())


@pytest.mark.asyncio
async def test_subscribe_trades_delivers_events():
    messages = [
        json.dumps({"method": "subscriptionResponse", "subscription": {"type": "trades"}}),
        json.dumps(
            {
                "data": [
                    {"coin": "BTC", "side": "B", "px": "50000.0", "sz": "0.001",
                     "time": 1234567890, "hash": "abcdef123456", "tid": 12345}
                ]
            }
        ),
    ]
    client, _, ws_transport = make_client(messages=messages)
    out = asyncio.Queue()
    task = await client.subscribe(StreamKind.TRADES, "BTC", out)
    event = await asyncio.wait_for(out.get(), timeout=2)
    assert isinstance(event, Trade)
    assert event.id == "abcdef123456"
    assert event.side is Side.BUY
    sent = json.loads(ws_transport.connections[0].sent[0])
    assert sent == {"method": "subscribe", "subscription": {"type": "trades", "coin": "BTC"}}
    await client.aclose()
    assert task.cancelled()
    assert ws_transport.connections[0].closed is True