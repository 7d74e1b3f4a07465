# perpdex

An asyncio library for trading perpetual futures on Hyperliquid. It provides:

- market data: recent trades, order-book snapshots, mid prices, perpetual and
  spot metadata, funding history and candles
- account queries: clearinghouse state, positions, open orders, fills, fees,
  funding payments, order status, staking, referrals and sub-accounts
- limit order placement, signed locally with a secp256k1 private key, and
  order cancellation
- websocket streams for best bid/offer, trades, L2 books, order updates and
  fills, with reconnection and backoff

## Installation

```
pip install perpdex
```

## Connecting

```python
import asyncio
from perpdex.client import Hyperliquid

async def main():
    async with await Hyperliquid.builder().testnet().connect() as hl:
        trades = await hl.trades("BTC", 5)
        book = await hl.orderbook("BTC", 3)
        print(trades[0].price, book.bids[0].price, book.asks[0].price)

asyncio.run(main())
```

Leave out `.testnet()` to use mainnet. `Hyperliquid.aclose()` (or leaving the
`async with` block) cancels the streams started through the client and closes
its HTTP client.

## Authenticated calls

Account queries and trading need a signer, built from a 32-byte hex-encoded
private key (with or without `0x`). Give it with `.private_key(...)`, or have it
read from an environment variable:

```python
hl = await Hyperliquid.builder().private_key_env("HL_PK").testnet().connect()
state = await hl.user_state()
orders = await hl.open_orders()
positions = await hl.positions()
```

`private_key_env` raises `DexError` if the variable is not set, and `connect`
raises `DexError` if the key is not valid hex of the right length. A call that
needs a signer when none was configured raises `perpdex.errors.UnsupportedError`.

## Placing and cancelling orders

```python
from perpdex.types import OrderReq, Tif, price, qty

resp = await hl.place_order(OrderReq(
    coin="BTC",
    is_buy=True,
    px=price(100.0),
    qty=qty(0.0001),
    tif=Tif.IOC,
    reduce_only=False,
))
await hl.cancel(resp.order_id)
```

If `cloid` is not set, one is generated with `perpdex.types.generate_cloid()`,
in the form `{timestamp_nanos}_{counter}`. The asset index is looked up by coin
name (ASCII case-insensitive) from the exchange's metadata; an unknown coin
raises `DexError`. The order is signed over a MessagePack encoding of the
action and a nonce from `perpdex.client.next_nonce()`. The returned
`OrderResponse` carries the exchange's resting order id; if the reply holds
none, `ParseError` is raised.

## Streaming

```python
import asyncio
from perpdex.events import StreamKind

queue = asyncio.Queue()
task = await hl.subscribe(StreamKind.TRADES, "BTC", queue)
event = await queue.get()
```

Events are `perpdex.types.Trade`, `perpdex.types.OrderBook`, and
`perpdex.events.Bbo`, `OrderEvent` and `FillEvent`. `StreamKind.BBO`,
`TRADES` and `L2_BOOK` need a coin; `StreamKind.ORDERS` and `FILLS` need a
signer, because they subscribe to your own address. The feed runs as a
background task: cancel it to stop. It reconnects with capped exponential
backoff (see `perpdex.ws.backoff_delay`) and gives up after ten failures in a
row. Messages that cannot be decoded are skipped.

## Lower-level pieces

- `perpdex.rest.HlRest` wraps every REST endpoint, including a few not
  exposed on the client (`spot_clearinghouse_state`, `frontend_open_orders`,
  `perp_dexs`, `user_to_multi_sig_signers`). It takes any transport with an
  async `post_json(url, body)`; `perpdex.rest.HttpxTransport` is the default.
- `perpdex.parsing` builds info request bodies and decodes trade, book and
  metadata replies.
- `perpdex.ws` has the subscription message builder, the message parsers and
  `HlWs`, which takes any transport with an async `connect(url)`;
  `WebsocketsTransport` is the default.
- `perpdex.signer.HlSigner` derives the wallet address and signs orders.
- `perpdex.types.to_dict` and `from_dict` convert the data types to and from
  plain JSON data.

## Errors

Failures raise `perpdex.errors.DexError` or one of its subclasses:
`ParseError` for replies that cannot be read and `UnsupportedError` for
operations not available in the current configuration.

## What it does not do

- It supports Hyperliquid only.
- Orders are single limit orders (time in force IOC, GTC or ALO); there are no
  trigger orders, batch orders or order modification.
- Each stream message yields at most one event: for trades, order updates and
  fills, only the first entry of the message is forwarded.
- There is no command-line tool and nothing is stored locally.

## Running the tests

```
pip install -e ".[test]"
pytest
```