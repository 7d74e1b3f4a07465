"""Request bodies and response decoding for the exchange's REST info endpoint."""

from __future__ import annotations

import itertools
from typing import Any

from perpdex.errors import ParseError
from perpdex.types import (
    AssetCtx,
    AssetMeta,
    MetaAndAssetCtxs,
    OrderBook,
    OrderBookLevel,
    Side,
    Trade,
    UniverseItem,
    UniverseMeta,
    from_dict,
    price,
    qty,
)

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def info_body(kind: str, **kwargs: Any) -> dict[str, Any]:
    """Build an info request body; keyword names become camelCase, ``None`` is dropped."""
    body: dict[str, Any] = {"type": kind}
    body.update((_camel(k), v) for k, v in kwargs.items() if v is not None)
    return body


def _expect_object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(f"{what}: expected an object")
    return value


def _expect_list(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise ParseError(f"{what}: expected a sequence")
    return value


def _str_field(obj: dict[str, Any], key: str, what: str) -> str:
    if key not in obj:
        raise ParseError(f"{what}: missing field `{key}`")
    value = obj[key]
    if not isinstance(value, str):
        raise ParseError(f"{what}.{key}: expected a string")
    return value


def _uint_field(obj: dict[str, Any], key: str, what: str, maximum: int) -> int:
    if key not in obj:
        raise ParseError(f"{what}: missing field `{key}`")
    value = obj[key]
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
        raise ParseError(f"{what}.{key}: expected an unsigned integer")
    return value


def _bool_field(obj: dict[str, Any], key: str, what: str, default: bool) -> bool:
    value = obj.get(key, default)
    if not isinstance(value, bool):
        raise ParseError(f"{what}.{key}: expected a boolean")
    return value


def _parse_f64(text: str, message: str) -> float:
    if text != text.strip() or "_" in text:
        raise ParseError(message)
    try:
        return float(text)
    except ValueError:
        raise ParseError(message) from None


def _raw_trade(value: Any) -> dict[str, Any]:
    obj = _expect_object(value, "trade")
    return {
        "side": _str_field(obj, "side", "trade"),
        "px": _str_field(obj, "px", "trade"),
        "sz": _str_field(obj, "sz", "trade"),
        "time": _uint_field(obj, "time", "trade", _U64_MAX),
        "hash": _str_field(obj, "hash", "trade"),
        "tid": _uint_field(obj, "tid", "trade", _U64_MAX),
    }


def parse_trades(raws: Any, coin: str, limit: int) -> list[Trade]:
    """Decode a ``recentTrades`` response, keeping at most ``limit`` trades."""
    entries = [_raw_trade(r) for r in _expect_list(raws, "trades")]
    return [
        Trade(
            id=e["hash"],
            ts=e["time"],
            side=Side.BUY if e["side"] == "B" else Side.SELL,
            price=price(_parse_f64(e["px"], "Invalid trade price")),
            qty=qty(_parse_f64(e["sz"], "Invalid trade quantity")),
            coin=coin,
            tid=e["tid"],
        )
        for e in itertools.islice(entries, limit)
    ]


def _raw_levels(value: Any) -> list[dict[str, Any]]:
    levels = _expect_list(value, "levels")
    result = []
    for entry in levels:
        obj = _expect_object(entry, "level")
        result.append(
            {
                "px": _str_field(obj, "px", "level"),
                "sz": _str_field(obj, "sz", "level"),
                "n": _uint_field(obj, "n", "level", _U32_MAX),
            }
        )
    return result


def _book_side(levels: list[dict[str, Any]], label: str) -> list[OrderBookLevel]:
    return [
        OrderBookLevel(
            price=price(_parse_f64(lvl["px"], f"Invalid {label} price")),
            qty=qty(_parse_f64(lvl["sz"], f"Invalid {label} quantity")),
            n=lvl["n"],
        )
        for lvl in levels
    ]


def parse_l2_book(raw: Any, coin: str) -> OrderBook:
    """Decode an ``l2Book`` response of the form ``{"levels": [bids, asks], "time": ...}``."""
    obj = _expect_object(raw, "l2Book")
    if "levels" not in obj:
        raise ParseError("l2Book: missing field `levels`")
    sides = _expect_list(obj["levels"], "l2Book.levels")
    if len(sides) != 2:
        raise ParseError("l2Book.levels: expected an array of length 2")
    raw_bids, raw_asks = (_raw_levels(side) for side in sides)
    ts = _uint_field(obj, "time", "l2Book", _U64_MAX)
    return OrderBook(
        coin=coin,
        ts=ts,
        bids=_book_side(raw_bids, "bid"),
        asks=_book_side(raw_asks, "ask"),
    )


def parse_meta(value: Any) -> UniverseMeta:
    """Decode a ``meta`` response into asset metadata and indexed universe items."""
    obj = _expect_object(value, "meta")
    if "universe" not in obj:
        raise ParseError("meta: missing field `universe`")
    assets = []
    for entry in _expect_list(obj["universe"], "meta.universe"):
        item = _expect_object(entry, "universe entry")
        assets.append(
            AssetMeta(
                name=_str_field(item, "name", "universe entry"),
                sz_decimals=_uint_field(item, "szDecimals", "universe entry", _U32_MAX),
                max_leverage=_uint_field(item, "maxLeverage", "universe entry", _U32_MAX),
                only_isolated=_bool_field(item, "onlyIsolated", "universe entry", False),
            )
        )
    universe = [
        UniverseItem(name=asset.name, index=i, tokens=[], is_canonical=True)
        for i, asset in enumerate(assets)
    ]
    return UniverseMeta(assets=assets, universe=universe)


def parse_meta_and_asset_ctxs(response: Any) -> MetaAndAssetCtxs:
    """Decode a ``metaAndAssetCtxs`` response, a two-element ``[meta, contexts]`` array."""
    if not isinstance(response, list):
        raise ParseError("Expected array response")
    if len(response) != 2:
        raise ParseError("Expected 2-element array")
    meta = parse_meta(response[0])
    contexts = _expect_list(response[1], "asset contexts")
    return MetaAndAssetCtxs(
        meta=meta, asset_ctxs=[from_dict(AssetCtx, ctx) for ctx in contexts]
    )