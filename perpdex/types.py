"""Common market, order and account types shared by exchange clients."""

import dataclasses
import functools
import inspect
import itertools
import math
import time
import types as _pytypes
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Union, get_args, get_origin

from perpdex.errors import ParseError

Price = float
Qty = float
FundingRate = float


def price(v: float) -> Price:
    """Return ``v`` as a price, refusing NaN."""
    value = float(v)
    if math.isnan(value):
        raise ValueError("NaN price")
    return value


def qty(v: float) -> Qty:
    """Return ``v`` as a quantity, refusing NaN."""
    value = float(v)
    if math.isnan(value):
        raise ValueError("NaN qty")
    return value


_CLOID_COUNTER = itertools.count()


def generate_cloid() -> str:
    """Return a unique client order id of the form ``{timestamp_nanos}_{counter}``."""
    counter = next(_CLOID_COUNTER)
    return f"{time.time_ns()}_{counter}"


def _renamed(name: str, **kwargs: Any) -> Any:
    return field(metadata={"rename": name}, **kwargs)


class Side(Enum):
    BUY = "Buy"
    SELL = "Sell"


class Tif(Enum):
    IOC = "Ioc"
    GTC = "Gtc"
    ALO = "Alo"


@dataclass
class Trade:
    id: str
    ts: int
    side: Side
    price: float
    qty: float
    coin: str
    tid: int


@dataclass
class OrderBookLevel:
    price: float
    qty: float
    n: int


@dataclass
class OrderBook:
    coin: str
    ts: int
    bids: list[OrderBookLevel]
    asks: list[OrderBookLevel]


@dataclass
class OrderReq:
    coin: str
    is_buy: bool
    px: float
    qty: float
    tif: Tif
    reduce_only: bool
    cloid: Optional[str] = None


@dataclass(frozen=True)
class OrderId:
    """Exchange-assigned order identifier; serialised as a bare string."""

    _newtype: ClassVar[bool] = True
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass
class OrderResponse:
    order_id: OrderId
    client_order_id: str


@dataclass
class AssetPosition:
    coin: str
    hold: str
    szi: str
    leverage: Optional[float]
    entry_px: Optional[float]
    position_value: str
    unrealized_pnl: str
    return_on_equity: Optional[str]


@dataclass
class MarginSummary:
    account_value: str
    total_margin_used: str
    total_ntl_pos: str
    total_raw_usd: str


@dataclass
class CrossMarginSummary:
    account_value: str
    total_margin_used: str
    total_ntl_pos: str
    total_raw_usd: str


@dataclass
class WithdrawalsUsed:
    used: str
    limit: str


@dataclass
class UserState:
    asset_positions: list[AssetPosition]
    cross_margin_summary: CrossMarginSummary
    cross_maintenance_margin_used: str
    withdrawals_used: list[WithdrawalsUsed]
    time: int


@dataclass
class OpenOrder:
    coin: str
    side: str
    limit_px: str
    sz: str
    oid: int
    timestamp: int
    orig_sz: str
    cloid: Optional[str]


@dataclass
class UserFill:
    coin: str
    px: str
    sz: str
    side: str
    time: int
    start_position: str
    dir: str
    closed_pnl: str
    hash: str
    oid: int
    crossed: bool
    fee: str
    tid: int
    liquidation: Optional[bool]


@dataclass
class FundingHistory:
    coin: str
    funding_rate: str = _renamed("fundingRate")
    premium: str = field(default="")
    time: int = field(default=0)


@dataclass
class AssetMeta:
    name: str
    sz_decimals: int
    max_leverage: int
    only_isolated: bool


@dataclass
class UniverseItem:
    name: str
    index: int
    tokens: list[int]
    is_canonical: bool


@dataclass
class UniverseMeta:
    assets: list[AssetMeta]
    universe: list[UniverseItem]


@dataclass
class AssetCtx:
    funding: str
    open_interest: str = _renamed("openInterest")
    prev_day_px: str = _renamed("prevDayPx")
    day_ntl_vlm: str = _renamed("dayNtlVlm")
    premium: Optional[str] = None
    oracle_px: str = _renamed("oraclePx")
    mark_px: str = _renamed("markPx")
    mid_px: Optional[str] = _renamed("midPx", default=None)
    impact_pxs: Optional[list[str]] = _renamed("impactPxs", default=None)
    day_base_vlm: Optional[str] = _renamed("dayBaseVlm", default=None)


@dataclass
class MetaAndAssetCtxs:
    meta: UniverseMeta
    asset_ctxs: list[AssetCtx]


@dataclass
class SpotAssetMeta:
    name: str
    sz_decimals: int
    wei_decimals: int
    index: int
    token_id: str
    is_canonical: bool


@dataclass
class SpotUniverseItem:
    tokens: list[int]
    name: str
    index: int
    is_canonical: bool


@dataclass
class SpotMeta:
    tokens: list[SpotAssetMeta]
    universe: list[SpotUniverseItem]


@dataclass
class SpotAssetCtx:
    day_ntl_vlm: str
    prev_day_px: str
    mark_px: Optional[str]
    mid_px: Optional[str]
    circulating_supply: str = _renamed("circulatingSupply")


@dataclass
class SpotMetaAndAssetCtxs:
    meta: SpotMeta
    asset_ctxs: list[SpotAssetCtx]


@dataclass
class AllMids:
    mids: dict[str, str]


@dataclass
class UserFees:
    total_fees: str


@dataclass
class Candle:
    time: int
    open: str
    high: str
    low: str
    close: str
    volume: str


@dataclass
class CandleSnapshot:
    """A list of candles; serialised as a bare JSON array."""

    _newtype: ClassVar[bool] = True
    candles: list[Candle]

    def __iter__(self):
        return iter(self.candles)

    def __len__(self) -> int:
        return len(self.candles)


@dataclass
class OrderStatus:
    order: Optional[OpenOrder]
    status: str
    status_timestamp: int


@dataclass
class UserFundingDelta:
    coin: str
    funding_rate: str
    szi: str
    usdc: str
    time: int


@dataclass
class UserFunding:
    delta: list[UserFundingDelta]


@dataclass
class DelegatorSummary:
    total_delegated: str
    total_rewards: str
    total_penalties: str


@dataclass
class Delegation:
    validator: str
    amount: str
    rewards: str


@dataclass
class DelegationReward:
    validator: str
    rewards: str
    time: int


@dataclass
class DelegatorRewards:
    rewards: list[DelegationReward]


@dataclass
class ReferralState:
    code: str
    referred_by: Optional[str]
    total_referrals: int
    total_volume: str


@dataclass
class SubAccount:
    sub_account_user: str
    name: str


# --------------------------------------------------------------------------
# JSON conversion
# --------------------------------------------------------------------------


def to_dict(obj: Any) -> Any:
    """Convert a value of these types into plain JSON-compatible data."""
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        fs = dataclasses.fields(obj)
        if getattr(obj, "_newtype", False):
            return to_dict(getattr(obj, fs[0].name))
        return {
            f.metadata.get("rename", f.name): to_dict(getattr(obj, f.name)) for f in fs
        }
    if isinstance(obj, (list, tuple)):
        return [to_dict(v) for v in obj]
    if isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    return obj


def from_dict(cls: type, data: Any) -> Any:
    """Build an instance of ``cls`` from plain JSON data, raising ParseError on mismatch."""
    return _decode(cls, data, cls.__name__)


_BUILTIN_TYPES: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "None": type(None),
    "NoneType": type(None),
    "Any": Any,
}


def _split_top_level(text: str, sep: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts]


def _resolve_annotation(text: str, owner: type) -> Any:
    """Resolve a string annotation by name, without running it."""
    text = text.strip()
    alternatives = _split_top_level(text, "|")
    if len(alternatives) > 1:
        return Union[tuple(_resolve_annotation(a, owner) for a in alternatives)]
    if text in _BUILTIN_TYPES:
        return _BUILTIN_TYPES[text]
    if text.endswith("]") and "[" in text:
        head, inner = text.split("[", 1)
        args = [_resolve_annotation(a, owner) for a in _split_top_level(inner[:-1], ",")]
        head = head.strip().rsplit(".", 1)[-1]
        if head in ("list", "List"):
            return list[args[0]]
        if head in ("dict", "Dict"):
            return dict[args[0], args[1]]
        if head == "Optional":
            return Union[args[0], None]
        if head == "Union":
            return Union[tuple(args)]
        raise TypeError(f"unsupported annotation {text!r} on {owner.__name__}")
    module = inspect.getmodule(owner)
    resolved = getattr(module, text, None)
    if resolved is None:
        raise TypeError(f"cannot resolve annotation {text!r} on {owner.__name__}")
    return resolved


@functools.lru_cache(maxsize=None)
def _hints(cls: type) -> dict[str, Any]:
    return {
        f.name: _resolve_annotation(f.type, cls) if isinstance(f.type, str) else f.type
        for f in dataclasses.fields(cls)
    }


def _is_union(tp: Any) -> bool:
    origin = get_origin(tp)
    return origin is Union or origin is _pytypes.UnionType


def _is_optional(tp: Any) -> bool:
    return _is_union(tp) and type(None) in get_args(tp)


def _decode(tp: Any, value: Any, path: str) -> Any:
    if _is_union(tp):
        if value is None and type(None) in get_args(tp):
            return None
        inner = [a for a in get_args(tp) if a is not type(None)]
        return _decode(inner[0], value, path)

    origin = get_origin(tp)
    if origin is list:
        if not isinstance(value, list):
            raise ParseError(f"{path}: expected a sequence")
        (item_tp,) = get_args(tp)
        return [_decode(item_tp, v, f"{path}[{i}]") for i, v in enumerate(value)]
    if origin is dict:
        if not isinstance(value, dict):
            raise ParseError(f"{path}: expected a map")
        key_tp, val_tp = get_args(tp)
        return {
            _decode(key_tp, k, path): _decode(val_tp, v, f"{path}.{k}")
            for k, v in value.items()
        }

    if isinstance(tp, type) and issubclass(tp, Enum):
        try:
            return tp(value)
        except ValueError:
            raise ParseError(f"{path}: unknown variant {value!r}") from None

    if dataclasses.is_dataclass(tp):
        return _decode_dataclass(tp, value, path)

    if tp is bool:
        if not isinstance(value, bool):
            raise ParseError(f"{path}: expected a boolean")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ParseError(f"{path}: expected an unsigned integer")
        return value
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParseError(f"{path}: expected a number")
        if math.isnan(value):
            raise ParseError(f"{path}: NaN is not allowed")
        return float(value)
    if tp is str:
        if not isinstance(value, str):
            raise ParseError(f"{path}: expected a string")
        return value
    return value


def _decode_dataclass(cls: type, value: Any, path: str) -> Any:
    hints = _hints(cls)
    fs = dataclasses.fields(cls)
    if getattr(cls, "_newtype", False):
        only = fs[0]
        return cls(_decode(hints[only.name], value, path))
    if not isinstance(value, dict):
        raise ParseError(f"{path}: expected an object")
    kwargs = {}
    for f in fs:
        key = f.metadata.get("rename", f.name)
        tp = hints[f.name]
        if key in value:
            kwargs[f.name] = _decode(tp, value[key], f"{path}.{key}")
        elif _is_optional(tp):
            kwargs[f.name] = None
        else:
            raise ParseError(f"{path}: missing field `{key}`")
    return cls(**kwargs)