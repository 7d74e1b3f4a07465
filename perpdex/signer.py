"""Order signing: compact MessagePack encoding, Keccak-256 and secp256k1 ECDSA."""

from __future__ import annotations

import hashlib
import hmac
import math
from decimal import Decimal
from typing import Any, Iterator

import msgpack
from Crypto.Hash import keccak

from perpdex.errors import DexError
from perpdex.types import OrderReq

# secp256k1 domain parameters
_P = 2**256 - 2**32 - 977
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)

_Point = "tuple[int, int] | None"


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _point_add(a: Any, b: Any) -> Any:
    if a is None:
        return b
    if b is None:
        return a
    (x1, y1), (x2, y2) = a, b
    if x1 == x2:
        if (y1 + y2) % _P == 0:
            return None
        lam = 3 * x1 * x1 * pow(2 * y1, -1, _P) % _P
    else:
        lam = (y2 - y1) * pow(x2 - x1, -1, _P) % _P
    x3 = (lam * lam - x1 - x2) % _P
    y3 = (lam * (x1 - x3) - y1) % _P
    return (x3, y3)


def _scalar_mult(k: int, point: Any) -> Any:
    result = None
    addend = point
    while k:
        if k & 1:
            result = _point_add(result, addend)
        addend = _point_add(addend, addend)
        k >>= 1
    return result


def _hmac(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha256).digest()


def _rfc6979_nonces(secret: int, digest: bytes) -> Iterator[int]:
    """Deterministic nonce candidates (RFC 6979, HMAC-SHA256)."""
    x = secret.to_bytes(32, "big")
    h = (int.from_bytes(digest, "big") % _N).to_bytes(32, "big")
    v = b"\x01" * 32
    k = b"\x00" * 32
    k = _hmac(k, v + b"\x00" + x + h)
    v = _hmac(k, v)
    k = _hmac(k, v + b"\x01" + x + h)
    v = _hmac(k, v)
    while True:
        v = _hmac(k, v)
        candidate = int.from_bytes(v, "big")
        if 1 <= candidate < _N:
            yield candidate
        k = _hmac(k, v + b"\x00")
        v = _hmac(k, v)


def _sign_digest(secret: int, digest: bytes) -> tuple[int, int, int]:
    """Sign a 32-byte digest; return ``(r, s, recovery_id)`` with low ``s``."""
    z = int.from_bytes(digest, "big") % _N
    for k in _rfc6979_nonces(secret, digest):
        point = _scalar_mult(k, _G)
        r = point[0] % _N
        if r == 0:
            continue
        s = pow(k, -1, _N) * (z + r * secret) % _N
        if s == 0:
            continue
        recovery_id = (point[1] & 1) | (2 if point[0] >= _N else 0)
        if s > _N // 2:
            s = _N - s
            recovery_id ^= 1
        return r, s, recovery_id
    raise DexError("signing failed")  # pragma: no cover - the generator never ends


def _format_number(value: float) -> str:
    """Shortest round-trip decimal text for ``value``, never in exponent form."""
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if math.isnan(value):
        return "NaN"
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def order_action(req: OrderReq, asset_index: int, cloid: str) -> dict[str, Any]:
    """Build the order action for ``req``; key order is significant for signing."""
    order = {
        "a": asset_index,
        "b": req.is_buy,
        "p": _format_number(req.px),
        "s": _format_number(req.qty),
        "r": req.reduce_only,
        "t": {"limit": {"tif": req.tif.value}},
        "c": cloid,
    }
    return {"type": "order", "orders": [order], "grouping": "na"}


def _compact(value: Any) -> Any:
    if isinstance(value, dict):
        return [_compact(v) for v in value.values()]
    if isinstance(value, (list, tuple)):
        return [_compact(v) for v in value]
    return value


def encode_action(action: dict[str, Any], nonce: int) -> bytes:
    """MessagePack-encode ``action`` and ``nonce`` with records packed as arrays."""
    try:
        return msgpack.packb(_compact({"action": action, "nonce": nonce}))
    except (TypeError, ValueError, OverflowError) as exc:
        raise DexError(f"MessagePack encoding failed: {exc}") from exc


class HlSigner:
    """A local secp256k1 wallet that signs order actions."""

    __slots__ = ("_secret", "_address")

    def __init__(self, secret: int) -> None:
        if not 1 <= secret < _N:
            raise DexError("invalid private key scalar")
        self._secret = secret
        public = _scalar_mult(secret, _G)
        encoded = public[0].to_bytes(32, "big") + public[1].to_bytes(32, "big")
        self._address = _keccak256(encoded)[-20:]

    @classmethod
    def from_hex_key(cls, pk_hex: str) -> HlSigner:
        """Create a signer from a 32-byte hex key, with or without ``0x``."""
        text = pk_hex[2:] if pk_hex.startswith(("0x", "0X")) else pk_hex
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise DexError(f"invalid hex key: {exc}") from exc
        if len(text) != 64 or len(raw) != 32 or not text.isalnum():
            raise DexError("invalid key length")
        return cls(int.from_bytes(raw, "big"))

    def address_hex(self) -> str:
        """The wallet address as 40 lower-case hex digits, without ``0x``."""
        return self._address.hex()

    async def sign_order(
        self, ord: OrderReq, nonce: int, asset_index: int, cloid: str
    ) -> str:
        """Sign an order and return the 65-byte ``r || s || v`` signature as hex."""
        payload = encode_action(order_action(ord, asset_index, cloid), nonce)
        r, s, recovery_id = _sign_digest(self._secret, _keccak256(payload))
        raw = r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([27 + (recovery_id & 1)])
        return "0x" + raw.hex()

    def __repr__(self) -> str:
        return f"HlSigner(address={self.address_hex()})"