import hashlib

import msgpack
import pytest

from perpdex.errors import DexError
from perpdex.signer import (
    HlSigner,
    _N,
    _format_number,
    _sign_digest,
    encode_action,
    order_action,
)
from perpdex.types import OrderReq, Tif, price, qty

SAMPLE_WALLET_HEX = "0x" + "1234567890abcdef" * 4
ONE_HEX = "0x" + "0" * 63 + "1"


def make_req(tif=Tif.GTC):
    return OrderReq(
        coin="BTC",
        is_buy=True,
        px=price(50000.0),
        qty=qty(0.001),
        tif=tif,
        reduce_only=False,
        cloid=None,
    )


def test_signer_creation():
    signer = HlSigner.from_hex_key(SAMPLE_WALLET_HEX)
    addr = signer.address_hex()
    assert addr == addr.lower()
    assert not addr.startswith("0x")
    assert len(addr) == 40


def test_known_address_for_scalar_one():
    signer = HlSigner.from_hex_key(ONE_HEX)
    assert signer.address_hex() == "7e5f4552091a69125d5dfcb7b8c2659029395bdf"


def test_key_without_prefix_gives_same_address():
    with_prefix = HlSigner.from_hex_key(SAMPLE_WALLET_HEX)
    without_prefix = HlSigner.from_hex_key(SAMPLE_WALLET_HEX[2:])
    assert with_prefix.address_hex() == without_prefix.address_hex()


@pytest.mark.parametrize(
    "text",
    [
        "invalid_key",
        "0x1234",
        "0x" + "0" * 64,
        "0x" + "f" * 64,
        "0x" + "12" * 33,
    ],
)
def test_invalid_private_key(text):
    with pytest.raises(DexError):
        HlSigner.from_hex_key(text)


def test_order_action_construction():
    action = order_action(make_req(), 0, "test_cloid_123")
    assert action["type"] == "order"
    assert action["grouping"] == "na"
    assert len(action["orders"]) == 1
    order = action["orders"][0]
    assert order["a"] == 0
    assert order["b"] is True
    assert order["p"] == "50000"
    assert order["s"] == "0.001"
    assert order["r"] is False
    assert order["t"]["limit"]["tif"] == "Gtc"
    assert order["c"] == "test_cloid_123"
    assert list(order) == ["a", "b", "p", "s", "r", "t", "c"]


@pytest.mark.parametrize(
    "tif,expected", [(Tif.IOC, "Ioc"), (Tif.GTC, "Gtc"), (Tif.ALO, "Alo")]
)
def test_tif_mapping(tif, expected):
    action = order_action(make_req(tif), 0, "cloid")
    assert action["orders"][0]["t"]["limit"]["tif"] == expected


@pytest.mark.parametrize(
    "value,expected",
    [
        (50000.0, "50000"),
        (0.001, "0.001"),
        (0.00001, "0.00001"),
        (1e21, "1000000000000000000000"),
        (123.456, "123.456"),
        (-0.0, "-0"),
    ],
)
def test_number_formatting(value, expected):
    assert _format_number(value) == expected


def test_messagepack_serialization():
    action = order_action(make_req(), 0, "test_cloid")
    encoded = encode_action(action, 12345)
    assert encoded
    assert msgpack.unpackb(encoded) == [
        ["order", [[0, True, "50000", "0.001", False, [["Gtc"]], "test_cloid"]], "na"],
        12345,
    ]


def test_known_ecdsa_vector():
    digest = hashlib.sha256(b"Satoshi Nakamoto").digest()
    r, s, _ = _sign_digest(1, digest)
    assert r == 0x934B1EA10A4B3C1757E2B0C017D0B6143CE3C9A7E6A4A49860D7A6AB210EE3D8
    assert s == 0x2442CE9D2B916064108014783E923EC36B49743E2FFA1C4496F01A512AAFD9E5


@pytest.mark.asyncio
async def test_sign_order():
    signer = HlSigner.from_hex_key(SAMPLE_WALLET_HEX)
    signature = await signer.sign_order(make_req(), 12345, 0, "test_cloid")
    assert signature.startswith("0x")
    assert len(signature) == 132
    raw = bytes.fromhex(signature[2:])
    assert raw[64] in (27, 28)
    assert int.from_bytes(raw[32:64], "big") <= _N // 2


@pytest.mark.asyncio
async def test_signature_is_deterministic_and_nonce_sensitive():
    signer = HlSigner.from_hex_key(SAMPLE_WALLET_HEX)
    first = await signer.sign_order(make_req(), 12345, 0, "test_cloid")
    second = await signer.sign_order(make_req(), 12345, 0, "test_cloid")
    other = await signer.sign_order(make_req(), 12346, 0, "test_cloid")
    assert first == second
    assert first[:66] != other[:66]