import pytest

from perpdex.errors import DexError, ParseError, UnsupportedError


def test_unsupported_keeps_message():
    err = UnsupportedError("test feature")
    assert err.message == "test feature"
    assert str(err) == "test feature"


def test_signer_required_is_a_dex_error():
    err = UnsupportedError("signer required")
    assert isinstance(err, DexError)
    assert err.message == "signer required"
    assert str(err) == "signer required"


def test_parse_error_is_distinct_from_unsupported():
    err = ParseError("Invalid trade price")
    assert isinstance(err, DexError)
    assert not isinstance(err, UnsupportedError)
    assert str(err) == "Invalid trade price"


def test_plain_dex_error_message():
    err = DexError("Asset not found: XYZ")
    assert err.message == "Asset not found: XYZ"
    with pytest.raises(DexError, match="Asset not found"):
        raise err