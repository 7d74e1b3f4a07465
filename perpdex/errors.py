"""Exceptions raised by the perpdex package."""

from __future__ import annotations


class DexError(Exception):
    """Base error for every failure reported by an exchange client."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class UnsupportedError(DexError):
    """The requested operation is not available in the current configuration."""


class ParseError(DexError):
    """A response or message could not be decoded into the expected shape."""