"""Async Hyperliquid client: market data, account queries, signed orders and streams."""

__version__ = "0.2.0"

__all__ = ["client", "errors", "events", "parsing", "rest", "signer", "types", "ws"]