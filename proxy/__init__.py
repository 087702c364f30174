"""Caching, aggregating proxy in front of blockchain daemon RPC endpoints."""

__version__ = "1.0.0"
