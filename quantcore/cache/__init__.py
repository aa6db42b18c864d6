"""Valkey (Redis-compatible) cache module."""

from .cache import (
    Cache,
    cache_key,
    daily_key,
    symbol_set_key,
)
from .client import get_valkey_client


__all__ = [
    "get_valkey_client",
    "Cache",
    "cache_key",
    "daily_key",
    "symbol_set_key",
]
