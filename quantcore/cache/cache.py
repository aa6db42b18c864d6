"""Cache utilities for computed analytics."""

from __future__ import annotations

import asyncio
import json
from datetime import date
from typing import Any, Callable, Iterable, Optional, Union

from quantcore.core.config import settings
from quantcore.core.logging import get_logger

from .client import get_valkey_client

logger = get_logger("cache")

# Cache key prefixes for namespacing
CACHE_PREFIX = "quantcore"
CACHE_VERSION = "v1"


def cache_key(*parts: Union[str, int, float], prefix: str = "cache") -> str:
    """
    Generate a consistent cache key from parts.

    Usage:
        cache_key("options", "AAPL", "2024-05-01", prefix="analytics")
        -> "quantcore:v1:analytics:options:AAPL:2024-05-01"
    """
    sanitized = [str(part).replace(":", "_") for part in parts]
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{prefix}:{':'.join(sanitized)}"


def symbol_set_key(symbols: Iterable[str]) -> str:
    """Order-independent key fragment for a set of symbols."""
    return ",".join(sorted({s.upper() for s in symbols}))


def daily_key(kind: str, scope: str, as_of: date | None = None) -> str:
    """Analytics key scoped by (kind, symbol set or owner, calendar day)."""
    day = (as_of or date.today()).isoformat()
    return f"{kind}:{scope}:{day}"


def _serialize(value: Any) -> str:
    """Serialize value to JSON string."""
    return json.dumps(value, default=str)


def _deserialize(value: str) -> Any:
    """Deserialize JSON string to value."""
    return json.loads(value)


class Cache:
    """Typed cache wrapper with common patterns."""

    def __init__(self, prefix: str = "cache", default_ttl: int | None = None):
        self.prefix = prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            value = await client.get(full_key)
            if value is not None:
                logger.debug(f"Cache hit: {full_key}")
                return _deserialize(value)
            logger.debug(f"Cache miss: {full_key}")
            return None
        except Exception as e:
            logger.warning(f"Cache get failed: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """Set value in cache with TTL."""
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            serialized = _serialize(value)
            await client.set(full_key, serialized, ex=ttl or self.default_ttl)
            logger.debug(f"Cache set: {full_key}, TTL: {ttl or self.default_ttl}s")
            return True
        except Exception as e:
            logger.warning(f"Cache set failed: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            await client.delete(full_key)
            logger.debug(f"Cache delete: {full_key}")
            return True
        except Exception as e:
            logger.warning(f"Cache delete failed: {e}")
            return False

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: Optional[int] = None,
    ) -> Any:
        """Get from cache or compute and cache value (cache-aside pattern)."""
        value = await self.get(key)
        if value is not None:
            return value

        if asyncio.iscoroutinefunction(factory):
            value = await factory()
        else:
            value = factory()

        if value is not None:
            await self.set(key, value, ttl)

        return value

    async def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys of this cache matching a pattern."""
        full_pattern = cache_key(pattern, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            keys = []
            async for key in client.scan_iter(match=full_pattern, count=100):
                keys.append(key)
            if keys:
                await client.delete(*keys)
                logger.info(f"Invalidated {len(keys)} keys matching: {full_pattern}")
            return len(keys)
        except Exception as e:
            logger.warning(f"Pattern invalidation failed: {e}")
            return 0
