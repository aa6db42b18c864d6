"""Valkey client for the analytics cache."""

from __future__ import annotations

import asyncio

from redis.asyncio import ConnectionPool, Redis

from quantcore.core.config import Settings, get_settings
from quantcore.core.logging import get_logger


logger = get_logger("cache.client")

# One client per event loop; asyncio connections are bound to the loop
# that opened them.
_clients: dict[int, Redis] = {}


def _loop_id() -> int:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return 0


def build_pool(settings: Settings) -> ConnectionPool:
    """Pool for analytics traffic. Socket timeouts surface in Cache as misses."""
    return ConnectionPool.from_url(
        settings.valkey_url,
        max_connections=settings.valkey_max_connections,
        decode_responses=True,
        socket_timeout=settings.valkey_socket_timeout,
        socket_connect_timeout=settings.valkey_socket_timeout,
        client_name=settings.valkey_client_name,
    )


async def get_valkey_client() -> Redis:
    """Client bound to the running event loop, created on first use."""
    loop_id = _loop_id()
    client = _clients.get(loop_id)
    if client is None:
        settings = get_settings()
        client = Redis(connection_pool=build_pool(settings))
        _clients[loop_id] = client
        logger.info(
            "Analytics cache client created",
            extra={"client_name": settings.valkey_client_name, "loop_id": loop_id},
        )
    return client
