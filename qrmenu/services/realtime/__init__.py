"""
Real-time Service Factory

Returns the broadcaster for the current ENV_MODE:
    - ENV_MODE=development → InMemoryBroadcastBackend (single process)
    - ENV_MODE=staging/production → RedisBroadcastBackend (pub/sub fan-out)

Usage:
    from qrmenu.services.realtime import get_broadcaster

    await get_broadcaster().emit("R1", "new_order", payload)
"""

import logging
from functools import lru_cache

from qrmenu.core.config import get_settings
from qrmenu.services.realtime.base import (
    NEW_ORDER,
    ORDER_UPDATED,
    BaseBroadcastBackend,
    EventEnvelope,
)
from qrmenu.services.realtime.broadcaster import EventBroadcaster
from qrmenu.services.realtime.memory import InMemoryBroadcastBackend
from qrmenu.services.realtime.redis_backend import RedisBroadcastBackend
from qrmenu.services.realtime.registry import ClientConnection, GroupRegistry
from qrmenu.services.realtime.router import SessionRouter
from qrmenu.services.store import get_order_store

logger = logging.getLogger(__name__)


@lru_cache()
def get_group_registry() -> GroupRegistry:
    return GroupRegistry()


@lru_cache()
def get_broadcaster() -> EventBroadcaster:
    """Get the configured broadcaster (cached per process)."""
    settings = get_settings()
    registry = get_group_registry()

    if settings.use_real_services:
        logger.info(f"Broadcast: Using RedisBroadcastBackend ({settings.env_mode.value} mode)")
        backend: BaseBroadcastBackend = RedisBroadcastBackend(
            registry,
            redis_url=settings.redis_url,
            channel_prefix=settings.broadcast_channel_prefix,
        )
    else:
        logger.info("Broadcast: Using InMemoryBroadcastBackend (development mode)")
        backend = InMemoryBroadcastBackend(registry)
    return EventBroadcaster(backend)


@lru_cache()
def get_session_router() -> SessionRouter:
    return SessionRouter(get_group_registry(), get_order_store())


def reset_realtime() -> None:
    """Clear cached registry, broadcaster and router."""
    get_session_router.cache_clear()
    get_broadcaster.cache_clear()
    get_group_registry.cache_clear()


__all__ = [
    "NEW_ORDER",
    "ORDER_UPDATED",
    "BaseBroadcastBackend",
    "ClientConnection",
    "EventBroadcaster",
    "EventEnvelope",
    "GroupRegistry",
    "InMemoryBroadcastBackend",
    "RedisBroadcastBackend",
    "SessionRouter",
    "get_broadcaster",
    "get_group_registry",
    "get_session_router",
    "reset_realtime",
]
