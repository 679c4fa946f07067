"""
Redis Broadcast Backend

Publishes every order event on a per-restaurant Redis channel
(``<prefix>:<restaurant_id>``). Each instance pattern-subscribes to
``<prefix>:*`` and dispatches what it hears into its own registry, so a
dashboard connected to instance A sees orders placed through instance B.

Events are fire-and-forget: Redis pub/sub keeps nothing for instances that
are not listening at publish time.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from qrmenu.services.realtime.base import BaseBroadcastBackend, EventEnvelope, dispatch
from qrmenu.services.realtime.registry import GroupRegistry

logger = logging.getLogger(__name__)


class RedisBroadcastBackend(BaseBroadcastBackend):
    """Cross-instance backend built on Redis pub/sub."""

    def __init__(
        self,
        registry: GroupRegistry,
        redis_url: str,
        channel_prefix: str = "qrmenu:events",
        retry_delay: float = 1.0,
    ):
        super().__init__(registry)
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self.retry_delay = retry_delay
        self._client: Optional[aioredis.Redis] = None
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        logger.info(f"RedisBroadcastBackend initialized (prefix={channel_prefix})")

    @property
    def provider_name(self) -> str:
        return "redis"

    def channel_for(self, restaurant_id: str) -> str:
        return f"{self.channel_prefix}:{restaurant_id}"

    async def start(self) -> None:
        self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.psubscribe(f"{self.channel_prefix}:*")
        self._listener = asyncio.create_task(self._listen(), name="redis-broadcast-listener")
        logger.info(f"Subscribed to {self.channel_prefix}:*")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def publish(self, envelope: EventEnvelope) -> None:
        if self._client is None:
            raise RuntimeError("RedisBroadcastBackend used before start()")
        receivers = await self._client.publish(
            self.channel_for(envelope.restaurant_id), envelope.to_json()
        )
        logger.debug(f"Published {envelope.event} to {receivers} instance(s)")

    async def _listen(self) -> None:
        while True:
            try:
                async for message in self._pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    self._handle(message["data"])
            except asyncio.CancelledError:
                raise
            except RedisError as e:
                logger.error(f"Redis listener error, retrying in {self.retry_delay}s: {e}")
                await asyncio.sleep(self.retry_delay)

    def _handle(self, raw: str) -> None:
        try:
            envelope = EventEnvelope.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed broadcast message: {e}")
            return
        dispatch(self.registry, envelope)

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
