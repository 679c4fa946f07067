"""
Connection Group Registry

Tracks which live connections listen to which restaurant ("room") and which
individual orders. This is the one piece of mutable state every connection
touches, so all access goes through a lock.

A connection sits in at most one restaurant room; joining another moves it.
It may follow any number of orders (a customer watching their own order).
"""

import asyncio
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional

from qrmenu.schemas import OutboundEvent

logger = logging.getLogger(__name__)


class ClientConnection:
    """
    One live client.

    Events are queued on ``outbox`` and written out by ``pump``, so
    delivering never waits on a slow socket. ``deliver`` must run on the
    event loop that owns the connection.
    """

    def __init__(self, connection_id: Optional[str] = None, max_pending: int = 1000):
        self.id = connection_id or uuid.uuid4().hex[:12]
        self.outbox: asyncio.Queue[Optional[OutboundEvent]] = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def deliver(self, event: OutboundEvent) -> bool:
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Connection {self.id}: outbox full, dropping {event.event}")
            return False
        return True

    def send(self, event: str, data: Optional[dict[str, Any]] = None) -> bool:
        return self.deliver(OutboundEvent(event=event, data=data or {}))

    async def receive(self, timeout: Optional[float] = None) -> Optional[OutboundEvent]:
        """Next queued event; None once the connection is closed."""
        return await asyncio.wait_for(self.outbox.get(), timeout)

    async def pump(self, send_json: Callable[[dict[str, Any]], Awaitable[None]]) -> None:
        """Write queued events out until the connection is closed."""
        while True:
            event = await self.outbox.get()
            if event is None:
                break
            await send_json(event.model_dump(mode="json"))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.outbox.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __repr__(self):
        return f"<ClientConnection {self.id}>"


class GroupRegistry:
    """Thread-safe multi-map of restaurant rooms and order followers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rooms: dict[str, set[ClientConnection]] = {}
        self._room_of: dict[ClientConnection, str] = {}
        self._followers: dict[str, set[ClientConnection]] = {}
        self._following: dict[ClientConnection, set[str]] = {}

    def join(self, conn: ClientConnection, restaurant_id: str) -> None:
        """Put a connection in a restaurant's room, leaving any previous one."""
        with self._lock:
            current = self._room_of.get(conn)
            if current == restaurant_id:
                return
            if current is not None:
                self._discard(self._rooms, current, conn)
            self._rooms.setdefault(restaurant_id, set()).add(conn)
            self._room_of[conn] = restaurant_id
        logger.info(f"Connection {conn.id} joined room {restaurant_id}")

    def follow(self, conn: ClientConnection, order_id: str) -> None:
        with self._lock:
            self._followers.setdefault(order_id, set()).add(conn)
            self._following.setdefault(conn, set()).add(order_id)
        logger.debug(f"Connection {conn.id} following order {order_id}")

    def leave(self, conn: ClientConnection) -> None:
        """Drop every membership of a connection."""
        with self._lock:
            room = self._room_of.pop(conn, None)
            if room is not None:
                self._discard(self._rooms, room, conn)
            for order_id in self._following.pop(conn, set()):
                self._discard(self._followers, order_id, conn)
        if room is not None:
            logger.info(f"Connection {conn.id} left room {room}")

    def room_of(self, conn: ClientConnection) -> Optional[str]:
        with self._lock:
            return self._room_of.get(conn)

    def recipients(self, restaurant_id: str, order_id: Optional[str] = None) -> list[ClientConnection]:
        """Snapshot of the connections an event should reach, each listed once."""
        with self._lock:
            members: Iterable[ClientConnection] = self._rooms.get(restaurant_id, ())
            if order_id is not None:
                members = [*members, *self._followers.get(order_id, ())]
            return list(dict.fromkeys(members))

    def group_size(self, restaurant_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(restaurant_id, ()))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._room_of.keys() | self._following.keys())

    @staticmethod
    def _discard(groups: dict[str, set[ClientConnection]], key: str, conn: ClientConnection) -> None:
        members = groups.get(key)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del groups[key]
