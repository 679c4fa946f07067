"""
Session Router

Consumes inbound control messages from real-time connections and updates
group membership:

    {"type": "join", "restaurantId": "R1", "token": "..."}   owner dashboard / menu
    {"type": "follow", "orderId": "..."}                      customer confirmation page
    {"type": "leave"}
    {"type": "ping"}

Each message is acknowledged (``joined``, ``following``, ``left``,
``pong``) or answered with an ``error`` event.
"""

import json
import logging
from typing import Any, Union

from pydantic import ValidationError as PydanticValidationError

from qrmenu.core.security import verify_owner_token
from qrmenu.exceptions import OrderServiceError
from qrmenu.schemas import (
    FollowMessage,
    JoinMessage,
    LeaveMessage,
    PingMessage,
    control_message_adapter,
)
from qrmenu.services.realtime.registry import ClientConnection, GroupRegistry
from qrmenu.services.store import OrderStore

logger = logging.getLogger(__name__)


class SessionRouter:

    def __init__(self, registry: GroupRegistry, store: OrderStore):
        self.registry = registry
        self.store = store

    async def handle(self, conn: ClientConnection, raw: Union[str, dict[str, Any]]) -> None:
        try:
            body = json.loads(raw) if isinstance(raw, str) else raw
            message = control_message_adapter.validate_python(body)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.debug(f"Connection {conn.id}: bad control message: {e}")
            conn.send("error", {"message": "Invalid message"})
            return

        if isinstance(message, JoinMessage):
            self._join(conn, message)
        elif isinstance(message, FollowMessage):
            await self._follow(conn, message)
        elif isinstance(message, LeaveMessage):
            self.registry.leave(conn)
            conn.send("left")
        elif isinstance(message, PingMessage):
            conn.send("pong")

    def _join(self, conn: ClientConnection, message: JoinMessage) -> None:
        if not verify_owner_token(message.restaurant_id, message.token):
            logger.warning(
                f"Connection {conn.id}: rejected join to room {message.restaurant_id}"
            )
            conn.send("error", {"message": "Not authorized to join this restaurant"})
            return
        self.registry.join(conn, message.restaurant_id)
        conn.send("joined", {"restaurantId": message.restaurant_id})

    async def _follow(self, conn: ClientConnection, message: FollowMessage) -> None:
        try:
            order = await self.store.get_by_id(message.order_id)
        except OrderServiceError as e:
            conn.send("error", {"message": e.message})
            return
        self.registry.follow(conn, order.id)
        conn.send("following", {"orderId": order.id, "status": order.status.value})

    def disconnect(self, conn: ClientConnection) -> None:
        """Prune a closed connection; later emits never target it."""
        self.registry.leave(conn)
        conn.close()
        logger.debug(f"Connection {conn.id} disconnected")
