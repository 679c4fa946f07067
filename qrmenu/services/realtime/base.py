"""
Broadcast Backend Abstract Base Class

A backend carries order events from the instance that produced them to the
instances holding the interested connections. Both implementations end in
``dispatch``, which hands the event to the local registry.

Design Pattern: Strategy Pattern
    - InMemoryBroadcastBackend: single process (development)
    - RedisBroadcastBackend: pub/sub across instances (staging/production)
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from qrmenu.schemas import OutboundEvent
from qrmenu.services.realtime.registry import GroupRegistry

logger = logging.getLogger(__name__)

NEW_ORDER = "new_order"
ORDER_UPDATED = "order_updated"


@dataclass
class EventEnvelope:
    """An order event plus the routing keys needed to deliver it."""
    restaurant_id: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)
    order_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({
            "restaurantId": self.restaurant_id,
            "orderId": self.order_id,
            "event": self.event,
            "data": self.data,
        })

    @classmethod
    def from_json(cls, raw: str) -> "EventEnvelope":
        body = json.loads(raw)
        return cls(
            restaurant_id=body["restaurantId"],
            event=body["event"],
            data=body.get("data") or {},
            order_id=body.get("orderId"),
        )


def dispatch(registry: GroupRegistry, envelope: EventEnvelope) -> int:
    """Queue an event on every local recipient. Returns how many got it."""
    message = OutboundEvent(event=envelope.event, data=envelope.data)
    recipients = registry.recipients(envelope.restaurant_id, envelope.order_id)
    delivered = sum(1 for conn in recipients if conn.deliver(message))
    if not recipients:
        logger.debug(f"No listeners for {envelope.event} in room {envelope.restaurant_id}")
    else:
        logger.debug(
            f"{envelope.event} delivered to {delivered}/{len(recipients)} "
            f"connections of room {envelope.restaurant_id}"
        )
    return delivered


class BaseBroadcastBackend(ABC):
    """Abstract base class for broadcast backends."""

    def __init__(self, registry: GroupRegistry):
        self.registry = registry

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    async def start(self) -> None:
        """Open connections / listeners. Called at application startup."""

    async def stop(self) -> None:
        """Release resources. Called at application shutdown."""

    @abstractmethod
    async def publish(self, envelope: EventEnvelope) -> None:
        """Send an event towards every interested connection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check backend connectivity."""
        pass
