"""
Event Broadcaster

Front door for ``new_order`` / ``order_updated`` events. Emits are
serialised, so each restaurant's connections receive events in the order
the gateways emitted them. Delivery failures stop here: they are logged as
``BroadcastFailure`` and never undo the write that triggered them.
"""

import asyncio
import logging
from typing import Any, Optional

from qrmenu.exceptions import BroadcastFailure
from qrmenu.services.realtime.base import BaseBroadcastBackend, EventEnvelope

logger = logging.getLogger(__name__)


class EventBroadcaster:

    def __init__(self, backend: BaseBroadcastBackend):
        self.backend = backend
        self._lock = asyncio.Lock()

    @property
    def registry(self):
        return self.backend.registry

    async def emit(
        self,
        restaurant_id: str,
        event: str,
        payload: dict[str, Any],
        order_id: Optional[str] = None,
    ) -> bool:
        """
        Deliver an event to the restaurant's room (and the order's followers).

        Returns:
            False if the backend failed; the failure is logged, not raised.
        """
        envelope = EventEnvelope(
            restaurant_id=restaurant_id,
            event=event,
            data=payload,
            order_id=order_id,
        )
        try:
            async with self._lock:
                await self.backend.publish(envelope)
        except Exception as e:
            failure = BroadcastFailure(
                f"Failed to emit {event} to room {restaurant_id}", detail=str(e)
            )
            logger.error(f"{failure.message}: {failure.detail}")
            return False
        return True

    async def start(self) -> None:
        await self.backend.start()

    async def stop(self) -> None:
        await self.backend.stop()

    async def health_check(self) -> bool:
        return await self.backend.health_check()
