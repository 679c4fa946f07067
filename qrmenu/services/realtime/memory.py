"""
In-Memory Broadcast Backend

Delivers events straight into this process's registry. Correct for a single
instance only: connections held by other instances never see the events.
"""

import logging

from qrmenu.services.realtime.base import BaseBroadcastBackend, EventEnvelope, dispatch

logger = logging.getLogger(__name__)


class InMemoryBroadcastBackend(BaseBroadcastBackend):
    """Single-process backend for development and tests."""

    @property
    def provider_name(self) -> str:
        return "memory"

    async def publish(self, envelope: EventEnvelope) -> None:
        dispatch(self.registry, envelope)

    async def health_check(self) -> bool:
        return True
