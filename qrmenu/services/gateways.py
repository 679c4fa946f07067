"""
Order Gateways

Entry points for the two writes the system accepts:
    - OrderIntakeGateway: a customer's cart becomes a pending order
    - StatusUpdateGateway: an owner moves an order through its lifecycle

Both persist first and announce second. A failed announcement is logged by
the broadcaster and never rolls back or fails the write.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from qrmenu.core.config import Settings, get_settings
from qrmenu.core.security import verify_owner_token
from qrmenu.exceptions import (
    MissingRestaurant,
    NotAuthorized,
    OrderCreationFailed,
    PersistenceFailure,
    ValidationError,
)
from qrmenu.models import Order
from qrmenu.schemas import OrderCreate, order_payload
from qrmenu.services.lifecycle import parse_status
from qrmenu.services.realtime import NEW_ORDER, ORDER_UPDATED, EventBroadcaster, get_broadcaster
from qrmenu.services.store import LineItem, OrderDraft, OrderStore, compute_total, get_order_store
from qrmenu.tasks import export_order_to_ledger

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    order: Order
    created: bool = True


class OrderIntakeGateway:
    """Turns a submitted cart into a persisted, announced order."""

    def __init__(
        self,
        store: OrderStore,
        broadcaster: EventBroadcaster,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.settings = settings or get_settings()

    def build_draft(self, payload: OrderCreate) -> OrderDraft:
        """
        Validate a cart and snapshot it.

        Raises:
            MissingRestaurant: no restaurantId
            ValidationError: no items, or no table when tables are required
        """
        if not payload.restaurant_id:
            raise MissingRestaurant()
        if not payload.items:
            raise ValidationError("Order must contain at least one item")
        if self.settings.require_table_number and payload.table_number is None:
            raise ValidationError("tableNumber is required")

        items = [
            LineItem(name=i.name, price=i.price, quantity=i.quantity, note=i.note)
            for i in payload.items
        ]
        draft = OrderDraft(
            restaurant_id=payload.restaurant_id,
            items=items,
            table_number=payload.table_number,
            customer_name=payload.customer_name,
            idempotency_key=payload.idempotency_key,
        )

        if payload.total_amount is not None:
            computed = compute_total(items)
            if payload.total_amount != computed:
                logger.warning(
                    f"Client total {payload.total_amount} does not match item sum "
                    f"{computed} for restaurant {payload.restaurant_id}; using {computed}"
                )
        return draft

    async def submit_order(self, payload: OrderCreate) -> SubmissionResult:
        draft = self.build_draft(payload)
        # A client hanging up must not abort the commit
        return await asyncio.shield(self._place(draft))

    async def _place(self, draft: OrderDraft) -> SubmissionResult:
        try:
            order, created = await self.store.create_or_get(draft)
        except OrderCreationFailed:
            raise
        except PersistenceFailure as e:
            raise OrderCreationFailed(detail=e.detail) from e

        if created:
            await self.broadcaster.emit(order.restaurant_id, NEW_ORDER, order_payload(order))
        return SubmissionResult(order=order, created=created)


class StatusUpdateGateway:
    """Applies owner status changes and announces them."""

    def __init__(
        self,
        store: OrderStore,
        broadcaster: EventBroadcaster,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.settings = settings or get_settings()

    async def change_status(
        self,
        order_id: str,
        requested: Any,
        token: Optional[str] = None,
    ) -> Order:
        """
        Raises:
            InvalidStatus: unknown status (checked before anything is read)
            OrderNotFound: no such order
            NotAuthorized: owner token required and wrong
            TerminalStateViolation: order already complete or cancelled
        """
        target = parse_status(requested)

        if self.settings.auth_enabled:
            current = await self.store.get_by_id(order_id)
            if not verify_owner_token(
                current.restaurant_id, token, secret=self.settings.owner_token_secret
            ):
                raise NotAuthorized()

        order = await self.store.update_status(order_id, target)

        await self.broadcaster.emit(
            order.restaurant_id,
            ORDER_UPDATED,
            order_payload(order),
            order_id=order.id,
        )

        if order.status.is_terminal and self.settings.ledger_export_enabled:
            self._queue_ledger_export(order)
        return order

    def _queue_ledger_export(self, order: Order) -> None:
        try:
            export_order_to_ledger.delay(ledger_row(order))
        except Exception as e:
            logger.error(f"Could not queue ledger export for order {order.id}: {e}")


def ledger_row(order: Order) -> dict[str, Any]:
    """Flat, JSON-serialisable record of a finished order for the history ledger."""
    return {
        "order_id": order.id,
        "restaurant_id": order.restaurant_id,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "items": json.dumps(order.items),
        "item_count": sum(item["quantity"] for item in order.items),
        "total_amount": float(order.total_amount),
        "order_status": order.status.value,
        "created_at": order.created_at.isoformat(),
        "closed_at": order.updated_at.isoformat() if order.updated_at else None,
    }


@lru_cache()
def get_intake_gateway() -> OrderIntakeGateway:
    return OrderIntakeGateway(get_order_store(), get_broadcaster())


@lru_cache()
def get_status_gateway() -> StatusUpdateGateway:
    return StatusUpdateGateway(get_order_store(), get_broadcaster())


def reset_gateways() -> None:
    get_intake_gateway.cache_clear()
    get_status_gateway.cache_clear()
